# Copyright (c) 2026 TenantBootstrap Contributors. All Rights Reserved.
"""Unit tests for the IdentityBootstrapper state machine."""

import pytest

from tenant_bootstrap.core.metrics import bootstrap_metrics
from tenant_bootstrap.kernel.bootstrapper import IdentityBootstrapper
from tenant_bootstrap.protocols.errors import SchemaError, TransientStoreError
from tenant_bootstrap.protocols.events import TENANT_MIGRATED, TENANT_RECONCILED
from tenant_bootstrap.protocols.identifiers import is_canonical
from tenant_bootstrap.protocols.schema import ResolutionState, Role

CANONICAL_ID = "0b7f7c1e-2d4a-4c55-9a3e-1f2b3c4d5e6f"
LEGACY_ID = "BIZ-1700000000000"


class RecordingBus:
    def __init__(self):
        self.events = []

    async def emit(self, type, principal_id, payload=None, trace_id=None):
        self.events.append((type, principal_id, payload or {}))


@pytest.fixture
def bus():
    return RecordingBus()


@pytest.fixture
def bootstrapper(store, bus):
    return IdentityBootstrapper(store, bus)


class TestPrimaryResolution:
    @pytest.mark.asyncio
    async def test_found(self, bootstrapper, owner_principal, make_tenant, make_profile):
        make_tenant("p1", CANONICAL_ID)
        make_profile("p1", CANONICAL_ID)

        resolution = await bootstrapper.bootstrap(owner_principal)

        assert resolution.state is ResolutionState.RESOLVED
        assert resolution.identity.tenant.id == CANONICAL_ID
        assert resolution.identity.profile.id == "p1"
        assert resolution.error is None
        assert bootstrap_metrics.get_counter("resolution:resolved") == 1

    @pytest.mark.asyncio
    async def test_not_found_heals(self, store, bootstrapper, owner_principal):
        resolution = await bootstrapper.bootstrap(owner_principal)

        assert resolution.state is ResolutionState.RESOLVED
        assert is_canonical(resolution.identity.tenant.id)
        assert len(store.tenants) == 1
        assert store.profiles["p1"].tenant_id == resolution.identity.tenant.id

    @pytest.mark.asyncio
    async def test_no_metadata_falls_back(self, store, bootstrapper, bare_principal):
        resolution = await bootstrapper.bootstrap(bare_principal)

        assert resolution.state is ResolutionState.DEGRADED
        assert resolution.identity.tenant.id == "setup-pending"
        assert resolution.identity.reason == "no_signup_metadata"
        assert store.tenants == {}
        assert store.profiles == {}

    @pytest.mark.asyncio
    async def test_fallback_uses_owned_tenant(self, bootstrapper, bare_principal, make_tenant):
        make_tenant("p9", CANONICAL_ID, name="Kiosk")
        resolution = await bootstrapper.bootstrap(bare_principal)
        assert resolution.state is ResolutionState.DEGRADED
        assert resolution.identity.tenant.name == "Kiosk"
        assert resolution.identity.profile.tenant_id == CANONICAL_ID

    @pytest.mark.asyncio
    async def test_heal_with_non_string_metadata(self, store, bootstrapper):
        from tenant_bootstrap.protocols.schema import Principal

        principal = Principal(id="p7", metadata={"first_name": 42, "last_name": ["x"],
                                                 "role": "Business Owner"})
        resolution = await bootstrapper.bootstrap(principal)

        assert resolution.state is ResolutionState.RESOLVED
        assert resolution.identity.profile.first_name == "42"
        assert resolution.identity.profile.last_name == "Name"
        assert store.profiles["p7"].tenant_id == resolution.identity.tenant.id

    @pytest.mark.asyncio
    async def test_heal_failure_falls_back(self, store, bootstrapper, owner_principal):
        store.drop_collection("tenant")
        resolution = await bootstrapper.bootstrap(owner_principal)
        assert resolution.state is ResolutionState.DEGRADED
        assert resolution.identity.reason == "heal_failed"
        assert resolution.identity.tenant.id == "setup-pending"


class TestSurfacedErrors:
    @pytest.mark.asyncio
    async def test_schema_error(self, store, bootstrapper, owner_principal):
        store.drop_collection("profile")

        resolution = await bootstrapper.bootstrap(owner_principal)

        assert resolution.state is ResolutionState.DEGRADED
        assert resolution.error.code == "SCHEMA_ERROR"
        assert resolution.error.retryable is False
        assert store.calls["get_profile"] == 1
        assert store.calls["insert_tenant"] == 0

    @pytest.mark.asyncio
    async def test_transient_budget_surfaces_retryable(self, store, bootstrapper, owner_principal,
                                                       make_tenant, make_profile):
        make_tenant("p1", CANONICAL_ID)
        make_profile("p1", CANONICAL_ID)
        store.inject_failure("get_profile", TransientStoreError("timeout"), times=4)

        resolution = await bootstrapper.bootstrap(owner_principal)

        assert resolution.state is ResolutionState.DEGRADED
        assert resolution.error.code == "TRANSIENT_ERROR"
        assert resolution.error.retryable is True
        assert store.calls["get_profile"] == 4
        assert store.calls["insert_tenant"] == 0

    @pytest.mark.asyncio
    async def test_transient_recovers_within_budget(self, store, bootstrapper, owner_principal,
                                                    make_tenant, make_profile):
        make_tenant("p1", CANONICAL_ID)
        make_profile("p1", CANONICAL_ID)
        store.inject_failure("get_profile", TransientStoreError("timeout"), times=3)
        resolution = await bootstrapper.bootstrap(owner_principal)
        assert resolution.state is ResolutionState.RESOLVED

    @pytest.mark.asyncio
    async def test_non_owner_legacy_tenant(self, store, bootstrapper, make_tenant, make_profile):
        from tenant_bootstrap.protocols.schema import Principal

        make_tenant("p2", LEGACY_ID)
        make_profile("p5", LEGACY_ID, role=Role.CASHIER)

        resolution = await bootstrapper.bootstrap(Principal(id="p5"))

        assert resolution.state is ResolutionState.RESOLVED
        assert resolution.identity.tenant.id == LEGACY_ID
        assert resolution.error.code == "PERMISSION_ERROR"
        assert len(store.tenants) == 1


class TestDegradedIdentity:
    @pytest.mark.asyncio
    async def test_tenant_row_missing(self, bootstrapper, owner_principal, make_profile):
        make_profile("p1", CANONICAL_ID)
        resolution = await bootstrapper.bootstrap(owner_principal)
        assert resolution.state is ResolutionState.DEGRADED
        assert resolution.identity.reason == "tenant_missing"
        assert resolution.identity.profile.first_name == "Amina"

    @pytest.mark.asyncio
    async def test_setup_pending_profile(self, bootstrapper, owner_principal, make_profile):
        make_profile("p1", "setup-pending")
        resolution = await bootstrapper.bootstrap(owner_principal)
        assert resolution.state is ResolutionState.DEGRADED
        assert resolution.identity.reason == "setup_pending"


class TestNormalisation:
    @pytest.mark.asyncio
    async def test_legacy_owner_migrated(self, store, bus, bootstrapper, owner_principal,
                                         make_tenant, make_profile):
        make_tenant("p1", LEGACY_ID)
        make_profile("p1", LEGACY_ID)
        store.add_row("product", LEGACY_ID, name="Sugar")

        resolution = await bootstrapper.bootstrap(owner_principal)

        new_id = resolution.identity.tenant.id
        assert resolution.state is ResolutionState.RESOLVED
        assert is_canonical(new_id)
        assert resolution.identity.profile.tenant_id == new_id
        assert store.rows("product")[0]["tenant_id"] == new_id
        # migrated then reconciled in the same pass
        assert LEGACY_ID not in store.tenants
        types = [e[0] for e in bus.events]
        assert types == [TENANT_MIGRATED, TENANT_RECONCILED]
        assert bus.events[0][2] == {"old_tenant_id": LEGACY_ID, "new_tenant_id": new_id}

    @pytest.mark.asyncio
    async def test_failed_migration_keeps_resolution(self, store, bootstrapper, owner_principal,
                                                     make_tenant, make_profile):
        make_tenant("p1", LEGACY_ID)
        make_profile("p1", LEGACY_ID)
        store.inject_failure("rekey:product", SchemaError("products missing"))

        resolution = await bootstrapper.bootstrap(owner_principal)

        assert resolution.state is ResolutionState.RESOLVED
        assert resolution.identity.tenant.id == LEGACY_ID
        assert resolution.error is None

    @pytest.mark.asyncio
    async def test_split_state_finished_on_next_pass(self, store, bootstrapper, owner_principal,
                                                     make_tenant, make_profile):
        make_tenant("p1", LEGACY_ID)
        make_profile("p1", LEGACY_ID)
        store.add_row("product", LEGACY_ID, name="Sugar")
        store.inject_failure("rekey:product", SchemaError("products missing"))

        await bootstrapper.bootstrap(owner_principal)
        resolution = await bootstrapper.bootstrap(owner_principal)

        new_id = resolution.identity.tenant.id
        assert is_canonical(new_id)
        assert store.rows("product")[0]["tenant_id"] == new_id
        assert list(store.tenants) == [new_id]

    @pytest.mark.asyncio
    async def test_orphans_reconciled(self, store, bus, bootstrapper, owner_principal,
                                      make_tenant, make_profile):
        make_tenant("p1", CANONICAL_ID)
        make_tenant("p1", "BIZ-1600000000000")
        store.add_row("branch", "BIZ-1600000000000", name="Westlands")
        make_profile("p1", CANONICAL_ID)

        resolution = await bootstrapper.bootstrap(owner_principal)

        assert resolution.state is ResolutionState.RESOLVED
        assert list(store.tenants) == [CANONICAL_ID]
        assert store.rows("branch")[0]["tenant_id"] == CANONICAL_ID
        assert bus.events[0][0] == TENANT_RECONCILED
        assert bus.events[0][2]["merged"] == ["BIZ-1600000000000"]
