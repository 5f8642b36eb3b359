# Copyright (c) 2026 TenantBootstrap Contributors. All Rights Reserved.
"""Unit tests for OrphanReconciler."""

import pytest

from tenant_bootstrap.kernel.migrator import LegacyIdentifierMigrator
from tenant_bootstrap.kernel.reconciler import OrphanReconciler
from tenant_bootstrap.protocols.errors import SchemaError
from tenant_bootstrap.protocols.identifiers import is_canonical
from tenant_bootstrap.protocols.schema import (
    MigrationKind,
    MigrationProgress,
    MigrationStatus,
    Role,
)

CANONICAL_ID = "0b7f7c1e-2d4a-4c55-9a3e-1f2b3c4d5e6f"
OTHER_CANONICAL_ID = "9c1d2e3f-4a5b-4c6d-8e7f-0a1b2c3d4e5f"
ORPHAN_ID = "BIZ-1600000000000"


@pytest.fixture
def reconciler(store, fast_retry):
    return OrphanReconciler(store, retry=fast_retry)


def _references(store, tenant_id):
    refs = sum(1 for p in store.profiles.values() if p.tenant_id == tenant_id)
    for collection in store.collections:
        if collection != "profile":
            refs += sum(1 for r in store.rows(collection) if r["tenant_id"] == tenant_id)
    return refs


class TestOrphanReconciler:
    @pytest.mark.asyncio
    async def test_merges_orphan_branch(self, store, reconciler, make_tenant, make_profile):
        make_tenant("p2", CANONICAL_ID)
        make_tenant("p2", ORPHAN_ID)
        store.add_row("branch", ORPHAN_ID, name="Westlands")
        profile = make_profile("p2", CANONICAL_ID)

        report = await reconciler.reconcile(profile)

        assert report.merged == [ORPHAN_ID]
        assert report.failed == {}
        assert report.rows_moved == 1
        assert store.rows("branch")[0]["tenant_id"] == CANONICAL_ID
        assert ORPHAN_ID not in store.tenants
        [marker] = store.migrations.values()
        assert marker.kind is MigrationKind.ORPHAN_MERGE
        assert marker.status is MigrationStatus.COMPLETE

    @pytest.mark.asyncio
    async def test_find_orphans(self, store, reconciler, make_tenant, make_profile):
        make_tenant("p2", CANONICAL_ID)
        make_tenant("p2", ORPHAN_ID)
        make_tenant("p2", OTHER_CANONICAL_ID)
        make_tenant("p7", "BIZ-1")
        orphans = await reconciler.find_orphans(make_profile("p2", CANONICAL_ID))
        assert [t.id for t in orphans] == [ORPHAN_ID]

    @pytest.mark.asyncio
    async def test_canonical_duplicates_untouched(self, store, reconciler, make_tenant, make_profile):
        make_tenant("p2", CANONICAL_ID)
        make_tenant("p2", OTHER_CANONICAL_ID)
        report = await reconciler.reconcile(make_profile("p2", CANONICAL_ID))
        assert not report.changed
        assert OTHER_CANONICAL_ID in store.tenants

    @pytest.mark.asyncio
    async def test_non_owner_never_reconciles(self, store, reconciler, make_tenant, make_profile):
        make_tenant("p2", CANONICAL_ID)
        make_tenant("p5", ORPHAN_ID)
        manager = make_profile("p5", CANONICAL_ID, role=Role.MANAGER)
        report = await reconciler.reconcile(manager)
        assert report.merged == []
        assert ORPHAN_ID in store.tenants

    @pytest.mark.asyncio
    async def test_legacy_profile_not_reconciled(self, store, reconciler, make_tenant, make_profile):
        make_tenant("p2", ORPHAN_ID)
        make_tenant("p2", "BIZ-1700000000000")
        assert await reconciler.find_orphans(make_profile("p2", ORPHAN_ID)) == []

    @pytest.mark.asyncio
    async def test_failure_isolated_per_orphan(self, store, reconciler, make_tenant, make_profile):
        make_tenant("p2", CANONICAL_ID)
        make_tenant("p2", "BIZ-1")
        make_tenant("p2", "BIZ-2")
        store.add_row("product", "BIZ-1", name="Tea")
        store.add_row("product", "BIZ-2", name="Rice")
        store.inject_failure("delete_tenant", SchemaError("tenants locked"))

        report = await reconciler.reconcile(make_profile("p2", CANONICAL_ID))

        assert len(report.merged) == 1
        assert len(report.failed) == 1
        [failed_id] = report.failed
        assert failed_id in store.tenants
        # re-keys ran before the failed delete
        assert all(r["tenant_id"] == CANONICAL_ID for r in store.rows("product"))

        retry_report = await reconciler.reconcile(make_profile("p2", CANONICAL_ID))
        assert retry_report.merged == [failed_id]
        assert failed_id not in store.tenants

    @pytest.mark.asyncio
    async def test_retargets_marker_to_canonical(self, store, reconciler, make_tenant, make_profile):
        make_tenant("p2", CANONICAL_ID)
        make_tenant("p2", ORPHAN_ID)
        store.add_row("branch", ORPHAN_ID, name="CBD")
        stale = MigrationProgress(
            owner_principal_id="p2",
            source_tenant_id=ORPHAN_ID,
            target_tenant_id=OTHER_CANONICAL_ID,
            kind=MigrationKind.LEGACY_ID,
            completed_collections=["profile", "branch"],
        )
        store.migrations[stale.id] = stale

        report = await reconciler.reconcile(make_profile("p2", CANONICAL_ID))

        assert report.merged == [ORPHAN_ID]
        assert store.rows("branch")[0]["tenant_id"] == CANONICAL_ID
        assert store.migrations[stale.id].target_tenant_id == CANONICAL_ID
        assert store.migrations[stale.id].status is MigrationStatus.COMPLETE


class TestMigrateThenReconcile:
    @pytest.mark.asyncio
    async def test_owner_collapses_to_one_tenant(self, store, fast_retry, make_tenant, make_profile):
        """P2: BIZ-1700000000000 with 3 products plus BIZ-1600000000000 with 1 branch."""
        make_tenant("p2", "BIZ-1700000000000")
        make_tenant("p2", ORPHAN_ID)
        for name in ("Sugar", "Flour", "Soap"):
            store.add_row("product", "BIZ-1700000000000", name=name)
        store.add_row("branch", ORPHAN_ID, name="Westlands")
        profile = make_profile("p2", "BIZ-1700000000000")

        migrated = await LegacyIdentifierMigrator(store, retry=fast_retry).migrate(profile)
        report = await OrphanReconciler(store, retry=fast_retry).reconcile(migrated)

        assert sorted(report.merged) == sorted(["BIZ-1700000000000", ORPHAN_ID])
        owned = [t for t in store.tenants.values() if t.owner_principal_id == "p2"]
        assert [t.id for t in owned] == [migrated.tenant_id]
        assert is_canonical(migrated.tenant_id)
        assert _references(store, "BIZ-1700000000000") == 0
        assert _references(store, ORPHAN_ID) == 0
        assert _references(store, migrated.tenant_id) == 5  # profile + 3 products + branch
        assert all(m.status is MigrationStatus.COMPLETE for m in store.migrations.values())
