# Copyright (c) 2026 TenantBootstrap Contributors. All Rights Reserved.
"""Unit tests for the in-memory IdentityStore used throughout the suite."""

import pytest

from tenant_bootstrap.protocols.errors import ConflictError, SchemaError, TransientStoreError
from tenant_bootstrap.protocols.schema import MigrationKind, MigrationProgress, MigrationStatus, Profile, Tenant


class TestInMemoryStore:
    @pytest.mark.asyncio
    async def test_profile_roundtrip_is_copied(self, store):
        profile = Profile(id="p1", tenant_id="t1")
        await store.insert_profile(profile)

        loaded = await store.get_profile("p1")
        loaded.tenant_id = "changed"
        assert store.profiles["p1"].tenant_id == "t1"

    @pytest.mark.asyncio
    async def test_duplicate_insert_conflicts(self, store):
        await store.insert_tenant(Tenant(id="t1", owner_principal_id="p1"))
        with pytest.raises(ConflictError):
            await store.insert_tenant(Tenant(id="t1", owner_principal_id="p1"))

    @pytest.mark.asyncio
    async def test_injected_failures_are_consumed(self, store):
        store.inject_failure("get_tenant", TransientStoreError("blip"), times=2)
        for _ in range(2):
            with pytest.raises(TransientStoreError):
                await store.get_tenant("t1")
        assert await store.get_tenant("t1") is None
        assert store.calls["get_tenant"] == 3

    @pytest.mark.asyncio
    async def test_dropped_collection(self, store):
        store.drop_collection("product")
        with pytest.raises(SchemaError):
            await store.rekey("product", "a", "b")
        assert await store.rekey("branch", "a", "b") == 0

    @pytest.mark.asyncio
    async def test_rekey_and_count(self, store):
        store.add_row("product", "old", name="Flour")
        store.add_row("product", "old", name="Salt")
        store.add_row("product", "other", name="Rice")

        assert await store.rekey("product", "old", "new") == 2
        assert await store.count_references("product", "old") == 0
        assert await store.count_references("product", "new") == 2

    @pytest.mark.asyncio
    async def test_owned_tenants_oldest_first(self, store, make_tenant):
        make_tenant("p1", "second")
        first = Tenant(id="first", owner_principal_id="p1",
                       created_at=store.tenants["second"].created_at.replace(year=2020))
        store.tenants[first.id] = first

        owned = await store.find_tenants_by_owner("p1")
        assert [t.id for t in owned] == ["first", "second"]

    @pytest.mark.asyncio
    async def test_open_migration(self, store):
        marker = MigrationProgress(owner_principal_id="p1", source_tenant_id="old",
                                   target_tenant_id="new", kind=MigrationKind.LEGACY_ID)
        await store.save_migration(marker)
        assert (await store.get_open_migration("old")).id == marker.id

        marker.advance(MigrationStatus.COMPLETE)
        await store.save_migration(marker)
        assert await store.get_open_migration("old") is None
