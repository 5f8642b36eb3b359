# Copyright (c) 2026 TenantBootstrap Contributors. All Rights Reserved.

"""
In-memory IdentityStore — dict-backed twin of SqlIdentityStore.

Used by unit tests and local runs without a database. Every call yields to the
event loop once so concurrent callers interleave the way they would against a
real store. Failures can be scripted per operation with inject_failure().
"""

from __future__ import annotations

import asyncio
import uuid
from collections import defaultdict, deque
from typing import Any, Deque, Dict, List, Optional, Set

from tenant_bootstrap.protocols.errors import ConflictError, SchemaError
from tenant_bootstrap.protocols.schema import MigrationProgress, Profile, Tenant

DEFAULT_COLLECTIONS = ["profile", "branch", "product", "sale_record", "expense"]

# Operations touching each collection (for drop_collection)
_PROFILE_OPS = {"get_profile", "insert_profile"}
_TENANT_OPS = {"get_tenant", "find_tenants_by_owner", "insert_tenant", "delete_tenant"}


class InMemoryIdentityStore:
    """In-memory identity store for testing."""

    def __init__(self, collections: Optional[List[str]] = None):
        self._collections = list(collections or DEFAULT_COLLECTIONS)
        self.profiles: Dict[str, Profile] = {}
        self.tenants: Dict[str, Tenant] = {}
        self.migrations: Dict[str, MigrationProgress] = {}
        self._rows: Dict[str, Dict[str, Dict[str, Any]]] = defaultdict(dict)
        self._failures: Dict[str, Deque[BaseException]] = defaultdict(deque)
        self._dropped: Set[str] = set()
        self.calls: Dict[str, int] = defaultdict(int)

    @property
    def collections(self) -> List[str]:
        return list(self._collections)

    # ── Test hooks ──────────────────────────────────────────────

    def inject_failure(self, operation: str, exc: BaseException, times: int = 1) -> None:
        """Make the next `times` calls of `operation` raise `exc`."""
        for _ in range(times):
            self._failures[operation].append(exc)

    def drop_collection(self, name: str) -> None:
        """Simulate a missing table: every access raises SchemaError."""
        self._dropped.add(name)

    def add_row(self, collection: str, tenant_id: str, **fields: Any) -> str:
        """Seed a tenant-scoped row. Returns its id."""
        row_id = fields.pop("id", None) or str(uuid.uuid4())
        self._rows[collection][row_id] = {"id": row_id, "tenant_id": tenant_id, **fields}
        return row_id

    def rows(self, collection: str) -> List[Dict[str, Any]]:
        return list(self._rows[collection].values())

    async def _enter(self, operation: str, collection: Optional[str] = None) -> None:
        self.calls[operation] += 1
        await asyncio.sleep(0)
        if collection in self._dropped:
            raise SchemaError(f"{operation}: collection '{collection}' does not exist")
        queue = self._failures.get(operation)
        if queue:
            raise queue.popleft()

    def _collection_for(self, operation: str) -> Optional[str]:
        if operation in _PROFILE_OPS:
            return "profile"
        if operation in _TENANT_OPS:
            return "tenant"
        return None

    async def _op(self, operation: str) -> None:
        await self._enter(operation, self._collection_for(operation))

    # ── Profiles ────────────────────────────────────────────────

    async def get_profile(self, principal_id: str) -> Optional[Profile]:
        await self._op("get_profile")
        profile = self.profiles.get(principal_id)
        return profile.model_copy(deep=True) if profile else None

    async def insert_profile(self, profile: Profile) -> None:
        await self._op("insert_profile")
        if profile.id in self.profiles:
            raise ConflictError(f"insert_profile: profile '{profile.id}' already exists")
        self.profiles[profile.id] = profile.model_copy(deep=True)

    # ── Tenants ─────────────────────────────────────────────────

    async def get_tenant(self, tenant_id: str) -> Optional[Tenant]:
        await self._op("get_tenant")
        tenant = self.tenants.get(tenant_id)
        return tenant.model_copy(deep=True) if tenant else None

    async def find_tenants_by_owner(self, owner_principal_id: str) -> List[Tenant]:
        await self._op("find_tenants_by_owner")
        owned = [t for t in self.tenants.values() if t.owner_principal_id == owner_principal_id]
        owned.sort(key=lambda t: t.created_at)
        return [t.model_copy(deep=True) for t in owned]

    async def insert_tenant(self, tenant: Tenant) -> None:
        await self._op("insert_tenant")
        if tenant.id in self.tenants:
            raise ConflictError(f"insert_tenant: tenant '{tenant.id}' already exists")
        self.tenants[tenant.id] = tenant.model_copy(deep=True)

    async def delete_tenant(self, tenant_id: str) -> None:
        await self._op("delete_tenant")
        self.tenants.pop(tenant_id, None)

    # ── Tenant-scoped collections ───────────────────────────────

    async def rekey(self, collection: str, old_tenant_id: str, new_tenant_id: str) -> int:
        await self._enter(f"rekey:{collection}", collection)
        if collection == "profile":
            moved = 0
            for pid, profile in list(self.profiles.items()):
                if profile.tenant_id == old_tenant_id:
                    self.profiles[pid] = profile.model_copy(update={"tenant_id": new_tenant_id})
                    moved += 1
            return moved
        moved = 0
        for row in self._rows[collection].values():
            if row["tenant_id"] == old_tenant_id:
                row["tenant_id"] = new_tenant_id
                moved += 1
        return moved

    async def count_references(self, collection: str, tenant_id: str) -> int:
        await self._enter(f"count:{collection}", collection)
        if collection == "profile":
            return sum(1 for p in self.profiles.values() if p.tenant_id == tenant_id)
        return sum(1 for r in self._rows[collection].values() if r["tenant_id"] == tenant_id)

    # ── Migration progress ──────────────────────────────────────

    async def get_open_migration(self, source_tenant_id: str) -> Optional[MigrationProgress]:
        await self._op("get_open_migration")
        open_markers = [
            m for m in self.migrations.values()
            if m.source_tenant_id == source_tenant_id and m.is_open
        ]
        if not open_markers:
            return None
        latest = max(open_markers, key=lambda m: m.created_at)
        return latest.model_copy(deep=True)

    async def save_migration(self, progress: MigrationProgress) -> None:
        await self._op("save_migration")
        self.migrations[progress.id] = progress.model_copy(deep=True)
