# Copyright (c) 2026 TenantBootstrap Contributors. All Rights Reserved.

"""
Repository Layer — CRUD operations for the profile/tenant tables.

Each repository takes an AsyncSession and provides typed access.
Transactions are owned by the caller (SqlIdentityStore).
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy import select, update, delete, func
from sqlalchemy.ext.asyncio import AsyncSession

from tenant_bootstrap.storage.models import (
    ProfileRecord,
    TenantRecord,
    TenantMigrationRecord,
    TENANT_SCOPED_MODELS,
)


# ── Profile Repository ──────────────────────────────────────

class ProfileRepository:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def get(self, principal_id: str) -> Optional[ProfileRecord]:
        result = await self.db.execute(
            select(ProfileRecord).where(ProfileRecord.id == principal_id)
        )
        return result.scalar_one_or_none()

    async def create(self, **values) -> ProfileRecord:
        """Insert a profile. Raises IntegrityError if the principal already has one."""
        record = ProfileRecord(**values)
        self.db.add(record)
        await self.db.flush()
        return record


# ── Tenant Repository ───────────────────────────────────────

class TenantRepository:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def get(self, tenant_id: str) -> Optional[TenantRecord]:
        result = await self.db.execute(
            select(TenantRecord).where(TenantRecord.id == tenant_id)
        )
        return result.scalar_one_or_none()

    async def list_by_owner(self, owner_principal_id: str) -> List[TenantRecord]:
        """Every tenant owned by a principal, oldest first."""
        result = await self.db.execute(
            select(TenantRecord)
            .where(TenantRecord.owner_principal_id == owner_principal_id)
            .order_by(TenantRecord.created_at.asc())
        )
        return list(result.scalars().all())

    async def create(self, **values) -> TenantRecord:
        record = TenantRecord(**values)
        self.db.add(record)
        await self.db.flush()
        return record

    async def delete(self, tenant_id: str) -> int:
        result = await self.db.execute(
            delete(TenantRecord).where(TenantRecord.id == tenant_id)
        )
        return result.rowcount or 0


# ── Tenant-scoped collections ───────────────────────────────

class TenantScopedRepository:
    """Bulk operations on one tenant-scoped collection, addressed by name."""

    def __init__(self, db: AsyncSession, collection: str):
        if collection not in TENANT_SCOPED_MODELS:
            raise KeyError(f"Unknown tenant-scoped collection '{collection}'")
        self.db = db
        self.collection = collection
        self.model = TENANT_SCOPED_MODELS[collection]

    async def rekey(self, old_tenant_id: str, new_tenant_id: str) -> int:
        """Point every row of old_tenant_id at new_tenant_id. Returns rows moved."""
        result = await self.db.execute(
            update(self.model)
            .where(self.model.tenant_id == old_tenant_id)
            .values(tenant_id=new_tenant_id)
        )
        return result.rowcount or 0

    async def count(self, tenant_id: str) -> int:
        result = await self.db.execute(
            select(func.count()).select_from(self.model).where(self.model.tenant_id == tenant_id)
        )
        return result.scalar() or 0


# ── Migration Progress Repository ───────────────────────────

class MigrationProgressRepository:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_open(self, source_tenant_id: str) -> Optional[TenantMigrationRecord]:
        """Latest unfinished marker for a source tenant id."""
        result = await self.db.execute(
            select(TenantMigrationRecord)
            .where(
                TenantMigrationRecord.source_tenant_id == source_tenant_id,
                TenantMigrationRecord.status != "complete",
            )
            .order_by(TenantMigrationRecord.created_at.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def upsert(self, **values) -> None:
        existing = await self.db.get(TenantMigrationRecord, values["id"])
        if existing is None:
            self.db.add(TenantMigrationRecord(**values))
        else:
            await self.db.execute(
                update(TenantMigrationRecord)
                .where(TenantMigrationRecord.id == values["id"])
                .values(
                    target_tenant_id=values["target_tenant_id"],
                    status=values["status"],
                    completed_collections=list(values["completed_collections"]),
                    updated_at=datetime.now(timezone.utc),
                )
            )
        await self.db.flush()
