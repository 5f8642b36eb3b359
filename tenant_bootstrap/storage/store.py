# Copyright (c) 2026 TenantBootstrap Contributors. All Rights Reserved.

"""
Identity Store — the backing-store interface consumed by the bootstrap kernel.

IdentityStore is the contract; SqlIdentityStore implements it over the async
SQLAlchemy engine. Every call:
  - runs in its own transaction (no cross-collection atomicity is assumed)
  - is bounded by a timeout; exceeding it is a TransientStoreError
  - translates driver failures into the bootstrap error taxonomy
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, List, Optional, Protocol, TypeVar

from sqlalchemy.exc import (
    DBAPIError,
    IntegrityError,
    InterfaceError,
    OperationalError,
    ProgrammingError,
)
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from tenant_bootstrap.core.config import settings
from tenant_bootstrap.protocols.errors import (
    BootstrapError,
    ConflictError,
    SchemaError,
    TransientStoreError,
)
from tenant_bootstrap.protocols.schema import (
    MigrationProgress,
    Profile,
    Tenant,
    TenantSettings,
)
from tenant_bootstrap.storage.models import (
    ProfileRecord,
    TenantRecord,
    TenantMigrationRecord,
    TENANT_SCOPED_MODELS,
)
from tenant_bootstrap.storage.repositories import (
    MigrationProgressRepository,
    ProfileRepository,
    TenantRepository,
    TenantScopedRepository,
)

logger = logging.getLogger("bootstrap.store")

T = TypeVar("T")

MISSING_RELATION_SQLSTATE = "42P01"


class IdentityStore(Protocol):
    """Operations the bootstrap kernel needs from the backing store."""

    @property
    def collections(self) -> List[str]: ...

    async def get_profile(self, principal_id: str) -> Optional[Profile]: ...

    async def insert_profile(self, profile: Profile) -> None: ...

    async def get_tenant(self, tenant_id: str) -> Optional[Tenant]: ...

    async def find_tenants_by_owner(self, owner_principal_id: str) -> List[Tenant]: ...

    async def insert_tenant(self, tenant: Tenant) -> None: ...

    async def delete_tenant(self, tenant_id: str) -> None: ...

    async def rekey(self, collection: str, old_tenant_id: str, new_tenant_id: str) -> int: ...

    async def count_references(self, collection: str, tenant_id: str) -> int: ...

    async def get_open_migration(self, source_tenant_id: str) -> Optional[MigrationProgress]: ...

    async def save_migration(self, progress: MigrationProgress) -> None: ...


# ── Row ⇄ model mapping ─────────────────────────────────────

def profile_from_record(row: ProfileRecord) -> Profile:
    return Profile(
        id=row.id,
        tenant_id=row.tenant_id,
        role=row.role,
        role_id=row.role_id,
        branch_id=row.branch_id,
        email=row.email or "",
        first_name=row.first_name or "",
        last_name=row.last_name or "",
        phone=row.phone,
        must_change_password=bool(row.must_change_password),
        can_create_expense=bool(row.can_create_expense),
        created_at=row.created_at,
    )


def tenant_from_record(row: TenantRecord) -> Tenant:
    return Tenant(
        id=row.id,
        owner_principal_id=row.owner_principal_id,
        name=row.name,
        subscription_plan=row.subscription_plan or "Free Trial",
        subscription_status=row.subscription_status or "trial",
        trial_ends_at=row.trial_ends_at,
        max_branches=row.max_branches or 1,
        max_staff=row.max_staff or 5,
        settings=TenantSettings.from_stored(row.settings),
        created_at=row.created_at,
    )


def migration_from_record(row: TenantMigrationRecord) -> MigrationProgress:
    return MigrationProgress(
        id=row.id,
        owner_principal_id=row.owner_principal_id,
        source_tenant_id=row.source_tenant_id,
        target_tenant_id=row.target_tenant_id,
        kind=row.kind,
        status=row.status,
        completed_collections=list(row.completed_collections or []),
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def is_missing_relation(exc: DBAPIError) -> bool:
    """True if the driver reports that a table does not exist."""
    orig = getattr(exc, "orig", None)
    code = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    if code == MISSING_RELATION_SQLSTATE:
        return True
    msg = str(exc).lower()
    return "no such table" in msg or ("relation" in msg and "does not exist" in msg)


# ── SQL implementation ──────────────────────────────────────

class SqlIdentityStore:
    """IdentityStore over an async SQLAlchemy session factory."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        timeout: Optional[float] = None,
    ) -> None:
        self._session_factory = session_factory
        self._timeout = settings.STORE_TIMEOUT if timeout is None else timeout

    @property
    def collections(self) -> List[str]:
        return list(TENANT_SCOPED_MODELS)

    # ── Plumbing ────────────────────────────────────────────────

    async def _transaction(self, op: Callable[[AsyncSession], Awaitable[T]]) -> T:
        async with self._session_factory() as db:
            async with db.begin():
                return await op(db)

    async def _run(self, label: str, op: Callable[[AsyncSession], Awaitable[T]]) -> T:
        try:
            return await asyncio.wait_for(self._transaction(op), timeout=self._timeout)
        except BootstrapError:
            raise
        except asyncio.TimeoutError as exc:
            raise TransientStoreError(f"{label} timed out after {self._timeout}s", exc) from exc
        except IntegrityError as exc:
            raise ConflictError(f"{label}: uniqueness violation", exc) from exc
        except (ProgrammingError, OperationalError) as exc:
            if is_missing_relation(exc):
                raise SchemaError(f"{label}: required collection is missing", exc) from exc
            if isinstance(exc, OperationalError):
                raise TransientStoreError(f"{label}: {exc.orig}", exc) from exc
            raise
        except InterfaceError as exc:
            raise TransientStoreError(f"{label}: {exc.orig}", exc) from exc
        except DBAPIError as exc:
            if exc.connection_invalidated:
                raise TransientStoreError(f"{label}: connection lost", exc) from exc
            raise
        except (ConnectionError, OSError) as exc:
            raise TransientStoreError(f"{label}: {exc}", exc) from exc

    # ── Profiles ────────────────────────────────────────────────

    async def get_profile(self, principal_id: str) -> Optional[Profile]:
        async def op(db: AsyncSession) -> Optional[Profile]:
            row = await ProfileRepository(db).get(principal_id)
            return profile_from_record(row) if row else None

        return await self._run("get_profile", op)

    async def insert_profile(self, profile: Profile) -> None:
        async def op(db: AsyncSession) -> None:
            await ProfileRepository(db).create(
                id=profile.id,
                tenant_id=profile.tenant_id,
                role=profile.role.value,
                role_id=profile.role_id,
                branch_id=profile.branch_id,
                email=profile.email,
                first_name=profile.first_name,
                last_name=profile.last_name,
                phone=profile.phone,
                must_change_password=profile.must_change_password,
                can_create_expense=profile.can_create_expense,
                created_at=profile.created_at,
            )

        await self._run("insert_profile", op)

    # ── Tenants ─────────────────────────────────────────────────

    async def get_tenant(self, tenant_id: str) -> Optional[Tenant]:
        async def op(db: AsyncSession) -> Optional[Tenant]:
            row = await TenantRepository(db).get(tenant_id)
            return tenant_from_record(row) if row else None

        return await self._run("get_tenant", op)

    async def find_tenants_by_owner(self, owner_principal_id: str) -> List[Tenant]:
        async def op(db: AsyncSession) -> List[Tenant]:
            rows = await TenantRepository(db).list_by_owner(owner_principal_id)
            return [tenant_from_record(r) for r in rows]

        return await self._run("find_tenants_by_owner", op)

    async def insert_tenant(self, tenant: Tenant) -> None:
        async def op(db: AsyncSession) -> None:
            await TenantRepository(db).create(
                id=tenant.id,
                owner_principal_id=tenant.owner_principal_id,
                name=tenant.name,
                subscription_plan=tenant.subscription_plan,
                subscription_status=tenant.subscription_status,
                trial_ends_at=tenant.trial_ends_at,
                max_branches=tenant.max_branches,
                max_staff=tenant.max_staff,
                settings=tenant.settings.model_dump(mode="json"),
                created_at=tenant.created_at,
            )

        await self._run("insert_tenant", op)

    async def delete_tenant(self, tenant_id: str) -> None:
        async def op(db: AsyncSession) -> None:
            await TenantRepository(db).delete(tenant_id)

        await self._run("delete_tenant", op)

    # ── Tenant-scoped collections ───────────────────────────────

    async def rekey(self, collection: str, old_tenant_id: str, new_tenant_id: str) -> int:
        async def op(db: AsyncSession) -> int:
            return await TenantScopedRepository(db, collection).rekey(old_tenant_id, new_tenant_id)

        moved = await self._run(f"rekey:{collection}", op)
        logger.debug("Re-keyed %d %s rows %s → %s", moved, collection, old_tenant_id, new_tenant_id)
        return moved

    async def count_references(self, collection: str, tenant_id: str) -> int:
        async def op(db: AsyncSession) -> int:
            return await TenantScopedRepository(db, collection).count(tenant_id)

        return await self._run(f"count:{collection}", op)

    # ── Migration progress ──────────────────────────────────────

    async def get_open_migration(self, source_tenant_id: str) -> Optional[MigrationProgress]:
        async def op(db: AsyncSession) -> Optional[MigrationProgress]:
            row = await MigrationProgressRepository(db).get_open(source_tenant_id)
            return migration_from_record(row) if row else None

        return await self._run("get_open_migration", op)

    async def save_migration(self, progress: MigrationProgress) -> None:
        async def op(db: AsyncSession) -> None:
            await MigrationProgressRepository(db).upsert(
                id=progress.id,
                owner_principal_id=progress.owner_principal_id,
                source_tenant_id=progress.source_tenant_id,
                target_tenant_id=progress.target_tenant_id,
                kind=progress.kind.value,
                status=progress.status.value,
                completed_collections=list(progress.completed_collections),
                created_at=progress.created_at,
                updated_at=progress.updated_at,
            )

        await self._run("save_migration", op)
