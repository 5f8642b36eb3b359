# Copyright (c) 2026 TenantBootstrap Contributors. All Rights Reserved.

"""
Legacy Identifier Migrator — moves a tenant onto a canonical id.

Tenant ids are immutable in the store, so migration is copy + re-key:

  1. persist a progress marker naming the new canonical id (PENDING)
  2. insert the new tenant record (plan/settings copied from the legacy one)
  3. re-key every tenant-scoped collection concurrently; each collection is an
     independent, individually retried write and is ticked off on the marker
  4. all collections done -> marker REKEYED

The legacy tenant record is left in place; the OrphanReconciler deletes it
once nothing references it. An interrupted run is resumed from its marker on
the next pass instead of minting a second canonical tenant.
"""

from __future__ import annotations

import asyncio
import logging
from typing import List, Optional, Tuple

from tenant_bootstrap.core.metrics import bootstrap_metrics
from tenant_bootstrap.kernel.factory import new_tenant
from tenant_bootstrap.protocols.errors import (
    ConflictError,
    PartialMigrationError,
    TenantPermissionError,
)
from tenant_bootstrap.protocols.identifiers import is_legacy, mint_tenant_id
from tenant_bootstrap.protocols.schema import (
    MigrationKind,
    MigrationProgress,
    MigrationStatus,
    Profile,
    Tenant,
)
from tenant_bootstrap.resilience.retry import RetryManager, transient_policy
from tenant_bootstrap.storage.store import IdentityStore

logger = logging.getLogger("bootstrap.migrator")


async def run_rekeys(
    store: IdentityStore,
    progress: MigrationProgress,
    retry: RetryManager,
) -> Tuple[int, List[str]]:
    """
    Re-key every collection the marker has not ticked off yet.

    Writes are issued concurrently; the marker is saved afterwards with
    whatever finished. Returns (rows moved, failed collections).
    """
    remaining = progress.remaining(store.collections)
    results = await asyncio.gather(
        *(
            retry.call(store.rekey, collection, progress.source_tenant_id, progress.target_tenant_id)
            for collection in remaining
        ),
        return_exceptions=True,
    )

    moved = 0
    failed: List[str] = []
    for collection, result in zip(remaining, results):
        if isinstance(result, asyncio.CancelledError):
            raise result
        if isinstance(result, Exception):
            failed.append(collection)
            logger.error("Re-key of %s %s -> %s failed: %s", collection,
                         progress.source_tenant_id, progress.target_tenant_id, result,
                         extra={"principal_id": progress.owner_principal_id,
                                "tenant_id": progress.source_tenant_id})
            continue
        moved += result
        progress.mark_collection(collection)

    if not failed and progress.status is MigrationStatus.PENDING:
        progress.advance(MigrationStatus.REKEYED)
    await retry.call(store.save_migration, progress)
    bootstrap_metrics.inc("rekey:rows", moved)
    return moved, failed


class LegacyIdentifierMigrator:
    """Migrates an owner's legacy-format tenant id to a canonical one."""

    def __init__(self, store: IdentityStore, retry: Optional[RetryManager] = None) -> None:
        self._store = store
        self._retry = retry or RetryManager(transient_policy(), name="migrator")

    def needs_migration(self, profile: Profile) -> bool:
        return is_legacy(profile.tenant_id)

    async def migrate(self, profile: Profile) -> Profile:
        """
        Migrate the profile's tenant and return the profile pointing at the
        canonical id. A profile already on a canonical id is returned as is.

        Raises:
            TenantPermissionError: the principal is not the tenant owner
            PartialMigrationError: some collections still reference the old id
        """
        if not self.needs_migration(profile):
            return profile
        if not profile.is_owner:
            bootstrap_metrics.inc("migrator:denied")
            raise TenantPermissionError(
                f"Tenant '{profile.tenant_id}' uses a legacy id and only its owner can "
                f"migrate it; ask the business owner to sign in"
            )

        source_id = profile.tenant_id
        log_extra = {"principal_id": profile.id, "tenant_id": source_id}
        legacy = await self._retry.call(self._store.get_tenant, source_id)

        progress = await self._retry.call(self._store.get_open_migration, source_id)
        if progress is None:
            progress = MigrationProgress(
                owner_principal_id=profile.id,
                source_tenant_id=source_id,
                target_tenant_id=mint_tenant_id(),
                kind=MigrationKind.LEGACY_ID,
            )
            await self._retry.call(self._store.save_migration, progress)
            logger.info("Migrating tenant %s -> %s", source_id, progress.target_tenant_id,
                        extra=log_extra)
        else:
            bootstrap_metrics.inc("migrator:resumed")
            logger.info("Resuming migration of %s -> %s (done: %s)", source_id,
                        progress.target_tenant_id, progress.completed_collections or "none",
                        extra=log_extra)

        await self._ensure_target(profile.id, progress.target_tenant_id, legacy)

        moved, failed = await run_rekeys(self._store, progress, self._retry)
        if failed:
            bootstrap_metrics.inc("migrator:partial")
            raise PartialMigrationError(
                f"Migration of tenant '{source_id}' incomplete; pending: {', '.join(failed)}",
                failed_collections=failed,
            )

        bootstrap_metrics.inc("migrator:migrated")
        logger.info("Migrated tenant %s -> %s (%d rows)", source_id, progress.target_tenant_id,
                    moved, extra=log_extra)
        return profile.model_copy(update={"tenant_id": progress.target_tenant_id})

    async def _ensure_target(self, owner_id: str, target_id: str, legacy: Optional[Tenant]) -> None:
        if await self._retry.call(self._store.get_tenant, target_id) is not None:
            return
        target = new_tenant(owner_id, tenant_id=target_id, template=legacy)
        try:
            await self._retry.call(self._store.insert_tenant, target)
        except ConflictError:
            logger.info("Target tenant %s already created", target_id,
                        extra={"principal_id": owner_id, "tenant_id": target_id})
