# Copyright (c) 2026 TenantBootstrap Contributors. All Rights Reserved.

"""
Orphan Reconciler — collapses an owner's legacy duplicates into the canonical tenant.

An orphan is any other tenant owned by the same principal whose id is not
canonical (typically the source of a finished or interrupted migration).
For each orphan: every collection is re-keyed onto the canonical id, the
orphan is checked to be unreferenced, and only then deleted. A crash in
between leaves duplicate data that the next pass picks up from the marker,
never rows pointing at a deleted tenant.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from tenant_bootstrap.core.metrics import bootstrap_metrics
from tenant_bootstrap.kernel.migrator import run_rekeys
from tenant_bootstrap.protocols.errors import BootstrapError, PartialMigrationError
from tenant_bootstrap.protocols.identifiers import is_canonical
from tenant_bootstrap.protocols.schema import (
    MigrationKind,
    MigrationProgress,
    MigrationStatus,
    Profile,
    Tenant,
)
from tenant_bootstrap.resilience.retry import RetryManager, transient_policy
from tenant_bootstrap.storage.store import IdentityStore

logger = logging.getLogger("bootstrap.reconciler")


@dataclass
class ReconcileReport:
    """Outcome of one reconciliation pass."""
    canonical_tenant_id: str
    merged: List[str] = field(default_factory=list)
    failed: Dict[str, str] = field(default_factory=dict)
    rows_moved: int = 0

    @property
    def changed(self) -> bool:
        return bool(self.merged)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "canonical_tenant_id": self.canonical_tenant_id,
            "merged": list(self.merged),
            "failed": dict(self.failed),
            "rows_moved": self.rows_moved,
        }


class OrphanReconciler:

    def __init__(self, store: IdentityStore, retry: Optional[RetryManager] = None) -> None:
        self._store = store
        self._retry = retry or RetryManager(transient_policy(), name="reconciler")

    async def find_orphans(self, profile: Profile) -> List[Tenant]:
        """Legacy-id tenants owned by the principal besides its canonical one."""
        if not profile.is_owner or not is_canonical(profile.tenant_id):
            return []
        owned = await self._retry.call(self._store.find_tenants_by_owner, profile.id)
        return [t for t in owned if t.id != profile.tenant_id and not is_canonical(t.id)]

    async def reconcile(self, profile: Profile) -> ReconcileReport:
        """
        Merge every orphan into the profile's canonical tenant.

        One orphan failing does not stop the others; failures are listed in
        the report and retried on the next pass.
        """
        report = ReconcileReport(canonical_tenant_id=profile.tenant_id)
        orphans = await self.find_orphans(profile)
        if not orphans:
            return report

        for orphan in orphans:
            try:
                report.rows_moved += await self._merge(profile, orphan)
            except BootstrapError as exc:
                report.failed[orphan.id] = str(exc)
                bootstrap_metrics.inc("reconcile:failed")
                logger.error("Reconcile of %s into %s failed: [%s] %s", orphan.id,
                             profile.tenant_id, exc.code, exc,
                             extra={"principal_id": profile.id, "tenant_id": orphan.id})
                continue
            report.merged.append(orphan.id)
            bootstrap_metrics.inc("reconcile:merged")

        logger.info("Reconciled %s: merged=%s failed=%s rows=%d", profile.tenant_id,
                    report.merged, list(report.failed), report.rows_moved,
                    extra={"principal_id": profile.id, "tenant_id": profile.tenant_id})
        return report

    async def _merge(self, profile: Profile, orphan: Tenant) -> int:
        canonical_id = profile.tenant_id
        progress = await self._retry.call(self._store.get_open_migration, orphan.id)
        if progress is None:
            progress = MigrationProgress(
                owner_principal_id=profile.id,
                source_tenant_id=orphan.id,
                target_tenant_id=canonical_id,
                kind=MigrationKind.ORPHAN_MERGE,
            )
        elif progress.target_tenant_id != canonical_id:
            # Rows already moved sit under another canonical tenant; start over
            progress.target_tenant_id = canonical_id
            progress.completed_collections = []
            progress.advance(MigrationStatus.PENDING)

        moved, failed = await run_rekeys(self._store, progress, self._retry)
        if failed:
            raise PartialMigrationError(
                f"Orphan '{orphan.id}' still referenced by: {', '.join(failed)}",
                failed_collections=failed,
            )

        leftovers = []
        for collection in self._store.collections:
            if await self._retry.call(self._store.count_references, collection, orphan.id):
                leftovers.append(collection)
        if leftovers:
            # Rows written after the re-key; clear them so the next pass moves them
            progress.completed_collections = [
                c for c in progress.completed_collections if c not in leftovers
            ]
            progress.advance(MigrationStatus.PENDING)
            await self._retry.call(self._store.save_migration, progress)
            raise PartialMigrationError(
                f"Orphan '{orphan.id}' gained new rows in: {', '.join(leftovers)}",
                failed_collections=leftovers,
            )

        await self._retry.call(self._store.delete_tenant, orphan.id)
        progress.advance(MigrationStatus.COMPLETE)
        await self._retry.call(self._store.save_migration, progress)
        logger.info("Merged orphan %s into %s (%d rows)", orphan.id, canonical_id, moved,
                    extra={"principal_id": profile.id, "tenant_id": canonical_id})
        return moved
