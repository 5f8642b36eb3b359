# Copyright (c) 2026 TenantBootstrap Contributors. All Rights Reserved.

"""
Identity Bootstrapper — principal → Resolution, always.

State machine:

  RESOLVING ─┬─ FOUND ──────────────────────────────┬─> DONE
             │    └─ MIGRATING ─> RECONCILING ───────┘   (failures never revert FOUND)
             ├─ NOT_FOUND ─> HEALING ─┬─ healed ──────> FOUND
             │                        └─ failed ──────> FALLBACK ─> DONE
             ├─ TRANSIENT (retries spent) ────────────> FALLBACK ─> DONE  (retryable error)
             └─ SCHEMA ───────────────────────────────> FALLBACK ─> DONE  (surfaced)

Every path ends in a Resolution carrying a complete identity; recoverable
failures are absorbed, SCHEMA_ERROR and PERMISSION_ERROR are surfaced on it.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Dict, Optional

from redis.exceptions import RedisError

from tenant_bootstrap.core.metrics import bootstrap_metrics
from tenant_bootstrap.kernel.bus import IdentityBus
from tenant_bootstrap.kernel.fallback import SessionFallbackBuilder
from tenant_bootstrap.kernel.healer import AutoHealer
from tenant_bootstrap.kernel.migrator import LegacyIdentifierMigrator
from tenant_bootstrap.kernel.reconciler import OrphanReconciler
from tenant_bootstrap.kernel.resolver import OutcomeKind, ProfileResolver
from tenant_bootstrap.protocols.errors import BootstrapError, TenantPermissionError
from tenant_bootstrap.protocols.events import TENANT_MIGRATED, TENANT_RECONCILED
from tenant_bootstrap.protocols.identifiers import is_canonical, is_pending
from tenant_bootstrap.protocols.schema import (
    Principal,
    Profile,
    Resolution,
    ResolvedIdentity,
    Tenant,
)
from tenant_bootstrap.resilience.idempotency import InFlightRegistry
from tenant_bootstrap.resilience.retry import RetryManager, transient_policy
from tenant_bootstrap.storage.store import IdentityStore

logger = logging.getLogger("bootstrap.bootstrapper")

# Fallback reasons
REASON_SCHEMA = "schema_error"
REASON_UNAVAILABLE = "store_unavailable"
REASON_NO_METADATA = "no_signup_metadata"
REASON_HEAL_FAILED = "heal_failed"
REASON_TENANT_MISSING = "tenant_missing"
REASON_SETUP_PENDING = "setup_pending"


class IdentityBootstrapper:
    """Drives one principal through resolve → heal → fallback."""

    def __init__(
        self,
        store: IdentityStore,
        bus: Optional[IdentityBus] = None,
        *,
        resolver: Optional[ProfileResolver] = None,
        healer: Optional[AutoHealer] = None,
        migrator: Optional[LegacyIdentifierMigrator] = None,
        reconciler: Optional[OrphanReconciler] = None,
        fallback: Optional[SessionFallbackBuilder] = None,
        registry: Optional[InFlightRegistry] = None,
        retry: Optional[RetryManager] = None,
    ) -> None:
        self._store = store
        self._bus = bus
        self._retry = retry or RetryManager(transient_policy(), name="bootstrapper")
        self.resolver = resolver or ProfileResolver(store)
        self.healer = healer or AutoHealer(store, self.resolver, registry=registry)
        self.migrator = migrator or LegacyIdentifierMigrator(store)
        self.reconciler = reconciler or OrphanReconciler(store)
        self.fallback = fallback or SessionFallbackBuilder()

    async def bootstrap(self, principal: Principal, trace_id: Optional[str] = None) -> Resolution:
        """Resolve a principal's identity. Never raises for store failures."""
        start = time.time()
        try:
            resolution = await self._bootstrap(principal, trace_id)
        except BootstrapError as exc:
            logger.error("Bootstrap of %s failed unexpectedly: [%s] %s", principal.id, exc.code, exc,
                         extra={"principal_id": principal.id, "trace_id": trace_id})
            resolution = Resolution.of(
                self.fallback.build(principal, reason=exc.code.lower()),
                error=exc.to_dict(),
            )
        elapsed = (time.time() - start) * 1000
        bootstrap_metrics.observe("bootstrap_latency_ms", elapsed)
        bootstrap_metrics.inc(f"resolution:{resolution.state.value}")
        logger.info("Bootstrap of %s -> %s (%.0fms)", principal.id, resolution.state.value, elapsed,
                    extra={"principal_id": principal.id, "trace_id": trace_id,
                           "tenant_id": resolution.identity.tenant.id if resolution.identity else None})
        return resolution

    async def _bootstrap(self, principal: Principal, trace_id: Optional[str]) -> Resolution:
        outcome = await self.resolver.resolve_with_retry(principal.id)

        if outcome.kind is OutcomeKind.FOUND:
            return await self._on_found(principal, outcome.profile, trace_id)
        if outcome.kind is OutcomeKind.SCHEMA_ERROR:
            return await self._fall_back(principal, REASON_SCHEMA, error=outcome.error.to_dict())
        if outcome.kind is OutcomeKind.TRANSIENT_ERROR:
            return await self._fall_back(principal, REASON_UNAVAILABLE, error={
                "code": outcome.error.code,
                "message": "The account store is unreachable, try again",
                "retryable": True,
            })

        if not principal.has_signup_metadata:
            return await self._fall_back(principal, REASON_NO_METADATA)
        healed = await self.healer.heal(principal)
        if healed is None:
            return await self._fall_back(principal, REASON_HEAL_FAILED)
        return await self._on_found(principal, healed, trace_id)

    # ── FOUND ───────────────────────────────────────────────────

    async def _on_found(self, principal: Principal, profile: Profile, trace_id: Optional[str]) -> Resolution:
        if is_pending(profile.tenant_id):
            return await self._fall_back(principal, REASON_SETUP_PENDING, profile=profile)
        try:
            tenant = await self._retry.call(self._store.get_tenant, profile.tenant_id)
        except BootstrapError as exc:
            return Resolution.of(
                self.fallback.build(principal, reason=exc.code.lower(), profile=profile),
                error=exc.to_dict(),
            )
        if tenant is None:
            logger.warning("Profile %s points at missing tenant %s", profile.id, profile.tenant_id,
                           extra={"principal_id": profile.id, "tenant_id": profile.tenant_id})
            return Resolution.of(self.fallback.build(principal, REASON_TENANT_MISSING, profile=profile))

        error: Optional[Dict[str, Any]] = None
        if self.migrator.needs_migration(profile):
            try:
                profile, tenant = await self._migrate(profile, tenant, trace_id)
            except TenantPermissionError as exc:
                error = exc.to_dict()
                logger.warning("Legacy tenant %s left as is: %s", profile.tenant_id, exc,
                               extra={"principal_id": profile.id, "tenant_id": profile.tenant_id})
            except BootstrapError as exc:
                logger.warning("Migration of %s deferred: [%s] %s", profile.tenant_id, exc.code, exc,
                               extra={"principal_id": profile.id, "tenant_id": profile.tenant_id})

        if profile.is_owner and is_canonical(profile.tenant_id):
            await self._reconcile(profile, trace_id)

        return Resolution.of(ResolvedIdentity(profile=profile, tenant=tenant), error=error)

    async def _migrate(self, profile: Profile, tenant: Tenant, trace_id: Optional[str]):
        migrated = await self.migrator.migrate(profile)
        new_tenant = await self._retry.call(self._store.get_tenant, migrated.tenant_id)
        if new_tenant is None:
            return profile, tenant
        await self._emit(TENANT_MIGRATED, profile.id, {
            "old_tenant_id": tenant.id,
            "new_tenant_id": new_tenant.id,
        }, trace_id)
        return migrated, new_tenant

    async def _reconcile(self, profile: Profile, trace_id: Optional[str]) -> None:
        try:
            report = await self.reconciler.reconcile(profile)
        except BootstrapError as exc:
            logger.warning("Reconciliation for %s deferred: [%s] %s", profile.tenant_id, exc.code, exc,
                           extra={"principal_id": profile.id, "tenant_id": profile.tenant_id})
            return
        if report.changed:
            await self._emit(TENANT_RECONCILED, profile.id, report.to_dict(), trace_id)

    # ── FALLBACK ────────────────────────────────────────────────

    async def _fall_back(
        self,
        principal: Principal,
        reason: str,
        error: Optional[Dict[str, Any]] = None,
        profile: Optional[Profile] = None,
    ) -> Resolution:
        tenant = await self._owned_tenant(principal.id)
        identity = self.fallback.build(principal, reason, profile=profile, tenant=tenant)
        return Resolution.of(identity, error=error)

    async def _owned_tenant(self, principal_id: str) -> Optional[Tenant]:
        """One best-effort read of a tenant the principal owns."""
        try:
            owned = await self._store.find_tenants_by_owner(principal_id)
        except BootstrapError as exc:
            logger.info("Owned-tenant lookup for %s failed: %s", principal_id, exc,
                        extra={"principal_id": principal_id})
            return None
        canonical = [t for t in owned if is_canonical(t.id)]
        return (canonical or owned or [None])[0]

    async def _emit(self, event_type: str, principal_id: str, payload: Dict[str, Any],
                    trace_id: Optional[str]) -> None:
        if self._bus is None:
            return
        try:
            await self._bus.emit(event_type, principal_id, payload, trace_id=trace_id)
        except RedisError as exc:
            logger.warning("Could not publish %s for %s: %s", event_type, principal_id, exc,
                           extra={"principal_id": principal_id})
