# Copyright (c) 2026 TenantBootstrap Contributors. All Rights Reserved.

"""
Auto Healer — rebuilds a missing profile from signup metadata.

Runs only after the resolver has authoritatively reported NOT_FOUND for a
principal that still carries its signup attributes. Heals for the same
principal coalesce in the in-flight registry, and the tenant step reuses any
tenant the principal already owns, so a heal never leaves two tenants behind.
"""

from __future__ import annotations

import logging
from typing import Optional

from tenant_bootstrap.core.metrics import bootstrap_metrics
from tenant_bootstrap.kernel.factory import new_tenant, profile_from_principal
from tenant_bootstrap.kernel.resolver import OutcomeKind, ProfileResolver
from tenant_bootstrap.protocols.errors import BootstrapError, ConflictError
from tenant_bootstrap.protocols.identifiers import is_canonical
from tenant_bootstrap.protocols.schema import Principal, Profile, Tenant
from tenant_bootstrap.resilience.idempotency import InFlightRegistry
from tenant_bootstrap.resilience.retry import RetryManager, transient_policy
from tenant_bootstrap.storage.store import IdentityStore

logger = logging.getLogger("bootstrap.healer")


class AutoHealer:
    """Creates the profile (and, if needed, a tenant) for an orphaned principal."""

    def __init__(
        self,
        store: IdentityStore,
        resolver: ProfileResolver,
        registry: Optional[InFlightRegistry] = None,
        retry: Optional[RetryManager] = None,
    ) -> None:
        self._store = store
        self._resolver = resolver
        self._registry = registry or InFlightRegistry()
        self._retry = retry or RetryManager(transient_policy(), name="healer")

    async def heal(self, principal: Principal) -> Optional[Profile]:
        """
        Rebuild the principal's profile.

        Returns the persisted profile, or None when the heal could not be
        completed (the caller then builds a degraded fallback identity).
        """
        if not principal.has_signup_metadata:
            logger.info("Heal skipped for %s: no signup metadata", principal.id,
                        extra={"principal_id": principal.id})
            return None
        return await self._registry.run_once(f"heal:{principal.id}", lambda: self._heal(principal))

    async def _heal(self, principal: Principal) -> Optional[Profile]:
        bootstrap_metrics.inc("healer:attempts")
        try:
            profile = await self._retry.call(self._heal_once, principal)
        except BootstrapError as exc:
            bootstrap_metrics.inc("healer:failed")
            logger.error("Auto-heal failed for %s: [%s] %s", principal.id, exc.code, exc,
                         extra={"principal_id": principal.id})
            return None
        if profile is None:
            bootstrap_metrics.inc("healer:failed")
            return None
        bootstrap_metrics.inc("healer:healed")
        logger.info("Auto-healed profile for %s (tenant %s)", principal.id, profile.tenant_id,
                    extra={"principal_id": principal.id, "tenant_id": profile.tenant_id})
        return profile

    async def _heal_once(self, principal: Principal) -> Optional[Profile]:
        tenant = await self._owned_tenant(principal.id)
        if tenant is None:
            tenant = new_tenant(principal.id)
            await self._store.insert_tenant(tenant)
            bootstrap_metrics.inc("healer:tenant_created")
            logger.info("Created tenant %s for %s", tenant.id, principal.id,
                        extra={"principal_id": principal.id, "tenant_id": tenant.id})
        else:
            bootstrap_metrics.inc("healer:tenant_reused")

        try:
            await self._store.insert_profile(profile_from_principal(principal, tenant.id))
        except ConflictError:
            logger.info("Profile for %s already created concurrently; re-reading", principal.id,
                        extra={"principal_id": principal.id})

        outcome = await self._resolver.resolve(principal.id)
        if outcome.kind is OutcomeKind.FOUND:
            return outcome.profile
        if outcome.error is not None:
            raise outcome.error
        logger.warning("Profile for %s not readable right after heal", principal.id,
                       extra={"principal_id": principal.id})
        return None

    async def _owned_tenant(self, principal_id: str) -> Optional[Tenant]:
        owned = await self._store.find_tenants_by_owner(principal_id)
        if not owned:
            return None
        for tenant in owned:
            if is_canonical(tenant.id):
                return tenant
        return owned[0]
