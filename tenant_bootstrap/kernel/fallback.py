# Copyright (c) 2026 TenantBootstrap Contributors. All Rights Reserved.

"""
Session Fallback Builder — the last-resort identity.

Synthesizes a degraded ResolvedIdentity from the principal and its session
metadata alone. Nothing here touches the store: the tenant is either a record
the caller already read, or the in-memory "setup pending" placeholder.
"""

from __future__ import annotations

import logging
from typing import Optional

from tenant_bootstrap.core.metrics import bootstrap_metrics
from tenant_bootstrap.kernel.factory import placeholder_tenant, profile_from_principal
from tenant_bootstrap.protocols.schema import Principal, Profile, ResolvedIdentity, Tenant

logger = logging.getLogger("bootstrap.fallback")


class SessionFallbackBuilder:

    def build(
        self,
        principal: Principal,
        reason: str,
        profile: Optional[Profile] = None,
        tenant: Optional[Tenant] = None,
    ) -> ResolvedIdentity:
        """
        Build a degraded identity for `principal`.

        Args:
            reason: why persistence-based recovery failed (surfaced to the app)
            profile: a profile that was read but whose tenant is unusable
            tenant: a tenant owned by the principal, read best-effort
        """
        if tenant is None:
            tenant = placeholder_tenant(principal.id)

        if profile is None:
            profile = profile_from_principal(
                principal,
                tenant.id,
                first_name_default="Unknown",
                last_name_default="User",
                can_create_expense=False,
            )
        else:
            profile = profile.model_copy(update={"tenant_id": tenant.id})

        bootstrap_metrics.inc("fallback:built")
        logger.warning("Fallback identity for %s (tenant %s): %s", principal.id, tenant.id, reason,
                       extra={"principal_id": principal.id, "tenant_id": tenant.id})
        return ResolvedIdentity(profile=profile, tenant=tenant, degraded=True, reason=reason)
