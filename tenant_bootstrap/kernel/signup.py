# Copyright (c) 2026 TenantBootstrap Contributors. All Rights Reserved.

"""
Business Signup — creates the owner's tenant and profile, then bootstraps.

The whole registration runs in the principal's in-flight slot, so session
events arriving meanwhile await the signup's Resolution instead of healing a
half-written account.
"""

from __future__ import annotations

import logging
from typing import Optional

from tenant_bootstrap.core.metrics import bootstrap_metrics
from tenant_bootstrap.kernel.factory import new_tenant, profile_from_principal
from tenant_bootstrap.kernel.namespace import get_inflight_key
from tenant_bootstrap.kernel.session_manager import SessionManager
from tenant_bootstrap.protocols.errors import ConflictError
from tenant_bootstrap.protocols.identifiers import is_canonical
from tenant_bootstrap.protocols.schema import Principal, Resolution, Role, Tenant
from tenant_bootstrap.resilience.retry import RetryManager, transient_policy
from tenant_bootstrap.storage.store import IdentityStore

logger = logging.getLogger("bootstrap.signup")


class SignupService:

    def __init__(
        self,
        store: IdentityStore,
        sessions: SessionManager,
        retry: Optional[RetryManager] = None,
    ) -> None:
        self._store = store
        self._sessions = sessions
        self._retry = retry or RetryManager(transient_policy(), name="signup")

    async def register_business(
        self,
        principal: Principal,
        business_name: str,
        phone: Optional[str] = None,
        country: Optional[str] = None,
        currency: Optional[str] = None,
        trace_id: Optional[str] = None,
    ) -> Resolution:
        """
        Register `principal` as owner of a new business.

        Raises:
            ConflictError: the principal already has a profile
            SchemaError / TransientStoreError: the store rejected the writes
        """
        registry = self._sessions.registry
        key = get_inflight_key(principal.id)
        await registry.wait(key)
        return await registry.run_once(
            key,
            lambda: self._register(principal, business_name, phone, country, currency, trace_id),
        )

    async def _register(
        self,
        principal: Principal,
        business_name: str,
        phone: Optional[str],
        country: Optional[str],
        currency: Optional[str],
        trace_id: Optional[str],
    ) -> Resolution:
        log_extra = {"principal_id": principal.id, "trace_id": trace_id}
        if await self._retry.call(self._store.get_profile, principal.id) is not None:
            raise ConflictError(f"Principal '{principal.id}' is already registered")

        tenant = await self._owned_tenant(principal.id)
        if tenant is None:
            tenant = new_tenant(principal.id, business_name, country=country, currency=currency)
            await self._retry.call(self._store.insert_tenant, tenant)
            logger.info("Created tenant %s '%s'", tenant.id, tenant.name, extra=log_extra)
        else:
            logger.info("Reusing tenant %s for signup", tenant.id, extra=log_extra)

        profile = profile_from_principal(principal, tenant.id).model_copy(
            update={"role": Role.OWNER, "phone": phone or principal.phone},
        )
        try:
            await self._retry.call(self._store.insert_profile, profile)
        except ConflictError as exc:
            raise ConflictError(f"Principal '{principal.id}' is already registered", cause=exc)

        bootstrap_metrics.inc("signup:registered")
        return await self._sessions.bootstrap_and_publish(principal, trace_id)

    async def _owned_tenant(self, principal_id: str) -> Optional[Tenant]:
        owned = await self._retry.call(self._store.find_tenants_by_owner, principal_id)
        for tenant in owned:
            if is_canonical(tenant.id):
                return tenant
        return None
