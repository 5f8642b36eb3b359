# Copyright (c) 2026 TenantBootstrap Contributors. All Rights Reserved.

"""
Bootstrap Context — Singleton that holds all core component references.

Initialized at startup, injected into API routes via FastAPI Depends.
"""

from __future__ import annotations

from typing import Optional

import redis.asyncio as aioredis

from tenant_bootstrap.core.config import settings
from tenant_bootstrap.kernel.bootstrapper import IdentityBootstrapper
from tenant_bootstrap.kernel.bus import IdentityBus
from tenant_bootstrap.kernel.session_manager import SessionManager
from tenant_bootstrap.kernel.signup import SignupService
from tenant_bootstrap.memory.identity_state import IdentityStateStore
from tenant_bootstrap.resilience.idempotency import InFlightRegistry
from tenant_bootstrap.storage.store import IdentityStore


class BootstrapContext:
    """
    Holds all runtime references for the service.
    Created once at startup, used by all API handlers.
    """

    def __init__(self, redis: aioredis.Redis, store: IdentityStore) -> None:
        self.redis = redis
        self.store = store
        self.registry = InFlightRegistry()
        self.bus = IdentityBus(redis)
        self.identity_state = IdentityStateStore(redis, ttl=settings.IDENTITY_STATE_TTL)
        self.bootstrapper = IdentityBootstrapper(store, self.bus)
        self.sessions = SessionManager(
            self.bootstrapper, self.identity_state, self.bus, registry=self.registry,
        )
        self.signup = SignupService(store, self.sessions)

    async def close(self) -> None:
        await self.registry.drain()
        await self.bus.close()


# ── Global singleton ────────────────────────────────────────

_ctx: Optional[BootstrapContext] = None


def init_bootstrap_context(redis: aioredis.Redis, store: IdentityStore) -> BootstrapContext:
    global _ctx
    _ctx = BootstrapContext(redis, store)
    return _ctx


def get_bootstrap_context() -> BootstrapContext:
    if _ctx is None:
        raise RuntimeError("BootstrapContext not initialized. Call init_bootstrap_context() first.")
    return _ctx
