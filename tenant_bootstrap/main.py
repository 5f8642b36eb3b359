# Copyright (c) 2026 TenantBootstrap Contributors. All Rights Reserved.

"""
TenantBootstrap Application Entry Point.

FastAPI app with lifespan, middleware and the identity/observability routers.
Entry point: uvicorn tenant_bootstrap.main:app --host 0.0.0.0 --port 8200
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from tenant_bootstrap.api.errors import APIError, api_error_handler, bootstrap_error_handler
from tenant_bootstrap.api.identity import router as identity_router
from tenant_bootstrap.api.middleware import TraceMiddleware
from tenant_bootstrap.api.observability import router as observability_router
from tenant_bootstrap.core.config import settings
from tenant_bootstrap.core.context import init_bootstrap_context
from tenant_bootstrap.core.logging import setup_logging
from tenant_bootstrap.kernel.redis_client import close_redis_pool, get_redis_pool
from tenant_bootstrap.protocols.errors import BootstrapError
from tenant_bootstrap.storage.database import close_db, get_session_factory, init_db
from tenant_bootstrap.storage.store import SqlIdentityStore

logger = logging.getLogger("bootstrap.main")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage startup/shutdown of Redis, the SQL store and the context."""
    setup_logging(settings.LOG_LEVEL)
    redis = await get_redis_pool()
    await init_db()
    store = SqlIdentityStore(get_session_factory(), timeout=settings.STORE_TIMEOUT)
    ctx = init_bootstrap_context(redis, store)
    logger.info("[TenantBootstrap] Service ready (env=%s)", settings.BOOTSTRAP_ENV)
    yield
    await ctx.close()
    await close_db()
    await close_redis_pool()
    logger.info("[TenantBootstrap] Shutdown complete")


app = FastAPI(
    title="TenantBootstrap",
    description="Tenant identity bootstrap and self-healing reconciliation",
    version="0.1.0",
    lifespan=lifespan,
)

# ── Middleware ───────────────────────────────────────────────
app.add_middleware(TraceMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ── Error Handlers ──────────────────────────────────────────
app.add_exception_handler(APIError, api_error_handler)
app.add_exception_handler(BootstrapError, bootstrap_error_handler)

# ── Routes ──────────────────────────────────────────────────
app.include_router(identity_router, prefix="/api")
app.include_router(observability_router)
