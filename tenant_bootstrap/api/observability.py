# Copyright (c) 2026 TenantBootstrap Contributors. All Rights Reserved.

"""
Observability API — Metrics and health check.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends

from tenant_bootstrap.api.deps import get_context
from tenant_bootstrap.core.context import BootstrapContext
from tenant_bootstrap.core.metrics import bootstrap_metrics
from tenant_bootstrap.kernel.redis_client import ping_redis

router = APIRouter(tags=["observability"])

VERSION = "0.1.0"


@router.get("/health")
async def health_check(ctx: BootstrapContext = Depends(get_context)):
    """Health check with component status."""
    redis_ok = await ping_redis(ctx.redis)
    published = len(await ctx.identity_state.list_principals()) if redis_ok else None
    return {
        "status": "ok" if redis_ok else "degraded",
        "version": VERSION,
        "redis": "connected" if redis_ok else "unreachable",
        "in_flight": ctx.registry.pending_keys(),
        "published_identities": published,
        "metrics": bootstrap_metrics.snapshot(),
    }


@router.get("/api/metrics")
async def get_metrics():
    """Return current bootstrap metrics."""
    return bootstrap_metrics.snapshot()
