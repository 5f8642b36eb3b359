# Copyright (c) 2026 TenantBootstrap Contributors. All Rights Reserved.

"""
API Dependencies — FastAPI dependency injection.
"""

from __future__ import annotations

from typing import Optional

from fastapi import Request

from tenant_bootstrap.core.context import BootstrapContext, get_bootstrap_context


async def get_context() -> BootstrapContext:
    return get_bootstrap_context()


async def get_trace_id(request: Request) -> Optional[str]:
    """Trace id assigned by TraceMiddleware."""
    return getattr(request.state, "trace_id", None)
