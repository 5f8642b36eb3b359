# Copyright (c) 2026 TenantBootstrap Contributors. All Rights Reserved.

"""
API Middleware — Trace ID propagation.
"""

from __future__ import annotations

import logging
import time
import uuid

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from tenant_bootstrap.core.metrics import bootstrap_metrics

logger = logging.getLogger("bootstrap.api")


class TraceMiddleware(BaseHTTPMiddleware):
    """
    Generates or propagates X-Trace-Id header for every request.
    Also logs request duration.
    """

    async def dispatch(self, request: Request, call_next):
        trace_id = request.headers.get("X-Trace-Id") or str(uuid.uuid4())
        request.state.trace_id = trace_id

        start = time.time()
        response: Response = await call_next(request)
        elapsed = (time.time() - start) * 1000

        response.headers["X-Trace-Id"] = trace_id
        bootstrap_metrics.observe("api_latency_ms", elapsed)
        logger.info(
            "[api] %s %s -> %d (%.0fms)",
            request.method, request.url.path, response.status_code, elapsed,
            extra={"trace_id": trace_id},
        )
        return response
