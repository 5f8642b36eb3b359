# Copyright (c) 2026 TenantBootstrap Contributors. All Rights Reserved.

"""
API Error Handling — Unified error structure.
"""

from __future__ import annotations

import uuid
from typing import Any, Dict, Optional

from fastapi import Request
from fastapi.responses import JSONResponse

from tenant_bootstrap.protocols.errors import (
    BootstrapError,
    ConflictError,
    SchemaError,
    TenantPermissionError,
    TransientStoreError,
)

_STATUS_BY_ERROR = [
    (ConflictError, 409),
    (TenantPermissionError, 403),
    (TransientStoreError, 503),
    (SchemaError, 500),
]


class APIError(Exception):
    """Base API error with structured response."""

    def __init__(
        self,
        code: str,
        message: str,
        status_code: int = 400,
        details: Optional[Dict[str, Any]] = None,
        trace_id: Optional[str] = None,
    ):
        self.code = code
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        self.trace_id = trace_id or str(uuid.uuid4())
        super().__init__(message)

    @classmethod
    def from_bootstrap_error(cls, exc: BootstrapError, trace_id: Optional[str] = None) -> "APIError":
        status_code = next((s for t, s in _STATUS_BY_ERROR if isinstance(exc, t)), 500)
        return cls(
            code=exc.code,
            message=exc.message,
            status_code=status_code,
            details={"retryable": exc.retryable},
            trace_id=trace_id,
        )


class MissingPrincipalError(APIError):
    def __init__(self, trace_id: Optional[str] = None):
        super().__init__(
            code="MISSING_PRINCIPAL",
            message="Signup requires an authenticated principal",
            status_code=401,
            trace_id=trace_id,
        )


async def api_error_handler(request: Request, exc: APIError) -> JSONResponse:
    """Global exception handler for APIError."""
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "code": exc.code,
            "message": exc.message,
            "trace_id": exc.trace_id,
            "details": exc.details,
        },
    )


async def bootstrap_error_handler(request: Request, exc: BootstrapError) -> JSONResponse:
    """Domain errors that escaped a route (signup conflicts, store outages)."""
    trace_id = getattr(request.state, "trace_id", None)
    return await api_error_handler(request, APIError.from_bootstrap_error(exc, trace_id))
