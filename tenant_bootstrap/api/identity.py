# Copyright (c) 2026 TenantBootstrap Contributors. All Rights Reserved.

"""
Identity API — session events in, published Resolutions out.
"""

from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from tenant_bootstrap.api.deps import get_context, get_trace_id
from tenant_bootstrap.api.errors import APIError, MissingPrincipalError
from tenant_bootstrap.core.context import BootstrapContext
from tenant_bootstrap.protocols.errors import BootstrapError
from tenant_bootstrap.protocols.schema import Principal, SessionEvent

router = APIRouter(tags=["identity"])


class SignupRequest(BaseModel):
    principal: Optional[Principal] = None
    business_name: str = Field(..., min_length=1)
    phone: Optional[str] = None
    country: Optional[str] = None
    currency: Optional[str] = None


@router.post("/session/events")
async def ingest_session_event(
    event: SessionEvent,
    ctx: BootstrapContext = Depends(get_context),
    trace_id: Optional[str] = Depends(get_trace_id),
) -> Dict[str, Any]:
    """Apply a session-change event from the auth provider."""
    if event.trace_id is None:
        event = event.model_copy(update={"trace_id": trace_id})
    resolution = await ctx.sessions.handle_event(event)
    return resolution.model_dump(mode="json")


@router.get("/identity/{principal_id}")
async def get_identity(
    principal_id: str,
    ctx: BootstrapContext = Depends(get_context),
) -> Dict[str, Any]:
    """Currently published identity of a principal."""
    resolution = await ctx.sessions.current(principal_id)
    return resolution.model_dump(mode="json")


@router.post("/signup", status_code=201)
async def signup(
    req: SignupRequest,
    ctx: BootstrapContext = Depends(get_context),
    trace_id: Optional[str] = Depends(get_trace_id),
) -> Dict[str, Any]:
    """Register a business for an authenticated principal."""
    if req.principal is None:
        raise MissingPrincipalError(trace_id=trace_id)
    try:
        resolution = await ctx.signup.register_business(
            req.principal,
            req.business_name,
            phone=req.phone,
            country=req.country,
            currency=req.currency,
            trace_id=trace_id,
        )
    except BootstrapError as exc:
        raise APIError.from_bootstrap_error(exc, trace_id=trace_id)
    return resolution.model_dump(mode="json")
