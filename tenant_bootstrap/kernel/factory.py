# Copyright (c) 2026 TenantBootstrap Contributors. All Rights Reserved.

"""
Record factories shared by signup, auto-heal, migration and the fallback.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from tenant_bootstrap.core.config import settings
from tenant_bootstrap.protocols.identifiers import mint_tenant_id
from tenant_bootstrap.protocols.schema import (
    Principal,
    Profile,
    Role,
    Tenant,
    TenantSettings,
    WorkingHours,
)


def new_tenant(
    owner_principal_id: str,
    name: Optional[str] = None,
    *,
    tenant_id: Optional[str] = None,
    country: Optional[str] = None,
    currency: Optional[str] = None,
    template: Optional[Tenant] = None,
) -> Tenant:
    """
    A fresh trial tenant with a canonical id.

    With a template, plan and settings are copied from it (legacy migration);
    the id, owner and timestamps are always new.
    """
    if template is not None:
        return template.model_copy(
            deep=True,
            update={
                "id": tenant_id or mint_tenant_id(),
                "owner_principal_id": owner_principal_id,
                "name": name or template.name,
                "created_at": datetime.now(timezone.utc),
            },
        )
    tenant_settings = TenantSettings()
    if country:
        tenant_settings.country = country
    if currency:
        tenant_settings.currency = currency
    return Tenant(
        id=tenant_id or mint_tenant_id(),
        owner_principal_id=owner_principal_id,
        name=name or settings.RESTORED_TENANT_NAME,
        settings=tenant_settings,
    )


def placeholder_tenant(owner_principal_id: str) -> Tenant:
    """In-memory tenant meaning 'setup incomplete'. Never persisted."""
    return Tenant(
        id=settings.PENDING_TENANT_ID,
        owner_principal_id=owner_principal_id,
        name=settings.PLACEHOLDER_TENANT_NAME,
        max_branches=1,
        max_staff=1,
        settings=TenantSettings(working_hours=WorkingHours(start="09:00", end="17:00")),
    )


def profile_from_principal(
    principal: Principal,
    tenant_id: str,
    *,
    first_name_default: str = "User",
    last_name_default: str = "Name",
    can_create_expense: bool = True,
) -> Profile:
    """Build a profile from signup metadata; role defaults to tenant-owner."""
    return Profile(
        id=principal.id,
        tenant_id=tenant_id,
        role=Role.parse(principal.requested_role, default=Role.OWNER),
        email=principal.email,
        first_name=principal.first_name or first_name_default,
        last_name=principal.last_name or last_name_default,
        phone=principal.phone,
        can_create_expense=can_create_expense,
    )
