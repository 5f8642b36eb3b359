# Copyright (c) 2026 TenantBootstrap Contributors. All Rights Reserved.

"""
Tenant Identifiers — canonical vs. legacy formats.

Canonical: a random 128-bit UUID rendered as 8-4-4-4-12 hex digits.
Legacy:    anything else stored as a tenant id, typically "BIZ-<epoch ms>"
           minted by older signup code.
"""

from __future__ import annotations

import re
import uuid
from typing import Optional

from tenant_bootstrap.core.config import settings

CANONICAL_PATTERN = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$",
    re.IGNORECASE,
)
LEGACY_PREFIX = "BIZ-"


def is_canonical(tenant_id: Optional[str]) -> bool:
    """True if tenant_id is in canonical UUID form."""
    return bool(tenant_id) and CANONICAL_PATTERN.match(tenant_id) is not None


def is_pending(tenant_id: Optional[str]) -> bool:
    """True if tenant_id is the 'tenant setup incomplete' sentinel."""
    return tenant_id == settings.PENDING_TENANT_ID


def is_legacy(tenant_id: Optional[str]) -> bool:
    """True if tenant_id is set but must be migrated to a canonical id."""
    return bool(tenant_id) and not is_canonical(tenant_id) and not is_pending(tenant_id)


def mint_tenant_id() -> str:
    """Mint a fresh canonical tenant id."""
    return str(uuid.uuid4())


def legacy_tenant_id(epoch_ms: int) -> str:
    """
    Render a legacy tenant id.

    Example:
        legacy_tenant_id(1700000000000) -> "BIZ-1700000000000"
    """
    return f"{LEGACY_PREFIX}{epoch_ms}"
