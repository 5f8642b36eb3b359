# Copyright (c) 2026 TenantBootstrap Contributors. All Rights Reserved.

"""
Namespace Helper — Redis key layout for published identity state.

Keys are principal-scoped: bootstrap:{resource_type}:{principal_id}
"""

from __future__ import annotations


def get_key(resource_type: str, principal_id: str) -> str:
    """
    Build a principal-scoped Redis key.

    Examples:
        get_key("identity", "p_001") -> "bootstrap:identity:p_001"
    """
    return f"bootstrap:{resource_type}:{principal_id}"


def get_identity_key(principal_id: str) -> str:
    """
    Redis hash holding the published Resolution and generation.

    Example:
        get_identity_key("p_001") -> "bootstrap:identity:p_001"
    """
    return get_key("identity", principal_id)


def get_channel(principal_id: str) -> str:
    """
    Build a principal-scoped Pub/Sub channel name.

    Example:
        get_channel("p_001") -> "bootstrap:p_001:events"
    """
    return f"bootstrap:{principal_id}:events"


def get_inflight_key(principal_id: str) -> str:
    """In-flight registry key shared by bootstrap and signup."""
    return f"bootstrap:{principal_id}"
