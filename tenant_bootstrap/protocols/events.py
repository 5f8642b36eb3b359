# Copyright (c) 2026 TenantBootstrap Contributors. All Rights Reserved.

"""
Event Type Constants — The vocabulary of TenantBootstrap.

All event types MUST be UPPERCASE strings.
"""

# --- Session events (auth provider → SessionManager) ---
SIGNED_IN = "SIGNED_IN"
SIGNED_OUT = "SIGNED_OUT"
INITIAL_SESSION = "INITIAL_SESSION"
TOKEN_REFRESHED = "TOKEN_REFRESHED"
USER_UPDATED = "USER_UPDATED"

# Events that (re)trigger a bootstrap when they carry a principal
RESOLVE_TRIGGERS = {SIGNED_IN, INITIAL_SESSION, TOKEN_REFRESHED, USER_UPDATED}

ALL_SESSION_EVENTS = RESOLVE_TRIGGERS | {SIGNED_OUT}

# --- Identity events (SessionManager → application) ---
IDENTITY_RESOLVING = "IDENTITY_RESOLVING"
IDENTITY_RESOLVED = "IDENTITY_RESOLVED"
IDENTITY_DEGRADED = "IDENTITY_DEGRADED"
IDENTITY_CLEARED = "IDENTITY_CLEARED"

# --- Tenant normalisation ---
TENANT_MIGRATED = "TENANT_MIGRATED"
TENANT_RECONCILED = "TENANT_RECONCILED"

ALL_IDENTITY_EVENTS = {
    IDENTITY_RESOLVING,
    IDENTITY_RESOLVED,
    IDENTITY_DEGRADED,
    IDENTITY_CLEARED,
    TENANT_MIGRATED,
    TENANT_RECONCILED,
}
