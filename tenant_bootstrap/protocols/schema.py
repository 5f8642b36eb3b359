# Copyright (c) 2026 TenantBootstrap Contributors. All Rights Reserved.

"""
TenantBootstrap Protocol Schema — identities, tenants and the values exchanged
with the auth provider and the rest of the application.

Design decisions:
  - Stored records tolerate both snake_case and camelCase keys and fill
    missing settings with defaults (records written by older clients drift).
  - ResolvedIdentity is always a complete (profile, tenant) pair whose ids agree.
  - Resolution is the only value published to the application.
"""

from __future__ import annotations

import time
import uuid
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from tenant_bootstrap.core.config import settings as app_settings
from tenant_bootstrap.protocols.events import ALL_SESSION_EVENTS
from tenant_bootstrap.protocols.identifiers import is_canonical


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def trial_end(days: Optional[int] = None) -> datetime:
    """End of a fresh trial period starting now."""
    return _utcnow() + timedelta(days=app_settings.TRIAL_DAYS if days is None else days)


class _StoredModel(BaseModel):
    """Base for records read back from the store (snake_case or camelCase keys)."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )


# ── Roles ────────────────────────────────────────────────────


class Role(str, Enum):
    OWNER = "Business Owner"
    MANAGER = "Manager"
    CASHIER = "Cashier"
    ACCOUNTANT = "Accountant"
    STAFF = "Staff"

    @classmethod
    def parse(cls, value: Any, default: "Role") -> "Role":
        """Map a free-form role string onto a Role, falling back to default."""
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            for role in cls:
                if role.value.lower() == value.strip().lower():
                    return role
        return default


# ── Principal & Session Events ──────────────────────────────


class Principal(BaseModel):
    """Authenticated identity as issued by the auth provider."""

    id: str = Field(..., min_length=1, description="Principal id from the auth provider")
    email: str = Field(default="")
    phone: Optional[str] = None
    metadata: Dict[str, Any] = Field(
        default_factory=dict,
        description="Attributes captured once at signup (first_name, last_name, role)",
    )
    created_at: Optional[datetime] = None

    def _text(self, *keys: str) -> Optional[str]:
        """First usable value among keys. Numbers become strings; other types are ignored."""
        for key in keys:
            value = self.metadata.get(key)
            if isinstance(value, bool):
                continue
            if isinstance(value, (int, float)):
                value = str(value)
            if isinstance(value, str) and value.strip():
                return value.strip()
        return None

    @property
    def first_name(self) -> Optional[str]:
        return self._text("first_name", "firstName")

    @property
    def last_name(self) -> Optional[str]:
        return self._text("last_name", "lastName")

    @property
    def requested_role(self) -> Optional[str]:
        return self._text("role")

    @property
    def has_signup_metadata(self) -> bool:
        """True if the principal carries enough signup data to rebuild a profile."""
        return any((self.first_name, self.last_name, self.requested_role))


class SessionEvent(BaseModel):
    """Session-change notification from the auth provider."""

    type: str = Field(..., min_length=1)
    principal: Optional[Principal] = None
    trace_id: Optional[str] = None

    @field_validator("type")
    @classmethod
    def type_must_be_known(cls, v: str) -> str:
        if v != v.upper():
            raise ValueError(f"Session event type must be UPPERCASE, got '{v}'")
        if v not in ALL_SESSION_EVENTS:
            raise ValueError(f"Unknown session event type '{v}'")
        return v


# ── Tenant ───────────────────────────────────────────────────


class WorkingHours(_StoredModel):
    start: str = "09:00"
    end: str = "21:00"


class TaxConfig(_StoredModel):
    enabled: bool = False
    name: str = "VAT"
    percentage: float = 16
    inclusive: bool = False


class Branding(_StoredModel):
    logo_url: Optional[str] = None
    primary_color: Optional[str] = None
    accent_color: Optional[str] = None
    receipt_header: Optional[str] = None
    receipt_footer: Optional[str] = None
    hide_platform_branding: bool = False


class TenantSettings(_StoredModel):
    currency: str = Field(default_factory=lambda: app_settings.DEFAULT_CURRENCY)
    country: str = Field(default_factory=lambda: app_settings.DEFAULT_COUNTRY)
    timezone: str = Field(default_factory=lambda: app_settings.DEFAULT_TIMEZONE)
    business_type: Optional[str] = None
    working_hours: WorkingHours = Field(default_factory=WorkingHours)
    tax_config: TaxConfig = Field(default_factory=TaxConfig)
    branding: Branding = Field(default_factory=Branding)
    completed_onboarding: bool = False

    @classmethod
    def from_stored(cls, raw: Optional[Dict[str, Any]]) -> "TenantSettings":
        """Rebuild settings from a stored blob, defaulting anything missing."""
        return cls.model_validate(raw or {})


class Tenant(_StoredModel):
    """A business record; the unit of data isolation."""

    id: str = Field(..., min_length=1)
    owner_principal_id: str = Field(..., min_length=1)
    name: str = Field(default_factory=lambda: app_settings.RESTORED_TENANT_NAME)
    subscription_plan: str = "Free Trial"
    subscription_status: str = "trial"
    trial_ends_at: Optional[datetime] = Field(default_factory=lambda: trial_end())
    max_branches: int = 1
    max_staff: int = 5
    settings: TenantSettings = Field(default_factory=TenantSettings)
    created_at: datetime = Field(default_factory=_utcnow)

    @property
    def is_canonical(self) -> bool:
        return is_canonical(self.id)


# ── Profile ──────────────────────────────────────────────────


class Profile(_StoredModel):
    """Principal → tenant mapping. Exactly one per principal."""

    id: str = Field(..., min_length=1, description="Same value as the principal id")
    tenant_id: str = Field(..., min_length=1)
    role: Role = Role.OWNER
    email: str = ""
    first_name: str = ""
    last_name: str = ""
    phone: Optional[str] = None
    branch_id: Optional[str] = None
    role_id: Optional[str] = None
    must_change_password: bool = False
    can_create_expense: bool = False
    created_at: datetime = Field(default_factory=_utcnow)

    @field_validator("role", mode="before")
    @classmethod
    def coerce_role(cls, v: Any) -> Role:
        # Unknown stored roles get the least-privileged role
        return Role.parse(v, default=Role.STAFF)

    @property
    def display_name(self) -> str:
        full = f"{self.first_name} {self.last_name}".strip()
        return full or self.email or self.id

    @property
    def is_owner(self) -> bool:
        return self.role is Role.OWNER


# ── Output ───────────────────────────────────────────────────


class ResolvedIdentity(BaseModel):
    """The (profile, tenant) pair handed to the application."""

    profile: Profile
    tenant: Tenant
    degraded: bool = False
    reason: Optional[str] = None

    @model_validator(mode="after")
    def pair_must_agree(self) -> "ResolvedIdentity":
        if self.profile.tenant_id != self.tenant.id:
            raise ValueError(
                f"Profile tenant '{self.profile.tenant_id}' does not match "
                f"tenant '{self.tenant.id}'"
            )
        return self


class ResolutionState(str, Enum):
    RESOLVING = "resolving"
    RESOLVED = "resolved"
    DEGRADED = "degraded"
    UNRESOLVED = "unresolved"


class ResolutionError(BaseModel):
    code: str
    message: str
    retryable: bool = False


class Resolution(BaseModel):
    """Published per principal: a complete identity or an explicit signal."""

    state: ResolutionState
    principal_id: Optional[str] = None
    identity: Optional[ResolvedIdentity] = None
    error: Optional[ResolutionError] = None
    resolved_at: float = Field(default_factory=time.time)

    @model_validator(mode="after")
    def identity_matches_state(self) -> "Resolution":
        has_identity = self.identity is not None
        needs_identity = self.state in (ResolutionState.RESOLVED, ResolutionState.DEGRADED)
        if has_identity != needs_identity:
            raise ValueError(f"Resolution state '{self.state.value}' with identity={has_identity}")
        return self

    # ── Factory Methods ─────────────────────────────────────────

    @classmethod
    def resolving(cls, principal_id: str) -> "Resolution":
        return cls(state=ResolutionState.RESOLVING, principal_id=principal_id)

    @classmethod
    def unresolved(cls, principal_id: Optional[str] = None) -> "Resolution":
        return cls(state=ResolutionState.UNRESOLVED, principal_id=principal_id)

    @classmethod
    def of(cls, identity: ResolvedIdentity, error: Optional[Dict[str, Any]] = None) -> "Resolution":
        """Wrap an identity; degraded identities produce a DEGRADED resolution."""
        state = ResolutionState.DEGRADED if identity.degraded else ResolutionState.RESOLVED
        return cls(
            state=state,
            principal_id=identity.profile.id,
            identity=identity,
            error=ResolutionError(**error) if error else None,
        )

    @property
    def is_final(self) -> bool:
        return self.state in (ResolutionState.RESOLVED, ResolutionState.DEGRADED)

    # ── Serialization Helpers ───────────────────────────────────

    def to_json(self) -> str:
        return self.model_dump_json()

    @classmethod
    def from_json(cls, data: str) -> "Resolution":
        return cls.model_validate_json(data)


class IdentityEvent(BaseModel):
    """Notification published to the application on identity changes."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    type: str = Field(..., min_length=1)
    principal_id: str = Field(..., min_length=1)
    payload: Dict[str, Any] = Field(default_factory=dict)
    created_at: float = Field(default_factory=time.time)
    trace_id: Optional[str] = None

    @field_validator("type")
    @classmethod
    def type_must_be_uppercase(cls, v: str) -> str:
        if v != v.upper():
            raise ValueError(f"Event type must be UPPERCASE, got '{v}'")
        return v

    def to_json(self) -> str:
        return self.model_dump_json()

    @classmethod
    def from_json(cls, data: str) -> "IdentityEvent":
        return cls.model_validate_json(data)

    @classmethod
    def create(
        cls,
        *,
        type: str,
        principal_id: str,
        payload: Optional[Dict[str, Any]] = None,
        trace_id: Optional[str] = None,
    ) -> "IdentityEvent":
        """Convenience factory with keyword-only arguments."""
        return cls(
            type=type,
            principal_id=principal_id,
            payload=payload or {},
            trace_id=trace_id,
        )


# ── Migration progress ──────────────────────────────────────


class MigrationKind(str, Enum):
    LEGACY_ID = "legacy_id"
    ORPHAN_MERGE = "orphan_merge"


class MigrationStatus(str, Enum):
    PENDING = "pending"      # target chosen, re-keys outstanding
    REKEYED = "rekeyed"      # every collection moved, source tenant still present
    COMPLETE = "complete"    # source tenant deleted


class MigrationProgress(BaseModel):
    """Persisted marker of a re-key pass from one tenant id to another."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    owner_principal_id: str
    source_tenant_id: str
    target_tenant_id: str
    kind: MigrationKind
    status: MigrationStatus = MigrationStatus.PENDING
    completed_collections: List[str] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)

    @property
    def is_open(self) -> bool:
        return self.status is not MigrationStatus.COMPLETE

    def remaining(self, collections: List[str]) -> List[str]:
        return [c for c in collections if c not in self.completed_collections]

    def mark_collection(self, collection: str) -> None:
        if collection not in self.completed_collections:
            self.completed_collections.append(collection)
        self.updated_at = _utcnow()

    def advance(self, status: MigrationStatus) -> None:
        self.status = status
        self.updated_at = _utcnow()
