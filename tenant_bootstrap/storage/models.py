# Copyright (c) 2026 TenantBootstrap Contributors. All Rights Reserved.

"""
ORM Models — table definitions for the profile/tenant store.

Tables:
  - profiles:          principal → tenant mapping (one row per principal)
  - tenants:           business records, indexed by owner
  - branches, products, sale_records, expenses:
                       tenant-scoped collections keyed by their own id,
                       carrying a tenant_id used by re-key operations
  - tenant_migrations: progress markers for re-key passes

tenant_id columns carry no foreign key: re-keys are independent writes and a
collection may briefly reference a tenant row that another step creates or
deletes.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    Column, String, Integer, Boolean, Float, DateTime, JSON, Index,
)

from tenant_bootstrap.storage.database import Base


def _utcnow():
    return datetime.now(timezone.utc)


def _genid():
    return str(uuid.uuid4())


# ── Profiles ────────────────────────────────────────────────

class ProfileRecord(Base):
    __tablename__ = "profiles"

    id = Column(String(64), primary_key=True)  # principal id
    tenant_id = Column(String(64), nullable=False, index=True)
    role = Column(String(32), nullable=False, default="Business Owner")
    role_id = Column(String(64), nullable=True)
    branch_id = Column(String(64), nullable=True)
    email = Column(String(320), nullable=False, default="")
    first_name = Column(String(128), nullable=True)
    last_name = Column(String(128), nullable=True)
    phone = Column(String(32), nullable=True)
    must_change_password = Column(Boolean, nullable=False, default=False)
    can_create_expense = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)

    def __repr__(self):
        return f"<Profile {self.id} tenant={self.tenant_id}>"


# ── Tenants ─────────────────────────────────────────────────

class TenantRecord(Base):
    __tablename__ = "tenants"

    id = Column(String(64), primary_key=True)
    owner_principal_id = Column(String(64), nullable=False, index=True)
    name = Column(String(256), nullable=False)
    subscription_plan = Column(String(32), nullable=False, default="Free Trial")
    subscription_status = Column(String(32), nullable=False, default="trial")
    trial_ends_at = Column(DateTime(timezone=True), nullable=True)
    max_branches = Column(Integer, nullable=False, default=1)
    max_staff = Column(Integer, nullable=False, default=5)
    settings = Column(JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)

    def __repr__(self):
        return f"<Tenant {self.id} owner={self.owner_principal_id}>"


# ── Tenant-scoped collections ───────────────────────────────

class BranchRecord(Base):
    __tablename__ = "branches"

    id = Column(String(64), primary_key=True, default=_genid)
    tenant_id = Column(String(64), nullable=False, index=True)
    name = Column(String(256), nullable=False)
    location = Column(String(256), nullable=True)
    status = Column(String(16), nullable=False, default="active")
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)


class ProductRecord(Base):
    __tablename__ = "products"

    id = Column(String(64), primary_key=True, default=_genid)
    tenant_id = Column(String(64), nullable=False, index=True)
    branch_id = Column(String(64), nullable=True)
    name = Column(String(256), nullable=False)
    sku = Column(String(64), nullable=True)
    quantity = Column(Integer, nullable=False, default=0)
    price = Column(Float, nullable=False, default=0.0)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)


class SaleRecord(Base):
    __tablename__ = "sale_records"

    id = Column(String(64), primary_key=True, default=_genid)
    tenant_id = Column(String(64), nullable=False, index=True)
    branch_id = Column(String(64), nullable=True)
    total = Column(Float, nullable=False, default=0.0)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)


class ExpenseRecord(Base):
    __tablename__ = "expenses"

    id = Column(String(64), primary_key=True, default=_genid)
    tenant_id = Column(String(64), nullable=False, index=True)
    branch_id = Column(String(64), nullable=True)
    category = Column(String(64), nullable=True)
    amount = Column(Float, nullable=False, default=0.0)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)


# Collection name → model. "profile" first: staff profiles move with the tenant.
TENANT_SCOPED_MODELS = {
    "profile": ProfileRecord,
    "branch": BranchRecord,
    "product": ProductRecord,
    "sale_record": SaleRecord,
    "expense": ExpenseRecord,
}


# ── Migration progress ──────────────────────────────────────

class TenantMigrationRecord(Base):
    __tablename__ = "tenant_migrations"

    id = Column(String(64), primary_key=True, default=_genid)
    owner_principal_id = Column(String(64), nullable=False)
    source_tenant_id = Column(String(64), nullable=False)
    target_tenant_id = Column(String(64), nullable=False)
    kind = Column(String(32), nullable=False)      # legacy_id | orphan_merge
    status = Column(String(32), nullable=False, default="pending")  # pending/rekeyed/complete
    completed_collections = Column(JSON, nullable=False, default=list)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)

    __table_args__ = (
        Index("idx_migrations_source_status", "source_tenant_id", "status"),
    )

    def __repr__(self):
        return f"<Migration {self.source_tenant_id}→{self.target_tenant_id} {self.status}>"
