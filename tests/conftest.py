# Copyright (c) 2026 TenantBootstrap Contributors. All Rights Reserved.

"""
Shared test fixtures for all TenantBootstrap tests.
"""

import pytest
import fakeredis.aioredis

from tenant_bootstrap.core.config import settings
from tenant_bootstrap.core.context import init_bootstrap_context
from tenant_bootstrap.core.metrics import bootstrap_metrics
from tenant_bootstrap.kernel.redis_client import inject_redis_for_test
from tenant_bootstrap.protocols.schema import Principal, Profile, Role, Tenant
from tenant_bootstrap.resilience.retry import FIXED, LINEAR, RetryManager, RetryPolicy
from tenant_bootstrap.storage.memory_store import InMemoryIdentityStore


@pytest.fixture(autouse=True)
def no_retry_delays(monkeypatch):
    """Keep the retry budgets but wait zero seconds between attempts."""
    monkeypatch.setattr(settings, "TRANSIENT_BACKOFF_BASE", 0.0)
    monkeypatch.setattr(settings, "NOT_FOUND_DELAY", 0.0)


@pytest.fixture(autouse=True)
def reset_metrics():
    bootstrap_metrics.reset()
    yield
    bootstrap_metrics.reset()


@pytest.fixture
def store() -> InMemoryIdentityStore:
    return InMemoryIdentityStore()


@pytest.fixture
def fast_retry() -> RetryManager:
    """Transient budget of 3 retries with no delay."""
    return RetryManager(RetryPolicy(max_retries=3, backoff_base=0.0, strategy=LINEAR), name="test")


@pytest.fixture
def fast_not_found_retry() -> RetryManager:
    return RetryManager(RetryPolicy(max_retries=2, backoff_base=0.0, strategy=FIXED), name="test:nf")


@pytest.fixture
def mock_redis(store):
    """Provide a FakeRedis async instance and initialize BootstrapContext."""
    r = fakeredis.aioredis.FakeRedis(decode_responses=True)
    inject_redis_for_test(r)

    # API routes call get_bootstrap_context()
    init_bootstrap_context(r, store)
    return r


@pytest.fixture
def owner_principal() -> Principal:
    return Principal(
        id="p1",
        email="amina@example.com",
        phone="+254700000001",
        metadata={"first_name": "Amina", "last_name": "Otieno", "role": "Business Owner"},
    )


@pytest.fixture
def bare_principal() -> Principal:
    """Principal without signup metadata (cannot be auto-healed)."""
    return Principal(id="p9", email="nobody@example.com")


@pytest.fixture
def make_tenant(store):
    """Seed a tenant row directly into the in-memory store."""
    def _make(principal_id: str, tenant_id: str, **fields) -> Tenant:
        tenant = Tenant(id=tenant_id, owner_principal_id=principal_id, **fields)
        store.tenants[tenant.id] = tenant
        return tenant
    return _make


@pytest.fixture
def make_profile(store):
    """Seed a profile row directly into the in-memory store."""
    def _make(principal_id: str, tenant_id: str, role: Role = Role.OWNER) -> Profile:
        profile = Profile(id=principal_id, tenant_id=tenant_id, role=role,
                          first_name="Amina", last_name="Otieno")
        store.profiles[profile.id] = profile
        return profile
    return _make
