# Copyright (c) 2026 TenantBootstrap Contributors. All Rights Reserved.
"""Unit tests for SessionManager."""

import asyncio

import pytest

from tenant_bootstrap.core.context import get_bootstrap_context
from tenant_bootstrap.core.metrics import bootstrap_metrics
from tenant_bootstrap.kernel.bootstrapper import IdentityBootstrapper
from tenant_bootstrap.kernel.bus import IdentityBus
from tenant_bootstrap.kernel.session_manager import SessionManager
from tenant_bootstrap.memory.identity_state import IdentityStateStore
from tenant_bootstrap.protocols.events import (
    IDENTITY_CLEARED,
    IDENTITY_RESOLVED,
    IDENTITY_RESOLVING,
    INITIAL_SESSION,
    SIGNED_IN,
    SIGNED_OUT,
    TOKEN_REFRESHED,
)
from tenant_bootstrap.protocols.schema import ResolutionState, SessionEvent
from tenant_bootstrap.storage.memory_store import InMemoryIdentityStore


class GatedStore(InMemoryIdentityStore):
    """Profile reads block until the test opens the gate."""

    def __init__(self):
        super().__init__()
        self.entered = asyncio.Event()
        self.gate = asyncio.Event()

    async def get_profile(self, principal_id):
        self.entered.set()
        await self.gate.wait()
        return await super().get_profile(principal_id)


@pytest.fixture
def sessions(mock_redis):
    return get_bootstrap_context().sessions


class TestSessionEvents:
    @pytest.mark.asyncio
    async def test_signed_in_publishes_identity(self, sessions, owner_principal):
        resolution = await sessions.handle_event(
            SessionEvent(type=SIGNED_IN, principal=owner_principal)
        )
        assert resolution.state is ResolutionState.RESOLVED

        current = await sessions.current("p1")
        assert current.state is ResolutionState.RESOLVED
        assert current.identity.tenant.id == resolution.identity.tenant.id

    @pytest.mark.asyncio
    async def test_initial_session_without_principal(self, sessions, store):
        resolution = await sessions.handle_event(SessionEvent(type=INITIAL_SESSION))
        assert resolution.state is ResolutionState.UNRESOLVED
        assert resolution.principal_id is None
        assert store.calls["get_profile"] == 0

    @pytest.mark.asyncio
    async def test_current_without_bootstrap(self, sessions):
        current = await sessions.current("nobody")
        assert current.state is ResolutionState.UNRESOLVED
        assert current.principal_id == "nobody"

    @pytest.mark.asyncio
    async def test_signed_out_clears(self, sessions, owner_principal):
        await sessions.handle_event(SessionEvent(type=SIGNED_IN, principal=owner_principal))

        resolution = await sessions.handle_event(
            SessionEvent(type=SIGNED_OUT, principal=owner_principal)
        )

        assert resolution.state is ResolutionState.UNRESOLVED
        current = await sessions.current("p1")
        assert current.state is ResolutionState.UNRESOLVED

    @pytest.mark.asyncio
    async def test_token_refresh_reuses_existing_identity(self, sessions, store, owner_principal):
        first = await sessions.handle_event(SessionEvent(type=SIGNED_IN, principal=owner_principal))
        second = await sessions.handle_event(
            SessionEvent(type=TOKEN_REFRESHED, principal=owner_principal)
        )
        assert second.identity.tenant.id == first.identity.tenant.id
        assert len(store.tenants) == 1


class TestCoalescing:
    @pytest.mark.asyncio
    async def test_concurrent_events_share_one_bootstrap(self, sessions, store, owner_principal):
        results = await asyncio.gather(*[
            sessions.handle_event(SessionEvent(type=SIGNED_IN, principal=owner_principal))
            for _ in range(3)
        ])

        assert len(store.tenants) == 1
        assert {r.identity.tenant.id for r in results} == set(store.tenants)
        assert bootstrap_metrics.get_counter("resolution:resolved") == 1


class TestSignOutRace:
    @pytest.mark.asyncio
    async def test_sign_out_discards_in_flight_result(self, mock_redis, owner_principal):
        store = GatedStore()
        bus = IdentityBus(mock_redis)
        sessions = SessionManager(
            IdentityBootstrapper(store, bus), IdentityStateStore(mock_redis), bus,
        )

        task = asyncio.create_task(sessions.resolve(owner_principal))
        await store.entered.wait()
        await sessions.sign_out("p1")
        store.gate.set()
        resolution = await task

        assert resolution.state is ResolutionState.UNRESOLVED
        current = await sessions.current("p1")
        assert current.state is ResolutionState.UNRESOLVED
        # the heal itself still finished
        assert "p1" in store.profiles

    @pytest.mark.asyncio
    async def test_sign_in_after_sign_out_gets_fresh_run(self, mock_redis, owner_principal):
        store = GatedStore()
        bus = IdentityBus(mock_redis)
        sessions = SessionManager(
            IdentityBootstrapper(store, bus), IdentityStateStore(mock_redis), bus,
        )

        first = asyncio.create_task(sessions.resolve(owner_principal))
        await store.entered.wait()
        await sessions.sign_out("p1")
        second = asyncio.create_task(
            sessions.handle_event(SessionEvent(type=SIGNED_IN, principal=owner_principal))
        )
        await asyncio.sleep(0.05)
        store.gate.set()

        assert (await first).state is ResolutionState.UNRESOLVED
        resolution = await second
        assert resolution.state is ResolutionState.RESOLVED
        assert (await sessions.current("p1")).state is ResolutionState.RESOLVED
        assert len(store.tenants) == 1


class TestPublishedEvents:
    @pytest.mark.asyncio
    async def test_identity_events_published(self, mock_redis, sessions, owner_principal):
        received = []

        async def handler(event):
            received.append(event.type)

        listener = IdentityBus(mock_redis)
        await listener.subscribe("p1", handler)

        await sessions.handle_event(SessionEvent(type=SIGNED_IN, principal=owner_principal))
        await sessions.handle_event(SessionEvent(type=SIGNED_OUT, principal=owner_principal))
        await asyncio.sleep(0.1)
        await listener.close()

        assert received[0] == IDENTITY_RESOLVING
        assert IDENTITY_RESOLVED in received
        assert received[-1] == IDENTITY_CLEARED
