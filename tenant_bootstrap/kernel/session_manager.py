# Copyright (c) 2026 TenantBootstrap Contributors. All Rights Reserved.

"""
Session Manager — session-change events → published identity.

Handles:
  - sign-in / initial session / token refresh / user update: bootstrap the
    principal, coalesced per principal so only one bootstrap runs at a time
  - sign-out: bump the principal's generation and clear its published identity;
    a bootstrap still running completes but its result is dropped
  - current(): the identity the application should use right now
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from redis.exceptions import RedisError

from tenant_bootstrap.kernel.bootstrapper import IdentityBootstrapper
from tenant_bootstrap.kernel.bus import IdentityBus
from tenant_bootstrap.kernel.namespace import get_inflight_key
from tenant_bootstrap.memory.identity_state import IdentityStateStore
from tenant_bootstrap.protocols.errors import BootstrapError
from tenant_bootstrap.protocols.events import (
    IDENTITY_CLEARED,
    IDENTITY_DEGRADED,
    IDENTITY_RESOLVED,
    IDENTITY_RESOLVING,
    RESOLVE_TRIGGERS,
    SIGNED_OUT,
)
from tenant_bootstrap.protocols.schema import (
    Principal,
    Resolution,
    ResolutionState,
    SessionEvent,
)
from tenant_bootstrap.resilience.idempotency import InFlightRegistry

logger = logging.getLogger("bootstrap.session_manager")

# Fresh runs a caller may start after joining runs that could not answer it
JOIN_ATTEMPTS = 3

_STATE_EVENTS = {
    ResolutionState.RESOLVING: IDENTITY_RESOLVING,
    ResolutionState.RESOLVED: IDENTITY_RESOLVED,
    ResolutionState.DEGRADED: IDENTITY_DEGRADED,
}


class SessionManager:
    """Turns auth-provider session events into published Resolutions."""

    def __init__(
        self,
        bootstrapper: IdentityBootstrapper,
        state: IdentityStateStore,
        bus: IdentityBus,
        registry: Optional[InFlightRegistry] = None,
    ) -> None:
        self._bootstrapper = bootstrapper
        self._state = state
        self._bus = bus
        self._registry = registry or InFlightRegistry()

    @property
    def registry(self) -> InFlightRegistry:
        return self._registry

    @property
    def bootstrapper(self) -> IdentityBootstrapper:
        return self._bootstrapper

    async def handle_event(self, event: SessionEvent) -> Resolution:
        """Apply one session-change event and return the resulting Resolution."""
        principal = event.principal
        if event.type == SIGNED_OUT:
            if principal is None:
                return Resolution.unresolved()
            await self.sign_out(principal.id, event.trace_id)
            return Resolution.unresolved(principal.id)

        if principal is None or event.type not in RESOLVE_TRIGGERS:
            logger.debug("Session event %s without principal; nothing to resolve", event.type)
            return Resolution.unresolved()
        return await self.resolve(principal, event.trace_id)

    async def resolve(self, principal: Principal, trace_id: Optional[str] = None) -> Resolution:
        """
        Bootstrap the principal; joins a bootstrap already in flight for it.

        A joined run may not answer this caller: a signup that failed raises,
        and a run started before a sign-out comes back UNRESOLVED. In both
        cases a fresh run is started, unless this caller's own session has
        since ended.
        """
        principal_id = principal.id
        key = get_inflight_key(principal_id)
        generation = await self._generation(principal_id)
        log_extra = {"principal_id": principal_id, "trace_id": trace_id}

        for _ in range(JOIN_ATTEMPTS):
            try:
                resolution = await self._registry.run_once(
                    key, lambda: self.bootstrap_and_publish(principal, trace_id),
                )
            except BootstrapError as exc:
                logger.warning("Joined signup for %s failed: [%s] %s; bootstrapping again",
                               principal_id, exc.code, exc, extra=log_extra)
                continue
            if resolution.state is not ResolutionState.UNRESOLVED:
                return resolution
            if generation is None or await self._generation(principal_id) != generation:
                return resolution
            logger.info("Joined run for %s belonged to an ended session; bootstrapping again",
                        principal_id, extra=log_extra)

        # Last resort outside the slot; bootstrap_and_publish never raises BootstrapError
        return await self.bootstrap_and_publish(principal, trace_id)

    async def bootstrap_and_publish(self, principal: Principal, trace_id: Optional[str] = None) -> Resolution:
        """
        Run one bootstrap and publish it. Callers must hold the principal's
        in-flight slot (resolve() and signup do).
        """
        generation = await self._generation(principal.id)
        await self._publish(Resolution.resolving(principal.id), generation, trace_id)

        resolution = await self._bootstrapper.bootstrap(principal, trace_id)

        if not await self._publish(resolution, generation, trace_id):
            return Resolution.unresolved(principal.id)
        return resolution

    async def sign_out(self, principal_id: str, trace_id: Optional[str] = None) -> None:
        await self._state.bump_generation(principal_id)
        await self._state.clear(principal_id)
        await self._bus.emit(IDENTITY_CLEARED, principal_id, trace_id=trace_id)
        logger.info("Signed out %s", principal_id,
                    extra={"principal_id": principal_id, "trace_id": trace_id})

    async def current(self, principal_id: str) -> Resolution:
        """The published Resolution, or UNRESOLVED if none."""
        resolution = await self._state.get(principal_id)
        return resolution or Resolution.unresolved(principal_id)

    # ── Publication ─────────────────────────────────────────────

    async def _generation(self, principal_id: str) -> Optional[int]:
        try:
            return await self._state.generation(principal_id)
        except RedisError as exc:
            logger.warning("Identity state unavailable for %s: %s", principal_id, exc,
                           extra={"principal_id": principal_id})
            return None

    async def _publish(self, resolution: Resolution, generation: Optional[int],
                       trace_id: Optional[str]) -> bool:
        """Write state + event. False only when the resolution is stale."""
        if generation is None:
            return True
        principal_id = resolution.principal_id
        try:
            if not await self._state.put(resolution, generation):
                return False
            await self._bus.emit(_STATE_EVENTS[resolution.state], principal_id,
                                 self._payload(resolution), trace_id=trace_id)
        except RedisError as exc:
            logger.warning("Could not publish %s for %s: %s", resolution.state.value,
                           principal_id, exc, extra={"principal_id": principal_id})
        return True

    @staticmethod
    def _payload(resolution: Resolution) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"state": resolution.state.value}
        if resolution.identity is not None:
            payload["tenant_id"] = resolution.identity.tenant.id
            payload["role"] = resolution.identity.profile.role.value
            payload["reason"] = resolution.identity.reason
        if resolution.error is not None:
            payload["error"] = resolution.error.model_dump()
        return payload
