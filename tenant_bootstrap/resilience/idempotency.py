# Copyright (c) 2026 TenantBootstrap Contributors. All Rights Reserved.

"""
In-flight Registry — one running operation per key.

Concurrent bootstrap attempts for the same principal (rapid reconnects, a
session event racing an in-progress signup) coalesce here: the first caller
starts the work, later callers await the same future. The entry is removed when
the work finishes, so the next event starts a fresh run.

The work runs as its own task and waiters are shielded from it: a cancelled
waiter never cancels a half-finished heal or migration.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Dict, List, TypeVar

from tenant_bootstrap.core.metrics import bootstrap_metrics

logger = logging.getLogger("bootstrap.idempotency")

T = TypeVar("T")


class InFlightRegistry:
    """Principal-keyed arena of pending futures."""

    def __init__(self) -> None:
        self._pending: Dict[str, asyncio.Task] = {}

    def in_flight(self, key: str) -> bool:
        return key in self._pending

    def pending_keys(self) -> List[str]:
        return sorted(self._pending)

    async def run_once(self, key: str, factory: Callable[[], Awaitable[T]]) -> T:
        """
        Run factory() unless a run for key is already in flight.

        Late arrivals await the in-flight result (or its exception).
        """
        task = self._pending.get(key)
        if task is None:
            task = asyncio.ensure_future(factory())
            self._pending[key] = task
            bootstrap_metrics.set_gauge("inflight:runs", len(self._pending))
            task.add_done_callback(lambda t, k=key: self._release(k, t))
        else:
            logger.info("Idempotency: joining in-flight run for %s", key)
        return await asyncio.shield(task)

    async def wait(self, key: str) -> None:
        """Wait until nothing runs under key. Outcomes of other runs are ignored."""
        while key in self._pending:
            await asyncio.wait([self._pending[key]])

    def _release(self, key: str, task: asyncio.Task) -> None:
        if self._pending.get(key) is task:
            del self._pending[key]
            bootstrap_metrics.set_gauge("inflight:runs", len(self._pending))
        # Consume the exception so an abandoned task does not log "never retrieved"
        if not task.cancelled():
            task.exception()

    async def drain(self) -> None:
        """Wait for every in-flight run to finish (shutdown/test helper)."""
        tasks = list(self._pending.values())
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
