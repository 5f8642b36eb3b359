# Copyright (c) 2026 TenantBootstrap Contributors. All Rights Reserved.

"""
Identity Event Bus — tells the application when a principal's identity changes.

Principal-scoped Redis Pub/Sub: every IdentityEvent for a principal goes to
bootstrap:{principal_id}:events.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Coroutine, Dict, List, Optional

import redis.asyncio as aioredis
from pydantic import ValidationError

from tenant_bootstrap.kernel.namespace import get_channel
from tenant_bootstrap.protocols.schema import IdentityEvent

logger = logging.getLogger("bootstrap.bus")


class IdentityBus:
    """
    Redis Pub/Sub bus for identity events.

    One instance serves every principal; the channel is picked per event.
    """

    def __init__(self, redis: aioredis.Redis) -> None:
        self._redis = redis
        self._subscribers: List[asyncio.Task] = []
        self._pubsubs: Dict[str, aioredis.client.PubSub] = {}

    # ── Publish ─────────────────────────────────────────────────

    async def publish(self, event: IdentityEvent) -> int:
        """
        Publish an IdentityEvent on its principal's channel.

        Returns the number of subscribers that received the message.
        """
        channel = get_channel(event.principal_id)
        count = await self._redis.publish(channel, event.to_json())
        logger.debug("Published %s to %s (%d receivers)", event.type, channel, count)
        return count

    async def emit(
        self,
        type: str,
        principal_id: str,
        payload: Optional[Dict[str, Any]] = None,
        trace_id: Optional[str] = None,
    ) -> IdentityEvent:
        """Build and publish an event in one call."""
        event = IdentityEvent.create(
            type=type, principal_id=principal_id, payload=payload, trace_id=trace_id,
        )
        await self.publish(event)
        return event

    # ── Subscribe ───────────────────────────────────────────────

    async def subscribe(
        self,
        principal_id: str,
        handler: Callable[[IdentityEvent], Coroutine[Any, Any, None]],
        event_filter: Optional[str] = None,
    ) -> aioredis.client.PubSub:
        """
        Subscribe to a principal's channel and dispatch events to handler.

        Args:
            handler: Async callable invoked for each received IdentityEvent.
            event_filter: If set, only events with this type are dispatched.
        """
        channel = get_channel(principal_id)
        pubsub = self._redis.pubsub()
        await pubsub.subscribe(channel)
        self._pubsubs[channel] = pubsub

        async def _listener():
            async for message in pubsub.listen():
                if message["type"] != "message":
                    continue
                try:
                    event = IdentityEvent.from_json(message["data"])
                except ValidationError as exc:
                    logger.error("Dropping malformed identity event on %s: %s", channel, exc)
                    continue
                if event_filter and event.type != event_filter:
                    continue
                try:
                    await handler(event)
                except Exception as exc:
                    logger.error("Identity event handler error: %s", exc)

        task = asyncio.create_task(_listener())
        self._subscribers.append(task)
        return pubsub

    # ── Cleanup ─────────────────────────────────────────────────

    async def close(self) -> None:
        """Unsubscribe and cancel all listener tasks."""
        for task in self._subscribers:
            task.cancel()
        self._subscribers.clear()
        for channel, pubsub in self._pubsubs.items():
            await pubsub.unsubscribe(channel)
            await pubsub.aclose()
        self._pubsubs.clear()
