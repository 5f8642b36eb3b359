# Copyright (c) 2026 TenantBootstrap Contributors. All Rights Reserved.

"""
Redis Connection Factory — async pool behind the identity state and bus.
"""

from __future__ import annotations

import logging
from typing import Optional

import redis.asyncio as aioredis
from redis.backoff import ExponentialBackoff
from redis.exceptions import (
    BusyLoadingError,
    ConnectionError,
    RedisError,
    TimeoutError,
)
from redis.retry import Retry

from tenant_bootstrap.core.config import settings

logger = logging.getLogger("bootstrap.redis")

_pool: Optional[aioredis.Redis] = None

_RETRY = Retry(ExponentialBackoff(cap=2, base=0.1), retries=3)
_RETRY_ERRORS = [ConnectionError, TimeoutError, BusyLoadingError, OSError]


async def get_redis_pool() -> aioredis.Redis:
    """
    Return the process-wide async Redis client.

    Stale pooled connections are reconnected transparently (retry_on_error).
    """
    global _pool
    if _pool is None:
        _pool = aioredis.from_url(
            settings.REDIS_URL,
            decode_responses=True,
            max_connections=settings.REDIS_MAX_CONNECTIONS,
            health_check_interval=15,
            retry_on_timeout=True,
            retry_on_error=_RETRY_ERRORS,
            retry=_RETRY,
            socket_connect_timeout=5,
            socket_timeout=10,
        )
    return _pool


async def ping_redis(redis: aioredis.Redis) -> bool:
    """Liveness probe used by /health."""
    try:
        return bool(await redis.ping())
    except (RedisError, OSError) as exc:
        logger.warning("Redis ping failed: %s", exc)
        return False


async def close_redis_pool() -> None:
    global _pool
    if _pool is not None:
        await _pool.aclose()
        _pool = None


def inject_redis_for_test(redis_instance: aioredis.Redis) -> None:
    """Inject a fake Redis instance (for testing only)."""
    global _pool
    _pool = redis_instance
