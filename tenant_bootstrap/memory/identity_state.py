# Copyright (c) 2026 TenantBootstrap Contributors. All Rights Reserved.

"""
Identity State — Redis-held view of each principal's published Resolution.

Keys:
  bootstrap:identity:{principal_id}     hash {resolution, generation, state}
  bootstrap:generation:{principal_id}   session generation counter

The identity hash is refreshed with TTL on every write. The generation counter
is bumped on sign-out; a resolution computed under an older generation is
never written.
"""

from __future__ import annotations

import logging
from typing import List, Optional

import redis.asyncio as aioredis
from pydantic import ValidationError

from tenant_bootstrap.kernel.namespace import get_identity_key, get_key
from tenant_bootstrap.protocols.schema import Resolution

logger = logging.getLogger("bootstrap.identity_state")

DEFAULT_IDENTITY_TTL = 1800  # 30 min, overridden by config

# Lua CAS: write the identity hash only while the generation still matches
_LUA_PUBLISH_SCRIPT = """
local current = redis.call('GET', KEYS[2])
if current == false then
    current = '0'
end
if current ~= ARGV[1] then
    return 0
end
redis.call('HSET', KEYS[1], 'resolution', ARGV[2], 'generation', ARGV[1], 'state', ARGV[3])
redis.call('EXPIRE', KEYS[1], ARGV[4])
return 1
"""


class IdentityStateStore:
    """Published Resolution per principal, backed by Redis."""

    def __init__(self, redis: aioredis.Redis, ttl: int = DEFAULT_IDENTITY_TTL) -> None:
        self._redis = redis
        self._ttl = ttl
        self._publish_script = redis.register_script(_LUA_PUBLISH_SCRIPT)

    # ── Generation ──────────────────────────────────────────────

    async def generation(self, principal_id: str) -> int:
        raw = await self._redis.get(get_key("generation", principal_id))
        return int(raw) if raw is not None else 0

    async def bump_generation(self, principal_id: str) -> int:
        """Invalidate every resolution started before this call."""
        key = get_key("generation", principal_id)
        value = await self._redis.incr(key)
        await self._redis.expire(key, self._ttl)
        return int(value)

    # ── Resolution ──────────────────────────────────────────────

    async def put(self, resolution: Resolution, generation: int) -> bool:
        """
        Publish a resolution computed under `generation`.

        Returns False (and writes nothing) if the generation has moved on.
        The generation check and the write run as one script call.
        """
        principal_id = resolution.principal_id
        if principal_id is None:
            raise ValueError("Cannot publish a resolution without a principal id")
        written = await self._publish_script(
            keys=[get_identity_key(principal_id), get_key("generation", principal_id)],
            args=[str(generation), resolution.to_json(), resolution.state.value, self._ttl],
        )
        if not int(written):
            logger.info("Discarding stale resolution for %s (generation %d)",
                        principal_id, generation, extra={"principal_id": principal_id})
            return False
        return True

    async def get(self, principal_id: str) -> Optional[Resolution]:
        raw = await self._redis.hget(get_identity_key(principal_id), "resolution")
        if raw is None:
            return None
        try:
            return Resolution.from_json(raw)
        except ValidationError as exc:
            logger.error("Corrupt published resolution for %s: %s", principal_id, exc,
                         extra={"principal_id": principal_id})
            return None

    async def clear(self, principal_id: str) -> None:
        await self._redis.delete(get_identity_key(principal_id))

    async def list_principals(self) -> List[str]:
        """Principals with a published resolution."""
        prefix = get_identity_key("")
        principals = set()
        async for key in self._redis.scan_iter(match=f"{prefix}*"):
            principals.add(key[len(prefix):])
        return sorted(principals)
