"""
Redis-based distributed lock for periodic jobs.

The pending-order sweeper takes it so that one API process expires stale
orders per cycle.  Order claims never use it; they are settled by the
database's conditional update.

Acquire is ``SET NX PX``.  Release and extend are Lua scripts that only
act while the stored token is still ours, so a holder whose lease ran out
cannot free or prolong a lock someone else now holds.
"""

from __future__ import annotations

import logging
import uuid

import redis.asyncio as aioredis

logger = logging.getLogger(__name__)

KEY_PREFIX = "carryon:lock:"

_RELEASE = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
end
return 0
"""

_EXTEND = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("pexpire", KEYS[1], ARGV[2])
end
return 0
"""


class LockNotAcquired(RuntimeError):
    pass


class DistributedLock:
    def __init__(self, client: aioredis.Redis, name: str, ttl_seconds: int = 30):
        self.redis = client
        self.name = name
        self.key = KEY_PREFIX + name
        self.ttl_ms = ttl_seconds * 1000
        self.token = uuid.uuid4().hex

    async def acquire(self) -> bool:
        return bool(await self.redis.set(self.key, self.token, nx=True, px=self.ttl_ms))

    async def extend(self) -> bool:
        """Restart the lease; ``False`` if it was already lost."""
        return bool(await self.redis.eval(_EXTEND, 1, self.key, self.token, self.ttl_ms))

    async def release(self) -> bool:
        """Drop the lock if still ours.  ``False`` means the lease had expired."""
        released = bool(await self.redis.eval(_RELEASE, 1, self.key, self.token))
        if not released:
            logger.warning("Lock %s expired before release", self.name)
        return released

    async def __aenter__(self) -> "DistributedLock":
        if not await self.acquire():
            raise LockNotAcquired(f"Could not acquire lock: {self.name}")
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.release()
