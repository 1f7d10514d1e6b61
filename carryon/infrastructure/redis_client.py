"""
Shared Redis client.

One connection pool per process, created on first use so importing the
package never touches Redis.  Used by the sweeper lock and the realtime
backplane.
"""

from typing import Optional

import redis.asyncio as aioredis

from carryon.config import settings

_client: Optional[aioredis.Redis] = None


async def get_redis() -> aioredis.Redis:
    global _client
    if _client is None:
        _client = aioredis.from_url(
            settings.redis_url,
            decode_responses=True,
            health_check_interval=30,
        )
    return _client


async def close_redis() -> None:
    global _client
    if _client is not None:
        await _client.aclose()
        _client = None
