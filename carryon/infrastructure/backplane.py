"""
Redis pub/sub backplane for the realtime hub.

When several API processes run behind a load balancer, a room's members
are spread across processes.  Each emit is published once on a single
channel; every process (the publisher included) receives it and delivers
it to its own local connections.  One channel keeps per-order events in
publish order.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Awaitable, Callable, Optional

import redis.asyncio as aioredis

logger = logging.getLogger(__name__)

Deliver = Callable[[dict[str, Any]], Awaitable[None]]


class RedisBackplane:
    def __init__(self, client: aioredis.Redis, channel: str):
        self.redis = client
        self.channel = channel
        self._task: Optional[asyncio.Task] = None

    async def publish(self, envelope: dict[str, Any]) -> None:
        await self.redis.publish(self.channel, json.dumps(envelope, default=str))

    async def start(self, deliver: Deliver) -> None:
        pubsub = self.redis.pubsub()
        await pubsub.subscribe(self.channel)
        self._task = asyncio.create_task(self._listen(pubsub, deliver))
        logger.info("Realtime backplane subscribed to %s", self.channel)

    async def stop(self) -> None:
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        logger.info("Realtime backplane stopped")

    async def _listen(self, pubsub, deliver: Deliver) -> None:
        try:
            async for message in pubsub.listen():
                if message.get("type") != "message":
                    continue
                try:
                    await deliver(json.loads(message["data"]))
                except Exception:
                    logger.exception("Failed to deliver backplane message")
        finally:
            await pubsub.unsubscribe(self.channel)
            await pubsub.aclose()
