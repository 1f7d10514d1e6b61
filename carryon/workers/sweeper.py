"""
Driver-search timeout sweeper
=============================

Runs every ``SWEEP_INTERVAL_SECONDS`` (default 30 s).

Concurrency safety
------------------
* **Redis distributed lock** ensures only one API process sweeps per
  cycle.
* Each expiry is an ordinary ``pending -> cancelled`` transition through
  ``OrderService.expire``, i.e. the same compare-and-set a claim uses.
  A driver who claims the order at the last moment simply wins; the
  sweeper's update matches nothing and the order is left alone.

Algorithm per cycle
-------------------
1. Fetch pending orders created more than
   ``DRIVER_SEARCH_TIMEOUT_SECONDS`` ago (oldest first).
2. Cancel each one as ``System("sweeper")`` with reason
   "No drivers available".
3. Announce ``orderCancelled`` / ``noDriversAvailable`` to the customer
   and evict the order from its tier pool.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Optional

import redis.asyncio as aioredis

from carryon.config import settings
from carryon.domain.entities import as_utc, utcnow
from carryon.infrastructure.locks import DistributedLock
from carryon.infrastructure.redis_client import get_redis
from carryon.infrastructure.repositories import OrderRepository

if TYPE_CHECKING:
    from carryon.services.orders import OrderService

logger = logging.getLogger(__name__)

SWEEP_BATCH_SIZE = 100
LEASE_RENEW_EVERY = 20

_task: asyncio.Task | None = None
_stop_event: asyncio.Event | None = None


# ── Public API ────────────────────────────────────────────────────────


async def start_sweeper(orders: "OrderService") -> None:
    global _task, _stop_event
    _stop_event = asyncio.Event()
    _task = asyncio.create_task(_loop(orders))
    logger.info(
        "Pending-order sweeper started (interval=%ds, timeout=%ds)",
        settings.sweep_interval_seconds,
        settings.driver_search_timeout_seconds,
    )


async def stop_sweeper() -> None:
    if _stop_event:
        _stop_event.set()
    if _task:
        _task.cancel()
        try:
            await _task
        except asyncio.CancelledError:
            pass
    logger.info("Pending-order sweeper stopped")


# ── Internals ─────────────────────────────────────────────────────────


async def _loop(orders: "OrderService") -> None:
    assert _stop_event is not None
    while not _stop_event.is_set():
        try:
            await run_sweep_cycle(orders)
        except Exception:
            logger.exception("Unhandled error in sweep cycle")
        try:
            await asyncio.wait_for(
                _stop_event.wait(), timeout=settings.sweep_interval_seconds
            )
            break
        except asyncio.TimeoutError:
            pass


async def run_sweep_cycle(
    orders: "OrderService",
    redis: Optional[aioredis.Redis] = None,
    *,
    timeout_seconds: Optional[int] = None,
    now: Optional[datetime] = None,
) -> int:
    """Expire stale pending orders once.  Returns how many were cancelled."""
    redis = redis or await get_redis()
    lock = DistributedLock(redis, "order_sweeper", ttl_seconds=60)
    if not await lock.acquire():
        logger.debug("Sweeper lock held by another process, skipping cycle")
        return 0

    now = now or utcnow()
    timeout = timedelta(
        seconds=timeout_seconds
        if timeout_seconds is not None
        else settings.driver_search_timeout_seconds
    )
    expired = 0
    try:
        async with orders.sessions() as session:
            stale = await OrderRepository(session).list_stale_pending(
                now - timeout, limit=SWEEP_BATCH_SIZE
            )
            candidates = [(m.id, as_utc(m.created_at)) for m in stale]

        for index, (order_id, created_at) in enumerate(candidates):
            if index and index % LEASE_RENEW_EVERY == 0 and not await lock.extend():
                logger.warning("Sweeper lease lost after %d orders, stopping cycle", index)
                break
            outcome = await orders.expire(order_id, now - created_at)
            if outcome.ok:
                expired += 1
            else:
                # Claimed or cancelled since the scan
                logger.debug("Order %s not expired: %s", order_id, outcome.error)
        if expired:
            logger.info("Sweep cycle: %d orders expired", expired)
    finally:
        await lock.release()
    return expired
