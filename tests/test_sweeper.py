"""Pending-order sweeper: expiry after the driver-search timeout."""

from datetime import timedelta
from unittest.mock import AsyncMock

import pytest

from carryon.domain.entities import utcnow
from carryon.domain.enums import OrderStatus
from carryon.realtime import events
from carryon.realtime.rooms import order_room
from carryon.workers import sweeper
from carryon.workers.sweeper import run_sweep_cycle
from tests.conftest import FakeConnection, make_draft


def _redis(acquired=True):
    redis = AsyncMock()
    redis.set = AsyncMock(return_value=acquired)
    redis.eval = AsyncMock(return_value=1)
    return redis


class TestSweepCycle:
    @pytest.mark.asyncio
    async def test_expires_stale_pending_orders(self, world, orders, hub):
        order = (await orders.create_order(world.customer, make_draft())).value
        conn = FakeConnection("c")
        await hub.connect(conn, world.customer)
        hub.join("c", order_room(order.id))
        redis = _redis()

        later = utcnow() + timedelta(minutes=10)
        expired = await run_sweep_cycle(orders, redis, timeout_seconds=300, now=later)

        assert expired == 1
        stored = (await orders.get_order(world.customer, order.id)).value
        assert stored.status is OrderStatus.CANCELLED
        assert stored.cancellation_reason == "No drivers available"
        assert stored.history[-1].status is OrderStatus.CANCELLED
        [notice] = conn.events(events.NO_DRIVERS_AVAILABLE)
        assert notice["orderId"] == order.id
        assert notice["waitedSeconds"] >= 599
        redis.eval.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_fresh_and_claimed_orders_are_left_alone(self, world, orders, matcher):
        fresh = (await orders.create_order(world.customer, make_draft())).value
        claimed = (await orders.create_order(world.customer, make_draft())).value
        await matcher.try_claim(claimed.id, world.bikers[0].id)

        expired = await run_sweep_cycle(orders, _redis(), timeout_seconds=300, now=utcnow())

        assert expired == 0
        assert (await orders.get_order(world.customer, fresh.id)).value.status is OrderStatus.PENDING

    @pytest.mark.asyncio
    async def test_skips_when_lock_is_held(self, world, orders):
        order = (await orders.create_order(world.customer, make_draft())).value
        redis = _redis(acquired=False)

        later = utcnow() + timedelta(minutes=10)
        assert await run_sweep_cycle(orders, redis, timeout_seconds=300, now=later) == 0

        stored = (await orders.get_order(world.customer, order.id)).value
        assert stored.status is OrderStatus.PENDING
        redis.eval.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_stops_when_lease_is_lost(self, world, orders, monkeypatch):
        monkeypatch.setattr(sweeper, "LEASE_RENEW_EVERY", 1)
        for _ in range(2):
            await orders.create_order(world.customer, make_draft())
        redis = _redis()
        redis.eval = AsyncMock(return_value=0)

        later = utcnow() + timedelta(minutes=10)
        assert await run_sweep_cycle(orders, redis, timeout_seconds=300, now=later) == 1
