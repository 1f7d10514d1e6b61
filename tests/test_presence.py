"""Driver presence: online flag, pool membership, live location."""

import pytest

from carryon.domain.enums import OrderStatus, VehicleType
from carryon.domain.errors import NotFound, ValidationError
from carryon.realtime import events
from carryon.realtime.rooms import order_room, pool_room
from tests.conftest import FakeConnection, make_draft


async def _is_online(presence, driver):
    return (await presence.get_driver(driver.id)).is_online


class TestOnlineFlag:
    @pytest.mark.asyncio
    async def test_going_online_joins_pool(self, world, presence, hub):
        driver = world.offline_biker
        await hub.connect(FakeConnection("d"), driver, vehicle_type=VehicleType.BIKE)

        outcome = await presence.set_online(driver.id, True)

        assert outcome.ok and outcome.value.is_online
        assert "d" in hub.members(pool_room(VehicleType.BIKE))
        assert await _is_online(presence, driver)

    @pytest.mark.asyncio
    async def test_going_offline_leaves_pool(self, world, presence, hub):
        driver = world.bikers[0]
        await hub.connect(FakeConnection("d"), driver, vehicle_type=VehicleType.BIKE, online=True)

        await presence.set_online(driver.id, False)

        assert hub.members(pool_room(VehicleType.BIKE)) == set()
        assert not await _is_online(presence, driver)

    @pytest.mark.asyncio
    async def test_unknown_driver(self, world, presence):
        outcome = await presence.set_online(4242, True)
        assert isinstance(outcome.error, NotFound)

    @pytest.mark.asyncio
    async def test_abrupt_disconnect_forces_offline(self, world, presence, hub):
        driver = world.bikers[0]
        await hub.connect(FakeConnection("d"), driver, vehicle_type=VehicleType.BIKE, online=True)
        assert await _is_online(presence, driver)

        await hub.disconnect("d")

        assert not await _is_online(presence, driver)

    @pytest.mark.asyncio
    async def test_stale_connection_drop_clears_pool(
        self, world, presence, hub, orders, matcher
    ):
        driver = world.bikers[0]
        old, new = FakeConnection("old"), FakeConnection("new")
        await hub.connect(old, driver, vehicle_type=VehicleType.BIKE, online=True)
        await hub.connect(new, driver, vehicle_type=VehicleType.BIKE, online=True)

        await hub.disconnect("old")

        assert not await _is_online(presence, driver)
        assert "new" not in hub.members(pool_room(VehicleType.BIKE))
        order = (await orders.create_order(world.customer, make_draft())).value
        assert new.events(events.NEW_ORDER) == []

        await presence.set_online(driver.id, True)
        assert "new" in hub.members(pool_room(VehicleType.BIKE))
        assert (await matcher.try_claim(order.id, driver.id)).won

    @pytest.mark.asyncio
    async def test_customer_disconnect_touches_no_driver(self, world, presence, hub):
        await hub.connect(FakeConnection("c"), world.customer)
        await hub.disconnect("c")
        assert all([await _is_online(presence, d) for d in world.bikers])


class TestLocation:
    @pytest.mark.asyncio
    async def test_idle_driver_location_is_stored(self, world, presence):
        driver = world.bikers[0]
        outcome = await presence.update_location(driver.id, 12.99, 77.60)
        assert outcome.ok and outcome.value is None
        stored = await presence.get_driver(driver.id)
        assert (stored.latitude, stored.longitude) == (12.99, 77.60)

    @pytest.mark.asyncio
    async def test_streams_to_active_order(self, world, presence, orders, matcher, hub):
        driver = world.bikers[0]
        order = (await orders.create_order(world.customer, make_draft())).value
        await matcher.try_claim(order.id, driver.id)
        conn = FakeConnection("c")
        await hub.connect(conn, world.customer)
        hub.join("c", order_room(order.id))

        outcome = await presence.update_location(driver.id, 12.98, 77.61)

        assert outcome.value == order.id
        [update] = conn.events(events.DRIVER_LOCATION)
        assert (update["orderId"], update["latitude"], update["longitude"]) == (
            order.id,
            12.98,
            77.61,
        )

    @pytest.mark.asyncio
    async def test_delivered_order_stops_streaming(self, world, presence, orders, matcher):
        driver = world.bikers[0]
        order = (await orders.create_order(world.customer, make_draft())).value
        await matcher.try_claim(order.id, driver.id)
        for step in (
            OrderStatus.DRIVER_ARRIVED,
            OrderStatus.PICKUP_COMPLETE,
            OrderStatus.IN_TRANSIT,
            OrderStatus.DELIVERED,
        ):
            await orders.push_status(driver, order.id, step)

        outcome = await presence.update_location(driver.id, 12.98, 77.61)
        assert outcome.value is None

    @pytest.mark.asyncio
    async def test_out_of_range_coordinates(self, world, presence):
        outcome = await presence.update_location(world.bikers[0].id, 123.0, 77.6)
        assert isinstance(outcome.error, ValidationError)
