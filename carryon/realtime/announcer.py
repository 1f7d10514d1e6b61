"""
Post-commit fan-out for order lifecycle events.

Every method here runs *after* the transition it describes has been
committed: one commit, then one broadcast, so subscribers observe an
order's history in commit order.  Push notifications are scheduled
fire-and-forget.
"""

from __future__ import annotations

import logging
from typing import Optional

from carryon.domain.entities import Driver as DriverEntity
from carryon.domain.entities import Order, StatusHistoryEntry
from carryon.domain.enums import OrderStatus
from carryon.domain.identity import Customer, Driver
from carryon.infrastructure.notifications import NotificationDispatcher

from . import events
from .hub import RealtimeHub
from .rooms import driver_room, order_room, pool_room

logger = logging.getLogger(__name__)

_STATUS_MESSAGES = {
    OrderStatus.DRIVER_ARRIVED: "Your driver has arrived at the pickup point",
    OrderStatus.PICKUP_COMPLETE: "Your package has been picked up",
    OrderStatus.IN_TRANSIT: "Your package is on the way",
    OrderStatus.DELIVERED: "Your package has been delivered",
    OrderStatus.CANCELLED: "Your order has been cancelled",
}


def place_payload(place) -> events.PlacePayload:
    return events.PlacePayload(
        lat=place.location.latitude, lng=place.location.longitude, address=place.address
    )


class OrderAnnouncer:
    def __init__(self, hub: RealtimeHub, notifications: NotificationDispatcher):
        self.hub = hub
        self.notifications = notifications

    async def new_order(self, order: Order) -> None:
        payload = events.NewOrderEvent(
            order_id=order.id,
            vehicle_type=order.vehicle_type.value,
            pickup=place_payload(order.pickup),
            drop=place_payload(order.drop),
            fare=order.total_fare,
            distance_m=order.distance_m,
        )
        await self.hub.emit(pool_room(order.vehicle_type), events.NEW_ORDER, payload.dump())

    async def taken(
        self, order: Order, winner_id: Optional[int], reason: str = "assigned"
    ) -> None:
        payload = events.OrderTakenEvent(order_id=order.id, reason=reason)
        exclude = Driver(winner_id) if winner_id is not None else None
        await self.hub.emit(
            pool_room(order.vehicle_type), events.ORDER_TAKEN, payload.dump(), exclude=exclude
        )

    async def assigned(self, order: Order, driver: DriverEntity) -> None:
        await self.hub.bind_driver(order.id, driver.id)
        payload = events.DriverAssignedEvent(
            order_id=order.id,
            driver=events.DriverSummary(
                id=driver.id,
                name=driver.name,
                phone=driver.phone,
                vehicle_number=driver.vehicle_number,
                vehicle_model=driver.vehicle_model,
                rating=driver.rating,
                latitude=driver.latitude,
                longitude=driver.longitude,
            ),
        )
        await self.hub.emit(order_room(order.id), events.DRIVER_ASSIGNED, payload.dump())
        await self.taken(order, driver.id)
        self.notifications.send(
            Customer(order.customer_id),
            "Driver assigned",
            f"{driver.name} is on the way to pick up your package",
            {"orderId": order.id},
        )

    async def status_changed(self, order: Order, entry: StatusHistoryEntry) -> None:
        payload = events.OrderStatusEvent(
            order_id=order.id,
            status=entry.status.value,
            timestamp=entry.created_at,
            latitude=entry.latitude,
            longitude=entry.longitude,
            note=entry.note,
        )
        await self.hub.emit(order_room(order.id), events.ORDER_STATUS_UPDATE, payload.dump())
        message = _STATUS_MESSAGES.get(entry.status)
        if message:
            self.notifications.send(
                Customer(order.customer_id),
                "Order update",
                message,
                {"orderId": order.id, "status": entry.status.value},
            )

    async def cancelled(
        self, order: Order, previous_status: OrderStatus, previous_driver_id: Optional[int]
    ) -> None:
        await self.status_changed(order, order.history[-1])
        if previous_status is OrderStatus.PENDING:
            await self.taken(order, None, reason="cancelled")
        if previous_driver_id is not None:
            payload = events.OrderCancelledEvent(
                order_id=order.id, reason=order.cancellation_reason
            )
            await self.hub.emit(
                driver_room(previous_driver_id), events.ORDER_CANCELLED, payload.dump()
            )
            await self.hub.leave_identity(Driver(previous_driver_id), order_room(order.id))
            self.notifications.send(
                Driver(previous_driver_id),
                "Order cancelled",
                order.cancellation_reason or "The customer cancelled the order",
                {"orderId": order.id},
            )

    async def no_drivers(self, order: Order, waited_seconds: int) -> None:
        payload = events.NoDriversAvailableEvent(order_id=order.id, waited_seconds=waited_seconds)
        await self.hub.emit(order_room(order.id), events.NO_DRIVERS_AVAILABLE, payload.dump())
        self.notifications.send(
            Customer(order.customer_id),
            "No drivers available",
            "We could not find a driver for your order. Please try again.",
            {"orderId": order.id},
        )

    async def driver_location(self, order_id: int, latitude: float, longitude: float, at) -> None:
        payload = events.DriverLocationEvent(
            order_id=order_id, latitude=latitude, longitude=longitude, timestamp=at
        )
        await self.hub.emit(order_room(order_id), events.DRIVER_LOCATION, payload.dump())
