"""
Inbound realtime events.

A websocket transport hands every decoded ``{"event", "data"}`` frame to
``RealtimeGateway.handle``.  Room joins are authorised against the order
before the connection is added; anything the caller gets wrong comes back
to that connection alone as an ``error`` event.
"""

from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable, Optional

from carryon.domain.entities import Location
from carryon.domain.enums import OrderStatus
from carryon.domain.errors import DispatchError, Unauthorized, ValidationError
from carryon.domain.identity import Driver
from carryon.services.chat import ChatRelay, participant_role
from carryon.services.dispatch import DispatchMatcher
from carryon.services.orders import OrderService
from carryon.services.presence import DriverPresence

from . import events
from .announcer import place_payload
from .hub import RealtimeHub, Session
from .rooms import chat_room, order_room

logger = logging.getLogger(__name__)

Handler = Callable[[Session, dict[str, Any]], Awaitable[None]]


def _order_id(data: dict[str, Any]) -> int:
    try:
        return int(data["orderId"])
    except (KeyError, TypeError, ValueError):
        raise ValidationError("orderId is required") from None


def _coordinate(data: dict[str, Any], *names: str) -> Optional[float]:
    for name in names:
        if data.get(name) is not None:
            try:
                return float(data[name])
            except (TypeError, ValueError):
                raise ValidationError(f"{name} must be a number") from None
    return None


def _require_driver(session: Session) -> Driver:
    if not isinstance(session.identity, Driver):
        raise Unauthorized("Only drivers can do this")
    return session.identity


class RealtimeGateway:
    def __init__(
        self,
        hub: RealtimeHub,
        orders: OrderService,
        matcher: DispatchMatcher,
        chat: ChatRelay,
        presence: DriverPresence,
    ):
        self.hub = hub
        self.orders = orders
        self.matcher = matcher
        self.chat = chat
        self.presence = presence
        self._handlers: dict[str, Handler] = {
            events.JOIN_ORDER: self._join_order,
            events.LEAVE_ORDER: self._leave_order,
            events.JOIN_CHAT: self._join_chat,
            events.LEAVE_CHAT: self._leave_chat,
            events.SEND_MESSAGE: self._send_message,
            events.UPDATE_LOCATION: self._update_location,
            events.ACCEPT_ORDER: self._accept_order,
            events.UPDATE_ORDER_STATUS: self._update_status,
            events.SET_ONLINE: self._set_online,
        }

    async def handle(self, connection_id: str, message: dict[str, Any]) -> None:
        session = self.hub.session(connection_id)
        if session is None:
            return
        if not isinstance(message, dict):
            message = {}
        event = message.get("event")
        data = message.get("data") or {}
        handler = self._handlers.get(event)
        try:
            if handler is None:
                raise ValidationError(f"Unknown event {event!r}")
            if not isinstance(data, dict):
                raise ValidationError("data must be an object")
            await handler(session, data)
        except DispatchError as exc:
            await self._error(session, exc, event)

    async def _error(self, session: Session, exc: DispatchError, event: Optional[str]) -> None:
        payload = events.ErrorEvent(code=exc.code, message=exc.message, event=event)
        await session.connection.send({"event": events.ERROR, "data": payload.dump()})

    # ── Rooms ─────────────────────────────────────────────────────

    async def _join_order(self, session: Session, data: dict[str, Any]) -> None:
        order_id = _order_id(data)
        outcome = await self.orders.get_order(session.identity, order_id)
        if not outcome.ok:
            raise outcome.error
        self.hub.join(session.id, order_room(order_id))

    async def _leave_order(self, session: Session, data: dict[str, Any]) -> None:
        self.hub.leave(session.id, order_room(_order_id(data)))

    async def _join_chat(self, session: Session, data: dict[str, Any]) -> None:
        order_id = _order_id(data)
        outcome = await self.orders.get_order(session.identity, order_id)
        if not outcome.ok:
            raise outcome.error
        participant_role(session.identity, outcome.value)
        self.hub.join(session.id, chat_room(order_id))

    async def _leave_chat(self, session: Session, data: dict[str, Any]) -> None:
        self.hub.leave(session.id, chat_room(_order_id(data)))

    # ── Actions ───────────────────────────────────────────────────

    async def _send_message(self, session: Session, data: dict[str, Any]) -> None:
        outcome = await self.chat.send(session.identity, _order_id(data), data.get("body", ""))
        if not outcome.ok:
            raise outcome.error

    async def _update_location(self, session: Session, data: dict[str, Any]) -> None:
        driver = _require_driver(session)
        lat = _coordinate(data, "lat", "latitude")
        lng = _coordinate(data, "lng", "longitude")
        if lat is None or lng is None:
            raise ValidationError("lat and lng are required")
        outcome = await self.presence.update_location(driver.id, lat, lng)
        if not outcome.ok:
            raise outcome.error

    async def _accept_order(self, session: Session, data: dict[str, Any]) -> None:
        driver = _require_driver(session)
        order_id = _order_id(data)
        result = await self.matcher.try_claim(order_id, driver.id)
        if result.won:
            order = result.order
            payload = events.OrderAcceptedEvent(
                order_id=order.id,
                status=order.status.value,
                customer_id=order.customer_id,
                pickup=place_payload(order.pickup),
                drop=place_payload(order.drop),
                fare=order.total_fare,
            )
            await session.connection.send({"event": events.ORDER_ACCEPTED, "data": payload.dump()})
        else:
            payload = events.OrderErrorEvent(
                order_id=order_id, code=result.reason.code, message=result.reason.message
            )
            await session.connection.send({"event": events.ORDER_ERROR, "data": payload.dump()})

    async def _update_status(self, session: Session, data: dict[str, Any]) -> None:
        try:
            status = OrderStatus(data.get("status"))
        except ValueError:
            raise ValidationError(f"Unknown status {data.get('status')!r}") from None
        lat = _coordinate(data, "lat", "latitude")
        lng = _coordinate(data, "lng", "longitude")
        position = Location(lat, lng) if lat is not None and lng is not None else None
        outcome = await self.orders.push_status(
            session.identity, _order_id(data), status, position=position, note=data.get("note")
        )
        if not outcome.ok:
            raise outcome.error

    async def _set_online(self, session: Session, data: dict[str, Any]) -> None:
        driver = _require_driver(session)
        online = data.get("online", True)
        if not isinstance(online, bool):
            raise ValidationError("online must be true or false")
        outcome = await self.presence.set_online(driver.id, online)
        if not outcome.ok:
            raise outcome.error
        session.vehicle_type = outcome.value.vehicle_type
