"""Chat Relay -- append-only per-order chat fanned out to ``chat:<orderId>``."""

from __future__ import annotations

import logging

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from carryon.domain.entities import ChatMessage, Order
from carryon.domain.enums import ActorRole
from carryon.domain.errors import DispatchError, NotFound, Outcome, Unauthorized, ValidationError
from carryon.domain.identity import Customer, Driver, Identity
from carryon.infrastructure.repositories import ChatRepository, OrderRepository, to_message, to_order
from carryon.realtime import events
from carryon.realtime.hub import RealtimeHub
from carryon.realtime.rooms import chat_room

logger = logging.getLogger(__name__)

MAX_MESSAGE_LENGTH = 2000


def participant_role(actor: Identity, order: Order) -> ActorRole:
    """The role *actor* chats as on *order*; raise if they are not a party to it."""
    if isinstance(actor, Customer) and actor.id == order.customer_id:
        return ActorRole.CUSTOMER
    if isinstance(actor, Driver) and actor.id == order.driver_id:
        return ActorRole.DRIVER
    raise Unauthorized(f"{actor.key} is not a participant of order {order.id}")


class ChatRelay:
    def __init__(self, sessions: async_sessionmaker[AsyncSession], hub: RealtimeHub):
        self.sessions = sessions
        self.hub = hub

    async def _load_order(self, session: AsyncSession, order_id: int) -> Order:
        model = await OrderRepository(session).get_by_id(order_id)
        if model is None:
            raise NotFound(f"Order {order_id} not found")
        return to_order(model)

    async def send(self, actor: Identity, order_id: int, body: str) -> Outcome[ChatMessage]:
        try:
            body = (body or "").strip()
            if not body:
                raise ValidationError("Message is required")
            if len(body) > MAX_MESSAGE_LENGTH:
                raise ValidationError(f"Message longer than {MAX_MESSAGE_LENGTH} characters")
            async with self.sessions.begin() as session:
                role = participant_role(actor, await self._load_order(session, order_id))
                model = await ChatRepository(session).append(order_id, actor.id, role, body)
                message = to_message(model)
        except DispatchError as exc:
            return Outcome.failure(exc)

        payload = events.NewMessageEvent(
            message=events.ChatMessagePayload(
                id=message.id,
                order_id=message.order_id,
                sender_id=message.sender_id,
                sender_role=message.sender_role.value,
                body=message.body,
                is_read=message.is_read,
                created_at=message.created_at,
            )
        )
        await self.hub.emit(chat_room(order_id), events.NEW_MESSAGE, payload.dump())
        return Outcome.success(message)

    async def history(self, actor: Identity, order_id: int) -> Outcome[list[ChatMessage]]:
        try:
            async with self.sessions() as session:
                participant_role(actor, await self._load_order(session, order_id))
                rows = await ChatRepository(session).list_for_order(order_id)
        except DispatchError as exc:
            return Outcome.failure(exc)
        return Outcome.success([to_message(r) for r in rows])

    async def mark_read(self, actor: Identity, order_id: int) -> Outcome[int]:
        try:
            async with self.sessions.begin() as session:
                role = participant_role(actor, await self._load_order(session, order_id))
                count = await ChatRepository(session).mark_read(order_id, role)
        except DispatchError as exc:
            return Outcome.failure(exc)
        return Outcome.success(count)
