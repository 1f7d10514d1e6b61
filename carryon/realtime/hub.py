"""
Realtime Hub
============

Owns the room topology for one process and routes events to exactly the
connections that belong in each room.

Rooms
-----
* ``order:<id>``       -- the order's customer and its assigned driver
* ``driver:<id>``      -- every connection of one driver
* ``drivers:<tier>``   -- online drivers of one vehicle tier
* ``chat:<orderId>``   -- chat participants of one order

Membership is keyed by connection id and dropped when the connection
goes away.  Anonymous connections stay connected but cannot join any
room.

Cross-process
-------------
Room operations (emit / join / leave / bind) are turned into envelopes.
With a backplane configured, envelopes are published and every process
applies them to its local connections; otherwise they are applied
directly.  Either way a single emit reaches each member once, in order.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional, Protocol

from carryon.domain.enums import VehicleType
from carryon.domain.errors import Unauthorized
from carryon.domain.identity import Driver, Identity

from .rooms import driver_room, order_room, pool_room

logger = logging.getLogger(__name__)


class Connection(Protocol):
    id: str

    async def send(self, message: dict[str, Any]) -> None: ...


class Backplane(Protocol):
    async def publish(self, envelope: dict[str, Any]) -> None: ...


@dataclass
class Session:
    connection: Connection
    identity: Identity
    vehicle_type: Optional[VehicleType] = None
    rooms: set[str] = field(default_factory=set)

    @property
    def id(self) -> str:
        return self.connection.id


DisconnectHook = Callable[[Session], Awaitable[None]]


class RealtimeHub:
    def __init__(self, backplane: Optional[Backplane] = None):
        self._backplane = backplane
        self._sessions: dict[str, Session] = {}
        self._rooms: dict[str, set[str]] = defaultdict(set)
        self._by_identity: dict[str, set[str]] = defaultdict(set)
        self._disconnect_hooks: list[DisconnectHook] = []

    def set_backplane(self, backplane: Optional[Backplane]) -> None:
        self._backplane = backplane

    def on_disconnect(self, hook: DisconnectHook) -> None:
        self._disconnect_hooks.append(hook)

    # ── Connection lifecycle ──────────────────────────────────────

    async def connect(
        self,
        connection: Connection,
        identity: Identity,
        *,
        vehicle_type: Optional[VehicleType] = None,
        online: bool = False,
    ) -> Session:
        session = Session(connection, identity, vehicle_type)
        self._sessions[connection.id] = session
        if identity.is_authenticated:
            self._by_identity[identity.key].add(connection.id)
        if isinstance(identity, Driver):
            self._join(session, driver_room(identity.id))
            if online and vehicle_type is not None:
                self._join(session, pool_room(vehicle_type))
        logger.info("Connection %s opened as %s", connection.id, identity.key)
        return session

    async def disconnect(self, connection_id: str) -> None:
        """Forget a connection.  Safe to call more than once."""
        session = self._sessions.pop(connection_id, None)
        if session is None:
            return
        for room in list(session.rooms):
            self._leave(session, room)
        keyed = self._by_identity.get(session.identity.key)
        if keyed is not None:
            keyed.discard(connection_id)
            if not keyed:
                del self._by_identity[session.identity.key]
        logger.info("Connection %s closed (%s)", connection_id, session.identity.key)

        for hook in self._disconnect_hooks:
            try:
                await hook(session)
            except Exception:
                logger.exception("Disconnect hook failed for %s", connection_id)

    # ── Membership ────────────────────────────────────────────────

    def session(self, connection_id: str) -> Optional[Session]:
        return self._sessions.get(connection_id)

    @property
    def connection_count(self) -> int:
        return len(self._sessions)

    def members(self, room: str) -> set[str]:
        return set(self._rooms.get(room, ()))

    def rooms_of(self, connection_id: str) -> set[str]:
        session = self._sessions.get(connection_id)
        return set(session.rooms) if session else set()

    def join(self, connection_id: str, room: str) -> None:
        """Add one connection to *room*.  Joining twice is a no-op."""
        session = self._sessions.get(connection_id)
        if session is None:
            return
        if not session.identity.is_authenticated:
            raise Unauthorized(f"Anonymous connections cannot join {room}")
        self._join(session, room)

    def leave(self, connection_id: str, room: str) -> None:
        session = self._sessions.get(connection_id)
        if session is not None:
            self._leave(session, room)

    def _join(self, session: Session, room: str) -> None:
        if room in session.rooms:
            return
        session.rooms.add(room)
        self._rooms[room].add(session.id)
        logger.debug("%s joined %s", session.id, room)

    def _leave(self, session: Session, room: str) -> None:
        if room not in session.rooms:
            return
        session.rooms.discard(room)
        members = self._rooms.get(room)
        if members is not None:
            members.discard(session.id)
            if not members:
                del self._rooms[room]
        logger.debug("%s left %s", session.id, room)

    # ── Routed operations ─────────────────────────────────────────

    async def emit(
        self,
        room: str,
        event: str,
        data: dict[str, Any],
        exclude: Optional[Identity] = None,
    ) -> None:
        await self._dispatch(
            {
                "op": "emit",
                "room": room,
                "event": event,
                "data": data,
                "exclude": exclude.key if exclude is not None else None,
            }
        )

    async def join_identity(self, identity: Identity, room: str) -> None:
        """Add every connection of *identity* (on any process) to *room*."""
        await self._dispatch({"op": "join", "identity": identity.key, "room": room})

    async def leave_identity(self, identity: Identity, room: str) -> None:
        await self._dispatch({"op": "leave", "identity": identity.key, "room": room})

    async def bind_driver(self, order_id: int, driver_id: int) -> None:
        """Make *driver_id* the only driver present in the order's room."""
        await self._dispatch(
            {"op": "bind", "room": order_room(order_id), "identity": Driver(driver_id).key}
        )

    async def _dispatch(self, envelope: dict[str, Any]) -> None:
        if self._backplane is not None:
            await self._backplane.publish(envelope)
        else:
            await self.deliver_local(envelope)

    async def deliver_local(self, envelope: dict[str, Any]) -> None:
        """Apply an envelope to the connections held by this process."""
        op = envelope.get("op")
        if op == "emit":
            await self._deliver(
                envelope["room"], envelope["event"], envelope["data"], envelope.get("exclude")
            )
        elif op == "join":
            for session in self._identity_sessions(envelope["identity"]):
                self._join(session, envelope["room"])
        elif op == "leave":
            for session in self._identity_sessions(envelope["identity"]):
                self._leave(session, envelope["room"])
        elif op == "bind":
            self._bind(envelope["room"], envelope["identity"])
        else:
            logger.warning("Ignoring unknown hub envelope %r", op)

    def _identity_sessions(self, key: str) -> list[Session]:
        return [self._sessions[cid] for cid in self._by_identity.get(key, ()) if cid in self._sessions]

    def _bind(self, room: str, driver_key: str) -> None:
        for cid in list(self._rooms.get(room, ())):
            session = self._sessions[cid]
            if isinstance(session.identity, Driver) and session.identity.key != driver_key:
                self._leave(session, room)
                logger.warning("Evicted %s from %s", session.identity.key, room)
        for session in self._identity_sessions(driver_key):
            self._join(session, room)

    async def _deliver(
        self, room: str, event: str, data: dict[str, Any], exclude: Optional[str]
    ) -> None:
        message = {"event": event, "data": data}
        for cid in list(self._rooms.get(room, ())):
            session = self._sessions.get(cid)
            if session is None or (exclude and session.identity.key == exclude):
                continue
            try:
                await session.connection.send(message)
            except Exception:
                # The transport reports the broken connection through disconnect()
                logger.warning("Send of %s to %s failed", event, cid, exc_info=True)
