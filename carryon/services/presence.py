"""
Driver presence -- online flag, live location, and the disconnect rule.

A driver connection going away for any reason forces ``is_online`` to
false; ``handle_disconnect`` is registered as a hub disconnect hook so it
fires on every close path.  Any other connections the driver still holds
leave the tier pool at the same time, so pool membership never outlives
the flag; the driver re-announces with ``setOnline``.
"""

from __future__ import annotations

import logging
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from carryon.domain.entities import Driver as DriverEntity
from carryon.domain.entities import Location, utcnow
from carryon.domain.errors import DispatchError, NotFound, Outcome
from carryon.domain.identity import Driver
from carryon.infrastructure.repositories import DriverRepository, OrderRepository, to_driver
from carryon.realtime.announcer import OrderAnnouncer
from carryon.realtime.hub import Session
from carryon.realtime.rooms import pool_room

logger = logging.getLogger(__name__)


class DriverPresence:
    def __init__(self, sessions: async_sessionmaker[AsyncSession], announcer: OrderAnnouncer):
        self.sessions = sessions
        self.announcer = announcer

    @property
    def hub(self):
        return self.announcer.hub

    async def get_driver(self, driver_id: int) -> Optional[DriverEntity]:
        async with self.sessions() as session:
            model = await DriverRepository(session).get_by_id(driver_id)
        return to_driver(model) if model else None

    async def set_online(self, driver_id: int, online: bool) -> Outcome[DriverEntity]:
        """Toggle presence and pool membership for every connection of the driver."""
        async with self.sessions.begin() as session:
            repo = DriverRepository(session)
            if not await repo.set_online(driver_id, online):
                return Outcome.failure(NotFound(f"Driver {driver_id} not found"))
            driver = to_driver(await repo.get_by_id(driver_id))
        room = pool_room(driver.vehicle_type)
        if online:
            await self.hub.join_identity(Driver(driver_id), room)
        else:
            await self.hub.leave_identity(Driver(driver_id), room)
        logger.info("Driver %s is now %s", driver_id, "online" if online else "offline")
        return Outcome.success(driver)

    async def update_location(
        self, driver_id: int, latitude: float, longitude: float
    ) -> Outcome[Optional[int]]:
        """Persist the driver's position and stream it to their active order, if any."""
        try:
            Location(latitude, longitude)
        except DispatchError as exc:
            return Outcome.failure(exc)
        async with self.sessions.begin() as session:
            if not await DriverRepository(session).update_location(driver_id, latitude, longitude):
                return Outcome.failure(NotFound(f"Driver {driver_id} not found"))
            active = await OrderRepository(session).find_active_for_driver(driver_id)
            active_id = active.id if active is not None else None
        if active_id is not None:
            await self.announcer.driver_location(active_id, latitude, longitude, utcnow())
        return Outcome.success(active_id)

    async def force_offline(self, driver_id: int) -> None:
        """Clear the flag and drop every remaining connection from the tier pool."""
        async with self.sessions.begin() as session:
            repo = DriverRepository(session)
            if not await repo.set_online(driver_id, False):
                return
            driver = to_driver(await repo.get_by_id(driver_id))
        await self.hub.leave_identity(Driver(driver_id), pool_room(driver.vehicle_type))
        logger.info("Driver %s marked offline after disconnect", driver_id)

    async def handle_disconnect(self, session: Session) -> None:
        if isinstance(session.identity, Driver):
            await self.force_offline(session.identity.id)
