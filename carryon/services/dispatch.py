"""
Dispatch Matcher
================

Resolves which single driver is bound to a pending order.

Concurrency safety
------------------
The claim is one conditional update evaluated by the database::

    UPDATE orders SET status='driver_assigned', driver_id=:driver, ...
     WHERE id=:order AND status='pending' AND driver_id IS NULL

Exactly one of N concurrent claimers sees ``rowcount == 1``; the others
see 0 and are told ``AlreadyTaken``.  This holds across API processes
because no in-process lock is involved.

Algorithm per claim
-------------------
1. Load driver and order; reject ineligible drivers and orders that no
   longer exist or are closed.
2. Compare-and-set ``pending -> driver_assigned``, guarded so that a
   driver already holding an in-progress order cannot win (``DriverBusy``).
   The driver row is locked first so one driver's claims run one at a time.
3. After commit, bind the winner to the order room, notify the customer,
   and evict the order from the tier pool.  A loser re-announces the
   eviction so its peers stop trying.
"""

from __future__ import annotations

import logging
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from carryon.domain.distance import nearby_cells
from carryon.domain.entities import Driver as DriverEntity
from carryon.domain.entities import Order
from carryon.domain.enums import OrderStatus
from carryon.domain.errors import (
    AlreadyTaken,
    ClaimResult,
    DispatchError,
    NotFound,
    OrderNotAvailable,
    Outcome,
)
from carryon.domain.identity import Driver
from carryon.domain.matching import DriverBusy, check_claim_eligibility, rank_by_distance
from carryon.domain.transitions import AssignDriver, plan_transition
from carryon.infrastructure.repositories import (
    DriverRepository,
    OrderRepository,
    to_driver,
    to_order,
)
from carryon.realtime.announcer import OrderAnnouncer

logger = logging.getLogger(__name__)


class DispatchMatcher:
    def __init__(
        self,
        sessions: async_sessionmaker[AsyncSession],
        announcer: OrderAnnouncer,
        *,
        require_online: bool = True,
        h3_resolution: int = 7,
        nearby_rings: int = 2,
    ):
        self.sessions = sessions
        self.announcer = announcer
        self.require_online = require_online
        self.h3_resolution = h3_resolution
        self.nearby_rings = nearby_rings

    async def try_claim(self, order_id: int, driver_id: int) -> ClaimResult[Order]:
        """Race for *order_id* on behalf of *driver_id*."""
        try:
            order, driver = await self._claim(order_id, driver_id)
        except AlreadyTaken as exc:
            await self._announce_loss(order_id)
            return ClaimResult(won=False, reason=exc)
        except DispatchError as exc:
            logger.info("Claim of order %s by driver %s rejected: %s", order_id, driver_id, exc)
            return ClaimResult(won=False, reason=exc)
        if driver is not None:
            logger.info("Driver %s won order %s", driver_id, order_id)
            await self.announcer.assigned(order, driver)
        return ClaimResult(won=True, order=order)

    async def _claim(
        self, order_id: int, driver_id: int
    ) -> tuple[Order, Optional[DriverEntity]]:
        async with self.sessions.begin() as session:
            orders = OrderRepository(session)
            driver_model = await DriverRepository(session).get_by_id(driver_id, for_update=True)
            if driver_model is None:
                raise NotFound(f"Driver {driver_id} not found")
            driver = to_driver(driver_model)

            model = await orders.get_by_id(order_id)
            if model is None:
                raise OrderNotAvailable(order_id)
            order = to_order(model)
            if order.status is not OrderStatus.PENDING:
                if order.driver_id == driver_id:
                    # Repeat claim by the winner: report the win again, announce nothing
                    model = await orders.get_by_id(order_id, with_details=True)
                    return to_order(model), None
                raise self._not_claimable(order)

            check_claim_eligibility(driver, order, self.require_online)
            active = await orders.find_active_for_driver(driver_id)
            if active is not None:
                raise DriverBusy(driver_id, active.id)
            change = plan_transition(
                order,
                AssignDriver(driver_id, note=f"Driver {driver.name} assigned"),
                Driver(driver_id),
            )
            if not await orders.apply_change(change):
                current = to_order(await orders.get_by_id(order_id))
                if current.status is OrderStatus.PENDING and current.driver_id is None:
                    # Order still open: the idle-driver guard failed
                    raise DriverBusy(driver_id)
                raise self._not_claimable(current)
            model = await orders.get_by_id(order_id, with_details=True)
            return to_order(model), driver

    @staticmethod
    def _not_claimable(order: Order) -> DispatchError:
        if order.driver_id is not None:
            return AlreadyTaken(order.id)
        return OrderNotAvailable(order.id)

    async def _announce_loss(self, order_id: int) -> None:
        async with self.sessions() as session:
            model = await OrderRepository(session).get_by_id(order_id)
        if model is not None:
            await self.announcer.taken(to_order(model), model.driver_id)

    async def available_orders(
        self, driver_id: int, limit: int = 20
    ) -> Outcome[list[tuple[Order, Optional[float]]]]:
        """Pending orders this driver could claim, nearest pickup first."""
        async with self.sessions() as session:
            model = await DriverRepository(session).get_by_id(driver_id)
            if model is None:
                return Outcome.failure(NotFound(f"Driver {driver_id} not found"))
            driver = to_driver(model)
            position = driver.position
            cells = (
                nearby_cells(
                    position.latitude, position.longitude, self.h3_resolution, self.nearby_rings
                )
                if position is not None
                else None
            )
            rows = await OrderRepository(session).list_pending_for_tier(
                driver.vehicle_type, cells=cells, limit=limit
            )
        return Outcome.success(rank_by_distance([to_order(r) for r in rows], position))
