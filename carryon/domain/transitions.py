"""
Order transition commands.

Each command enumerates exactly the fields its transition may set, and
``plan_transition`` turns (order snapshot, command, actor) into an
``OrderChange``: a fully-resolved value the persistence layer commits
with a single conditional update guarded by ``from_status`` and
``expected_driver_id``.

Guard order: identity first (``Unauthorized``), then the transition
table (``InvalidTransition``).
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, ClassVar, Optional

from .entities import Location, Order, StatusHistoryEntry, utcnow
from .enums import OrderStatus
from .errors import InvalidTransition, Unauthorized
from .identity import Customer, Driver, Identity, System


@dataclass(frozen=True)
class OrderChange:
    order_id: int
    from_status: OrderStatus
    expected_driver_id: Optional[int]
    status: OrderStatus
    driver_id: Optional[int]
    entry: StatusHistoryEntry
    accepted_at: Optional[datetime] = None
    picked_up_at: Optional[datetime] = None
    delivered_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    cancellation_reason: Optional[str] = None
    increments_deliveries: bool = False
    # Only commit while the new driver holds no other in-progress order
    requires_idle_driver: bool = False

    def as_values(self) -> dict[str, Any]:
        """Column values for the conditional update."""
        values: dict[str, Any] = {"status": self.status, "driver_id": self.driver_id}
        for name in (
            "accepted_at",
            "picked_up_at",
            "delivered_at",
            "cancelled_at",
            "cancellation_reason",
        ):
            value = getattr(self, name)
            if value is not None:
                values[name] = value
        return values


class TransitionCommand:
    target: ClassVar[OrderStatus]

    def authorize(self, order: Order, actor: Identity) -> None:
        raise NotImplementedError

    def build(self, order: Order, actor: Identity, now: datetime) -> OrderChange:
        raise NotImplementedError

    def _entry(
        self,
        now: datetime,
        note: Optional[str] = None,
        position: Optional[Location] = None,
    ) -> StatusHistoryEntry:
        return StatusHistoryEntry(
            status=self.target,
            created_at=now,
            latitude=position.latitude if position else None,
            longitude=position.longitude if position else None,
            note=note,
        )


# ── Dispatch ──────────────────────────────────────────────────────────


@dataclass(frozen=True)
class AssignDriver(TransitionCommand):
    driver_id: int
    note: Optional[str] = None
    target: ClassVar[OrderStatus] = OrderStatus.DRIVER_ASSIGNED

    def authorize(self, order: Order, actor: Identity) -> None:
        if isinstance(actor, System):
            return
        if not (isinstance(actor, Driver) and actor.id == self.driver_id):
            raise Unauthorized("Only the claiming driver can be assigned")

    def build(self, order: Order, actor: Identity, now: datetime) -> OrderChange:
        return OrderChange(
            order_id=order.id,
            from_status=order.status,
            expected_driver_id=order.driver_id,
            status=self.target,
            driver_id=self.driver_id,
            accepted_at=now,
            entry=self._entry(now, self.note or f"Driver {self.driver_id} assigned"),
            requires_idle_driver=True,
        )


# ── Assigned-driver progress ──────────────────────────────────────────


@dataclass(frozen=True)
class _DriverProgress(TransitionCommand):
    position: Optional[Location] = None
    note: Optional[str] = None

    def authorize(self, order: Order, actor: Identity) -> None:
        if not isinstance(actor, Driver) or order.driver_id != actor.id:
            raise Unauthorized(
                f"Only the assigned driver can move order {order.id} "
                f"to {self.target.value}"
            )

    def _fields(self, now: datetime) -> dict[str, Any]:
        return {}

    def build(self, order: Order, actor: Identity, now: datetime) -> OrderChange:
        return OrderChange(
            order_id=order.id,
            from_status=order.status,
            expected_driver_id=order.driver_id,
            status=self.target,
            driver_id=order.driver_id,
            entry=self._entry(now, self.note, self.position),
            **self._fields(now),
        )


@dataclass(frozen=True)
class MarkArrived(_DriverProgress):
    target: ClassVar[OrderStatus] = OrderStatus.DRIVER_ARRIVED


@dataclass(frozen=True)
class CompletePickup(_DriverProgress):
    target: ClassVar[OrderStatus] = OrderStatus.PICKUP_COMPLETE

    def _fields(self, now: datetime) -> dict[str, Any]:
        return {"picked_up_at": now}


@dataclass(frozen=True)
class StartTransit(_DriverProgress):
    target: ClassVar[OrderStatus] = OrderStatus.IN_TRANSIT


@dataclass(frozen=True)
class MarkDelivered(_DriverProgress):
    target: ClassVar[OrderStatus] = OrderStatus.DELIVERED

    def _fields(self, now: datetime) -> dict[str, Any]:
        return {"delivered_at": now, "increments_deliveries": True}


DRIVER_COMMANDS: dict[OrderStatus, type[_DriverProgress]] = {
    cmd.target: cmd for cmd in (MarkArrived, CompletePickup, StartTransit, MarkDelivered)
}


# ── Cancellation ──────────────────────────────────────────────────────


@dataclass(frozen=True)
class CancelOrder(TransitionCommand):
    reason: Optional[str] = None
    target: ClassVar[OrderStatus] = OrderStatus.CANCELLED

    def authorize(self, order: Order, actor: Identity) -> None:
        if isinstance(actor, System):
            return
        if not (isinstance(actor, Customer) and actor.id == order.customer_id):
            raise Unauthorized(f"Only the customer can cancel order {order.id}")

    def build(self, order: Order, actor: Identity, now: datetime) -> OrderChange:
        default = "Cancelled by customer" if isinstance(actor, Customer) else "Cancelled"
        note = self.reason or default
        if order.driver_id is not None:
            note = f"{note} (driver {order.driver_id} released)"
        return OrderChange(
            order_id=order.id,
            from_status=order.status,
            expected_driver_id=order.driver_id,
            status=self.target,
            driver_id=None,
            cancelled_at=now,
            cancellation_reason=self.reason or default,
            entry=self._entry(now, note),
        )


def plan_transition(
    order: Order,
    command: TransitionCommand,
    actor: Identity,
    now: Optional[datetime] = None,
) -> OrderChange:
    """Validate *command* against *order* for *actor*; raise on any guard failure."""
    command.authorize(order, actor)
    if not order.can_transition_to(command.target):
        raise InvalidTransition(order.status, command.target, actor.role)
    return command.build(order, actor, now or utcnow())
