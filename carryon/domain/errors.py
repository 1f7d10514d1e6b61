"""
Error taxonomy and the result types returned across the core boundary.

Core services never let a ``DispatchError`` escape: they return an
``Outcome`` (or a ``ClaimResult`` for driver claims).  Only faults the
caller cannot fix -- an unreachable database, for instance -- propagate
as exceptions.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Generic, Optional, TypeVar

from .enums import ActorRole, OrderStatus

T = TypeVar("T")


class DispatchError(Exception):
    code = "dispatch_error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(DispatchError):
    """Malformed input; always fixable by the caller."""

    code = "validation_error"


class NotFound(DispatchError):
    code = "not_found"


class InvalidTransition(DispatchError):
    """A status change the state machine does not allow from the current state."""

    code = "invalid_transition"

    def __init__(
        self, current: OrderStatus, requested: OrderStatus, actor: ActorRole
    ):
        super().__init__(
            f"Cannot move order from {current.value} to {requested.value} "
            f"as {actor.value}"
        )
        self.current = current
        self.requested = requested
        self.actor = actor


class Unauthorized(DispatchError):
    """The actor is not allowed to perform this operation on this order."""

    code = "unauthorized"


class AlreadyTaken(DispatchError):
    code = "already_taken"

    def __init__(self, order_id: int):
        super().__init__(f"Order {order_id} was already taken by another driver")
        self.order_id = order_id


class OrderNotAvailable(DispatchError):
    code = "order_not_available"

    def __init__(self, order_id: int):
        super().__init__(f"Order {order_id} is not available")
        self.order_id = order_id


class UpstreamUnavailable(DispatchError):
    """A collaborator (push, payment, geocoding) failed."""

    code = "upstream_unavailable"


# ── Results ───────────────────────────────────────────────────────────


@dataclass(frozen=True)
class Outcome(Generic[T]):
    value: Optional[T] = None
    error: Optional[DispatchError] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, value: T) -> "Outcome[T]":
        return cls(value=value)

    @classmethod
    def failure(cls, error: DispatchError) -> "Outcome[T]":
        return cls(error=error)


@dataclass(frozen=True)
class ClaimResult(Generic[T]):
    won: bool
    order: Optional[T] = None
    reason: Optional[DispatchError] = None
