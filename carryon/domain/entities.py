"""
Domain entities with business logic.

Patterns used
-------------
- **State Pattern** on ``Order``: the status only moves along
  ``ORDER_TRANSITIONS`` and every move appends one immutable
  ``StatusHistoryEntry``.
- ``PromoCode.check_eligible`` encapsulates the validity window, usage cap
  and minimum-order rules.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Optional

from .enums import (
    DRIVER_BOUND_STATUSES,
    ORDER_TRANSITIONS,
    ActorRole,
    DiscountType,
    OrderStatus,
    PaymentMethod,
    PaymentStatus,
    VehicleType,
)
from .errors import ValidationError

if TYPE_CHECKING:
    from .transitions import OrderChange


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Databases without tz support hand back naive datetimes; treat them as UTC."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


# ── Value Objects ─────────────────────────────────────────────────────


@dataclass(frozen=True)
class Location:
    latitude: float
    longitude: float

    def __post_init__(self):
        if not -90 <= self.latitude <= 90:
            raise ValidationError(f"Latitude out of range: {self.latitude}")
        if not -180 <= self.longitude <= 180:
            raise ValidationError(f"Longitude out of range: {self.longitude}")


@dataclass(frozen=True)
class Place:
    location: Location
    address: str
    label: Optional[str] = None
    contact_name: Optional[str] = None
    contact_phone: Optional[str] = None

    def __post_init__(self):
        if not self.address or not self.address.strip():
            raise ValidationError("Address is required")


@dataclass(frozen=True)
class StatusHistoryEntry:
    status: OrderStatus
    created_at: datetime
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    note: Optional[str] = None


# ── Entities ──────────────────────────────────────────────────────────


@dataclass
class Order:
    id: Optional[int] = None
    customer_id: int = 0
    driver_id: Optional[int] = None
    vehicle_type: VehicleType = VehicleType.BIKE
    pickup: Optional[Place] = None
    drop: Optional[Place] = None
    stops: tuple[Place, ...] = ()
    package_description: Optional[str] = None

    distance_m: float = 0.0
    duration_s: int = 0
    base_fare: int = 0
    distance_fare: int = 0
    time_fare: int = 0
    discount: int = 0
    promo_code: Optional[str] = None
    total_fare: int = 0
    payment_method: PaymentMethod = PaymentMethod.CASH
    payment_status: PaymentStatus = PaymentStatus.PENDING

    status: OrderStatus = OrderStatus.PENDING
    history: tuple[StatusHistoryEntry, ...] = ()
    cancellation_reason: Optional[str] = None

    created_at: Optional[datetime] = None
    accepted_at: Optional[datetime] = None
    picked_up_at: Optional[datetime] = None
    delivered_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None

    def can_transition_to(self, new_status: OrderStatus) -> bool:
        return new_status in ORDER_TRANSITIONS.get(self.status, set())

    def apply(self, change: "OrderChange") -> None:
        """Apply an already-authorised change to this in-memory snapshot."""
        self.status = change.status
        self.driver_id = change.driver_id
        for name in (
            "accepted_at",
            "picked_up_at",
            "delivered_at",
            "cancelled_at",
            "cancellation_reason",
        ):
            value = getattr(change, name)
            if value is not None:
                setattr(self, name, value)
        self.history = self.history + (change.entry,)

    def check_invariants(self) -> None:
        bound = self.status in DRIVER_BOUND_STATUSES
        if bound != (self.driver_id is not None):
            raise AssertionError(
                f"Order {self.id}: driver_id={self.driver_id} in status {self.status.value}"
            )
        if self.total_fare < 0:
            raise AssertionError(f"Order {self.id}: negative total fare")


@dataclass
class Driver:
    id: Optional[int] = None
    name: str = ""
    phone: str = ""
    vehicle_type: VehicleType = VehicleType.BIKE
    vehicle_number: Optional[str] = None
    vehicle_model: Optional[str] = None
    is_verified: bool = False
    is_active: bool = True
    is_online: bool = False
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    rating: float = 5.0
    total_ratings: int = 0
    total_deliveries: int = 0

    @property
    def position(self) -> Optional[Location]:
        if self.latitude is None or self.longitude is None:
            return None
        return Location(self.latitude, self.longitude)


@dataclass
class PromoCode:
    id: Optional[int] = None
    code: str = ""
    description: Optional[str] = None
    discount_type: DiscountType = DiscountType.FIXED
    discount_value: float = 0.0
    max_discount: Optional[float] = None
    min_order_amount: Optional[float] = None
    max_uses: Optional[int] = None
    used_count: int = 0
    valid_from: Optional[datetime] = None
    valid_until: Optional[datetime] = None
    is_active: bool = True

    def check_eligible(self, subtotal: int, now: Optional[datetime] = None) -> None:
        """Raise ``ValidationError`` explaining why this promo cannot be used."""
        now = now or utcnow()
        if not self.is_active:
            raise ValidationError("This promo code is no longer active")
        valid_from, valid_until = as_utc(self.valid_from), as_utc(self.valid_until)
        if (valid_from and now < valid_from) or (valid_until and now > valid_until):
            raise ValidationError("This promo code has expired")
        if self.max_uses is not None and self.used_count >= self.max_uses:
            raise ValidationError("This promo code has reached its usage limit")
        if self.min_order_amount and subtotal < self.min_order_amount:
            raise ValidationError(
                f"Minimum order amount is {self.min_order_amount:g}"
            )


@dataclass
class ChatMessage:
    id: Optional[int] = None
    order_id: int = 0
    sender_id: int = 0
    sender_role: ActorRole = ActorRole.CUSTOMER
    body: str = ""
    is_read: bool = False
    created_at: Optional[datetime] = None
