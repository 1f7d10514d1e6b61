"""Domain enumerations and state-transition rules."""

import enum


class OrderStatus(str, enum.Enum):
    PENDING = "pending"
    DRIVER_ASSIGNED = "driver_assigned"
    DRIVER_ARRIVED = "driver_arrived"
    PICKUP_COMPLETE = "pickup_complete"
    IN_TRANSIT = "in_transit"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


# State machine: maps current status -> set of valid next statuses
ORDER_TRANSITIONS: dict[OrderStatus, set[OrderStatus]] = {
    OrderStatus.PENDING: {OrderStatus.DRIVER_ASSIGNED, OrderStatus.CANCELLED},
    OrderStatus.DRIVER_ASSIGNED: {OrderStatus.DRIVER_ARRIVED, OrderStatus.CANCELLED},
    OrderStatus.DRIVER_ARRIVED: {OrderStatus.PICKUP_COMPLETE, OrderStatus.CANCELLED},
    OrderStatus.PICKUP_COMPLETE: {OrderStatus.IN_TRANSIT, OrderStatus.CANCELLED},
    OrderStatus.IN_TRANSIT: {OrderStatus.DELIVERED},
    OrderStatus.DELIVERED: set(),
    OrderStatus.CANCELLED: set(),
}

# Statuses in which ``driver_id`` must be set
DRIVER_BOUND_STATUSES: frozenset[OrderStatus] = frozenset(
    {
        OrderStatus.DRIVER_ASSIGNED,
        OrderStatus.DRIVER_ARRIVED,
        OrderStatus.PICKUP_COMPLETE,
        OrderStatus.IN_TRANSIT,
        OrderStatus.DELIVERED,
    }
)

# Statuses in which the assigned driver is still working the order
IN_PROGRESS_STATUSES: frozenset[OrderStatus] = frozenset(
    DRIVER_BOUND_STATUSES - {OrderStatus.DELIVERED}
)

TERMINAL_STATUSES: frozenset[OrderStatus] = frozenset(
    s for s, nxt in ORDER_TRANSITIONS.items() if not nxt
)


class VehicleType(str, enum.Enum):
    BIKE = "BIKE"
    CAR = "CAR"
    VAN = "VAN"
    TRUCK = "TRUCK"


class PaymentMethod(str, enum.Enum):
    CASH = "CASH"
    CARD = "CARD"
    UPI = "UPI"
    WALLET = "WALLET"


class PaymentStatus(str, enum.Enum):
    PENDING = "PENDING"
    PAID = "PAID"
    FAILED = "FAILED"
    REFUNDED = "REFUNDED"


class DiscountType(str, enum.Enum):
    PERCENTAGE = "PERCENTAGE"
    FIXED = "FIXED"


class ActorRole(str, enum.Enum):
    ANONYMOUS = "anonymous"
    CUSTOMER = "customer"
    DRIVER = "driver"
    SYSTEM = "system"
