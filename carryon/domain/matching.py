"""
Dispatch eligibility and proximity ranking
==========================================

A driver may claim an order only when

* the driver's vehicle tier equals the order's tier,
* the driver account is active,
* the driver is online (configurable; presence is a runtime signal), and
* the driver holds no other order between assignment and delivery.

The claim race itself is resolved by the persistence layer's conditional
update (see ``DispatchMatcher``); this module only decides who may enter
the race.

Available-work ranking
----------------------
Pending orders of the driver's tier are pre-filtered to the H3 cells
around the driver's last known position, then sorted by great-circle
distance to pickup.  O(n log n) in the number of candidate orders.
"""

from __future__ import annotations

from typing import Iterable, Optional

from .distance import haversine_km
from .entities import Driver, Location, Order
from .errors import Unauthorized


class DriverNotEligible(Unauthorized):
    code = "driver_not_eligible"


class DriverBusy(DriverNotEligible):
    """The driver already holds an order between assignment and delivery."""

    code = "driver_busy"

    def __init__(self, driver_id: int, order_id: Optional[int] = None):
        held = f" ({order_id})" if order_id is not None else ""
        super().__init__(f"Driver {driver_id} already has an active order{held}")
        self.driver_id = driver_id


def check_claim_eligibility(
    driver: Driver, order: Order, require_online: bool = True
) -> None:
    if not driver.is_active:
        raise DriverNotEligible(f"Driver {driver.id} is not active")
    if require_online and not driver.is_online:
        raise DriverNotEligible(f"Driver {driver.id} is offline")
    if driver.vehicle_type != order.vehicle_type:
        raise DriverNotEligible(
            f"Order {order.id} needs a {order.vehicle_type.value}, "
            f"driver {driver.id} has a {driver.vehicle_type.value}"
        )


def distance_to_pickup_km(order: Order, position: Optional[Location]) -> Optional[float]:
    if position is None or order.pickup is None:
        return None
    pickup = order.pickup.location
    return haversine_km(
        position.latitude, position.longitude, pickup.latitude, pickup.longitude
    )


def rank_by_distance(
    orders: Iterable[Order], position: Optional[Location]
) -> list[tuple[Order, Optional[float]]]:
    """Pair each order with its pickup distance; nearest first, unknown last."""
    ranked = [(o, distance_to_pickup_km(o, position)) for o in orders]
    ranked.sort(key=lambda pair: (pair[1] is None, pair[1] or 0.0))
    return ranked
