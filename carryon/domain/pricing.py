"""
Fare Engine  (table-driven, Strategy Pattern for discounts)
==========================================================

Formula
-------
total = base + round(km x per_km) + round(minutes x per_minute)

Each line item is rounded on its own (half-up, whole currency units), so
the total is always the sum of the displayed line items.

Discounts
---------
* **PERCENTAGE**: ``subtotal x value / 100``
* **FIXED**: ``value``

The raw discount is capped at ``max_discount`` when one is set, then
rounded.  The payable total never goes below zero.

Complexity: O(1) per calculation.
"""

from __future__ import annotations

import math
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

from .enums import DiscountType, VehicleType
from .errors import ValidationError


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


@dataclass(frozen=True)
class Tariff:
    base: int
    per_km: float
    per_minute: float
    capacity_kg: int


TARIFFS: dict[VehicleType, Tariff] = {
    VehicleType.BIKE: Tariff(base=30, per_km=8, per_minute=1, capacity_kg=20),
    VehicleType.CAR: Tariff(base=80, per_km=12, per_minute=1.5, capacity_kg=100),
    VehicleType.VAN: Tariff(base=150, per_km=18, per_minute=2, capacity_kg=500),
    VehicleType.TRUCK: Tariff(base=300, per_km=25, per_minute=2.5, capacity_kg=2000),
}


@dataclass(frozen=True)
class FareBreakdown:
    vehicle_type: VehicleType
    base: int
    distance_fare: int
    time_fare: int
    total: int


# ── Discount strategies ───────────────────────────────────────────────


class DiscountStrategy(ABC):
    @abstractmethod
    def raw_discount(self, subtotal: float) -> float: ...


class PercentageDiscount(DiscountStrategy):
    def __init__(self, percent: float):
        self.percent = percent

    def raw_discount(self, subtotal: float) -> float:
        return subtotal * self.percent / 100


class FixedDiscount(DiscountStrategy):
    def __init__(self, amount: float):
        self.amount = amount

    def raw_discount(self, subtotal: float) -> float:
        return self.amount


STRATEGIES: dict[DiscountType, type[DiscountStrategy]] = {
    DiscountType.PERCENTAGE: PercentageDiscount,
    DiscountType.FIXED: FixedDiscount,
}


# ── Engine facade ─────────────────────────────────────────────────────


class FareEngine:
    """High-level API used by order creation and the estimate endpoint."""

    def __init__(self, tariffs: Optional[dict[VehicleType, Tariff]] = None):
        self.tariffs = tariffs or TARIFFS

    def fare(
        self, vehicle_type: VehicleType, distance_m: float, duration_s: float
    ) -> FareBreakdown:
        if distance_m < 0 or duration_s < 0:
            raise ValidationError("Distance and duration must be non-negative")
        tariff = self.tariffs[vehicle_type]
        distance_fare = round_half_up(distance_m / 1000 * tariff.per_km)
        time_fare = round_half_up(duration_s / 60 * tariff.per_minute)
        return FareBreakdown(
            vehicle_type=vehicle_type,
            base=tariff.base,
            distance_fare=distance_fare,
            time_fare=time_fare,
            total=tariff.base + distance_fare + time_fare,
        )

    def estimate_all(
        self, distance_m: float, duration_s: float
    ) -> list[FareBreakdown]:
        return [self.fare(vt, distance_m, duration_s) for vt in self.tariffs]

    def capacity_kg(self, vehicle_type: VehicleType) -> int:
        return self.tariffs[vehicle_type].capacity_kg

    @staticmethod
    def apply_discount(
        subtotal: float,
        discount_type: DiscountType,
        value: float,
        max_discount: Optional[float] = None,
    ) -> int:
        """Return the (rounded, capped) discount amount for *subtotal*."""
        discount = STRATEGIES[discount_type](value).raw_discount(subtotal)
        # A zero cap means "no cap"
        if max_discount and discount > max_discount:
            discount = max_discount
        return round_half_up(discount)

    @staticmethod
    def payable(subtotal: int, discount: int) -> int:
        return max(0, subtotal - discount)
