"""
Order service -- creation, tracking, and every post-assignment transition.

Each public method is one core operation and returns an ``Outcome``;
``DispatchError`` never escapes.  Transitions follow the same pattern:

1. read a snapshot of the order,
2. ``plan_transition`` checks identity and the transition table,
3. the repository commits the change as a compare-and-set on
   (status, driver_id) in one transaction,
4. on a lost race, re-read and re-plan (bounded),
5. after commit, announce once.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from datetime import timedelta
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from carryon.domain.distance import h3_cell
from carryon.domain.entities import (
    Location,
    Order,
    Place,
    PromoCode,
    StatusHistoryEntry,
    utcnow,
)
from carryon.domain.enums import (
    OrderStatus,
    PaymentMethod,
    VehicleType,
)
from carryon.domain.errors import (
    DispatchError,
    InvalidTransition,
    NotFound,
    OrderNotAvailable,
    Outcome,
    Unauthorized,
    ValidationError,
)
from carryon.domain.identity import Customer, Driver, Identity, System
from carryon.domain.pricing import FareBreakdown, FareEngine
from carryon.domain.transitions import (
    DRIVER_COMMANDS,
    CancelOrder,
    OrderChange,
    TransitionCommand,
    plan_transition,
)
from carryon.infrastructure.payments import SignatureVerifier
from carryon.infrastructure.repositories import (
    DriverRepository,
    OrderRepository,
    PromoRepository,
    RatingRepository,
    to_driver,
    to_order,
    to_promo,
)
from carryon.realtime.announcer import OrderAnnouncer

logger = logging.getLogger(__name__)

MAX_TRANSITION_ATTEMPTS = 3


@dataclass(frozen=True)
class OrderDraft:
    pickup: Place
    drop: Place
    vehicle_type: VehicleType
    distance_m: float
    duration_s: int
    payment_method: PaymentMethod
    stops: tuple[Place, ...] = ()
    promo_code: Optional[str] = None
    package_description: Optional[str] = None
    idempotency_key: Optional[str] = None


@dataclass(frozen=True)
class PromoQuote:
    code: str
    description: Optional[str]
    discount_type: str
    discount_value: float
    max_discount: Optional[float]
    discount: int


@dataclass(frozen=True)
class FareQuote:
    estimates: list[FareBreakdown]
    capacities: dict[VehicleType, int]
    promo: Optional[PromoQuote] = None


@dataclass(frozen=True)
class OrderPage:
    orders: list[Order]
    total: int
    page: int
    limit: int


@dataclass(frozen=True)
class RatingResult:
    order_id: int
    driver_id: int
    rating: int
    review: Optional[str] = None


class OrderService:
    def __init__(
        self,
        sessions: async_sessionmaker[AsyncSession],
        announcer: OrderAnnouncer,
        fares: Optional[FareEngine] = None,
        *,
        h3_resolution: int = 7,
    ):
        self.sessions = sessions
        self.announcer = announcer
        self.fares = fares or FareEngine()
        self.h3_resolution = h3_resolution

    # ── Fares & promos ────────────────────────────────────────────

    async def estimate(
        self, distance_m: float, duration_s: int, promo_code: Optional[str] = None
    ) -> Outcome[FareQuote]:
        try:
            estimates = self.fares.estimate_all(distance_m, duration_s)
        except DispatchError as exc:
            return Outcome.failure(exc)
        promo = None
        if promo_code:
            # An unusable code simply yields no discount on an estimate
            reference = max(e.total for e in estimates)
            quote = await self.validate_promo(promo_code, reference)
            promo = quote.value if quote.ok else None
        capacities = {vt: self.fares.capacity_kg(vt) for vt in self.fares.tariffs}
        return Outcome.success(FareQuote(estimates, capacities, promo))

    async def validate_promo(self, code: str, amount: float) -> Outcome[PromoQuote]:
        async with self.sessions() as session:
            model = await PromoRepository(session).get_by_code(code)
        try:
            if model is None:
                raise ValidationError("Invalid promo code")
            promo = to_promo(model)
            promo.check_eligible(int(amount))
        except DispatchError as exc:
            return Outcome.failure(exc)
        discount = self.fares.apply_discount(
            amount, promo.discount_type, promo.discount_value, promo.max_discount
        )
        return Outcome.success(
            PromoQuote(
                code=promo.code,
                description=promo.description,
                discount_type=promo.discount_type.value,
                discount_value=promo.discount_value,
                max_discount=promo.max_discount,
                discount=discount,
            )
        )

    async def available_promos(self) -> list[PromoCode]:
        async with self.sessions() as session:
            rows = await PromoRepository(session).list_available(utcnow())
        return [to_promo(r) for r in rows]

    # ── Creation ──────────────────────────────────────────────────

    async def create_order(self, actor: Identity, draft: OrderDraft) -> Outcome[Order]:
        """
        Price, persist and broadcast a new order.

        Promo redemption, the order row, its stops and its first history
        entry are one transaction: a failed insert rolls the usage
        increment back, and a retried request carrying the same
        idempotency key returns the original order without redeeming again.
        """
        if not isinstance(actor, Customer):
            return Outcome.failure(Unauthorized("Only customers can create orders"))
        try:
            if draft.idempotency_key:
                existing = await self._find_by_key(draft.idempotency_key, actor)
                if existing is not None:
                    return Outcome.success(existing)
            try:
                order = await self._insert(actor, draft)
            except IntegrityError:
                # A concurrent retry with the same key won the insert
                existing = (
                    await self._find_by_key(draft.idempotency_key, actor)
                    if draft.idempotency_key
                    else None
                )
                if existing is None:
                    raise
                return Outcome.success(existing)
        except DispatchError as exc:
            return Outcome.failure(exc)

        logger.info(
            "Order %s created for customer %s (%s, fare %s)",
            order.id, actor.id, order.vehicle_type.value, order.total_fare,
        )
        await self.announcer.new_order(order)
        return Outcome.success(order)

    async def _find_by_key(self, key: str, actor: Customer) -> Optional[Order]:
        async with self.sessions() as session:
            repo = OrderRepository(session)
            model = await repo.get_by_idempotency_key(key)
            if model is None:
                return None
            if model.customer_id != actor.id:
                raise ValidationError("Idempotency key already used")
            model = await repo.get_by_id(model.id, with_details=True)
            return to_order(model)

    async def _insert(self, actor: Customer, draft: OrderDraft) -> Order:
        if draft.distance_m is None or draft.duration_s is None:
            raise ValidationError("Distance and duration are required")
        fare = self.fares.fare(draft.vehicle_type, draft.distance_m, draft.duration_s)
        now = utcnow()
        order = Order(
            customer_id=actor.id,
            vehicle_type=draft.vehicle_type,
            pickup=draft.pickup,
            drop=draft.drop,
            stops=draft.stops,
            package_description=draft.package_description,
            distance_m=draft.distance_m,
            duration_s=draft.duration_s,
            base_fare=fare.base,
            distance_fare=fare.distance_fare,
            time_fare=fare.time_fare,
            total_fare=fare.total,
            payment_method=draft.payment_method,
            status=OrderStatus.PENDING,
            history=(StatusHistoryEntry(OrderStatus.PENDING, now, note="Order created"),),
            created_at=now,
        )
        pickup = draft.pickup.location
        async with self.sessions.begin() as session:
            promo_model = None
            if draft.promo_code:
                promo_model = await PromoRepository(session).get_by_code(draft.promo_code)
                if promo_model is None:
                    raise ValidationError("Invalid promo code")
                promo = to_promo(promo_model)
                promo.check_eligible(fare.total, now)
                discount = self.fares.apply_discount(
                    fare.total, promo.discount_type, promo.discount_value, promo.max_discount
                )
                order = replace(
                    order,
                    discount=discount,
                    promo_code=promo.code,
                    total_fare=self.fares.payable(fare.total, discount),
                )

            repo = OrderRepository(session)
            model = await repo.create_order(
                order,
                pickup_h3_cell=h3_cell(pickup.latitude, pickup.longitude, self.h3_resolution),
                idempotency_key=draft.idempotency_key,
            )
            if promo_model is not None:
                redeemed = await PromoRepository(session).redeem(
                    promo_model.id, model.id, order.discount, now
                )
                if not redeemed:
                    raise ValidationError("This promo code has reached its usage limit")
            model = await repo.get_by_id(model.id, with_details=True)
            return to_order(model)

    # ── Queries ───────────────────────────────────────────────────

    async def get_order(self, actor: Identity, order_id: int) -> Outcome[Order]:
        """Fetch an order visible to *actor* (its customer or its driver)."""
        async with self.sessions() as session:
            model = await OrderRepository(session).get_by_id(order_id, with_details=True)
        try:
            if model is None:
                raise NotFound(f"Order {order_id} not found")
            order = to_order(model)
            self._check_viewer(actor, order)
        except DispatchError as exc:
            return Outcome.failure(exc)
        return Outcome.success(order)

    @staticmethod
    def _check_viewer(actor: Identity, order: Order) -> None:
        if isinstance(actor, System):
            return
        if isinstance(actor, Customer) and actor.id == order.customer_id:
            return
        if isinstance(actor, Driver) and actor.id == order.driver_id:
            return
        raise Unauthorized(f"Order {order.id} is not visible to {actor.key}")

    async def list_orders(
        self,
        actor: Identity,
        *,
        status: Optional[OrderStatus] = None,
        page: int = 1,
        limit: int = 20,
    ) -> Outcome[OrderPage]:
        if not isinstance(actor, Customer):
            return Outcome.failure(Unauthorized("Only customers have an order history"))
        if page < 1 or not 1 <= limit <= 100:
            return Outcome.failure(ValidationError("Invalid pagination"))
        async with self.sessions() as session:
            rows, total = await OrderRepository(session).list_for_customer(
                actor.id, status=status, offset=(page - 1) * limit, limit=limit
            )
        return Outcome.success(OrderPage([to_order(r) for r in rows], total, page, limit))

    # ── Transitions ───────────────────────────────────────────────

    async def _transition(
        self, actor: Identity, order_id: int, command: TransitionCommand
    ) -> tuple[Order, OrderChange]:
        for attempt in range(1, MAX_TRANSITION_ATTEMPTS + 1):
            async with self.sessions.begin() as session:
                repo = OrderRepository(session)
                model = await repo.get_by_id(order_id)
                if model is None:
                    raise NotFound(f"Order {order_id} not found")
                change = plan_transition(to_order(model), command, actor)
                if await repo.apply_change(change):
                    committed = await repo.get_by_id(order_id, with_details=True)
                    logger.info(
                        "Order %s: %s -> %s by %s",
                        order_id, change.from_status.value, change.status.value, actor.key,
                    )
                    return to_order(committed), change
            logger.info(
                "Order %s changed concurrently (attempt %d), re-reading", order_id, attempt
            )
        raise OrderNotAvailable(order_id)

    async def cancel(
        self, actor: Identity, order_id: int, reason: Optional[str] = None
    ) -> Outcome[Order]:
        try:
            order, change = await self._transition(actor, order_id, CancelOrder(reason=reason))
        except DispatchError as exc:
            return Outcome.failure(exc)
        await self.announcer.cancelled(order, change.from_status, change.expected_driver_id)
        return Outcome.success(order)

    async def push_status(
        self,
        actor: Identity,
        order_id: int,
        status: OrderStatus,
        *,
        position: Optional[Location] = None,
        note: Optional[str] = None,
    ) -> Outcome[Order]:
        """A driver reports progress on the order assigned to them."""
        try:
            command_cls = DRIVER_COMMANDS.get(status)
            if command_cls is None:
                raise await self._rejected_push(actor, order_id, status)
            if position is None and isinstance(actor, Driver):
                position = await self._last_known_position(actor.id)
            order, change = await self._transition(
                actor, order_id, command_cls(position=position, note=note)
            )
        except DispatchError as exc:
            return Outcome.failure(exc)
        await self.announcer.status_changed(order, change.entry)
        return Outcome.success(order)

    async def _rejected_push(
        self, actor: Identity, order_id: int, status: OrderStatus
    ) -> DispatchError:
        if status is OrderStatus.CANCELLED:
            return Unauthorized("Drivers cannot cancel orders")
        async with self.sessions() as session:
            model = await OrderRepository(session).get_by_id(order_id)
        if model is None:
            return NotFound(f"Order {order_id} not found")
        return InvalidTransition(model.status, status, actor.role)

    async def _last_known_position(self, driver_id: int) -> Optional[Location]:
        async with self.sessions() as session:
            model = await DriverRepository(session).get_by_id(driver_id)
        return to_driver(model).position if model else None

    async def expire(self, order_id: int, waited: timedelta) -> Outcome[Order]:
        """Give up on finding a driver for a pending order."""
        command = CancelOrder(reason="No drivers available")
        try:
            order, change = await self._transition(System("sweeper"), order_id, command)
        except DispatchError as exc:
            return Outcome.failure(exc)
        await self.announcer.cancelled(order, change.from_status, change.expected_driver_id)
        await self.announcer.no_drivers(order, int(waited.total_seconds()))
        return Outcome.success(order)

    # ── Post-delivery ─────────────────────────────────────────────

    async def rate(
        self, actor: Identity, order_id: int, rating: int, review: Optional[str] = None
    ) -> Outcome[RatingResult]:
        try:
            if not 1 <= rating <= 5:
                raise ValidationError("Rating must be between 1 and 5")
            async with self.sessions.begin() as session:
                model = await OrderRepository(session).get_by_id(order_id)
                if model is None:
                    raise NotFound(f"Order {order_id} not found")
                order = to_order(model)
                if not (isinstance(actor, Customer) and actor.id == order.customer_id):
                    raise Unauthorized("Only the customer can rate this order")
                if order.status is not OrderStatus.DELIVERED:
                    raise ValidationError("Only delivered orders can be rated")
                ratings = RatingRepository(session)
                if await ratings.get_for_order(order_id) is not None:
                    raise ValidationError("Order already rated")
                await ratings.create(
                    order_id=order_id,
                    customer_id=actor.id,
                    driver_id=order.driver_id,
                    rating=rating,
                    review=review,
                )
                await DriverRepository(session).apply_rating(order.driver_id, rating)
        except IntegrityError:
            return Outcome.failure(ValidationError("Order already rated"))
        except DispatchError as exc:
            return Outcome.failure(exc)
        return Outcome.success(RatingResult(order_id, order.driver_id, rating, review))

    async def confirm_payment(
        self,
        actor: Identity,
        order_id: int,
        *,
        gateway_order_id: str,
        payment_id: str,
        signature: str,
        verifier: SignatureVerifier,
    ) -> Outcome[Order]:
        """Mark an order paid once the gateway's signature checks out."""
        try:
            if not verifier.verify(gateway_order_id, payment_id, signature):
                raise ValidationError("Invalid payment signature")
            async with self.sessions.begin() as session:
                repo = OrderRepository(session)
                model = await repo.get_by_id(order_id)
                if model is None:
                    raise NotFound(f"Order {order_id} not found")
                if not (isinstance(actor, Customer) and actor.id == model.customer_id):
                    raise Unauthorized("Only the customer can pay for this order")
                if await repo.mark_paid(order_id, payment_id):
                    logger.info("Order %s paid (%s)", order_id, payment_id)
                model = await repo.get_by_id(order_id, with_details=True)
                order = to_order(model)
        except DispatchError as exc:
            return Outcome.failure(exc)
        return Outcome.success(order)
