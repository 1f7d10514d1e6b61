"""
Repository Pattern -- abstracts DB access so domain logic stays DB-agnostic.

Each repository receives an ``AsyncSession`` (unit-of-work) and exposes
domain-relevant queries only.  Every mutation of shared state is a single
conditional ``UPDATE`` evaluated by the database (status compare-and-set,
counter increments, presence toggles); application code never reads a
row, edits it and writes it back.
"""

from __future__ import annotations

from datetime import datetime
from typing import Iterable, Optional

from sqlalchemy import and_, exists, func, inspect, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased, selectinload

from .models import (
    ChatMessageModel,
    DriverModel,
    OrderModel,
    OrderStopModel,
    PromoCodeModel,
    PromoRedemptionModel,
    RatingModel,
    StatusHistoryModel,
)
from carryon.domain.entities import (
    ChatMessage,
    Driver,
    Location,
    Order,
    Place,
    PromoCode,
    StatusHistoryEntry,
    as_utc,
)
from carryon.domain.enums import (
    IN_PROGRESS_STATUSES,
    ActorRole,
    OrderStatus,
    PaymentStatus,
    VehicleType,
)
from carryon.domain.transitions import OrderChange


# ── Mappers ───────────────────────────────────────────────────────────


def _loaded(model, attr: str) -> bool:
    return attr not in inspect(model).unloaded


def to_order(m: OrderModel) -> Order:
    history: tuple[StatusHistoryEntry, ...] = ()
    if _loaded(m, "history"):
        history = tuple(
            StatusHistoryEntry(
                status=h.status,
                created_at=as_utc(h.created_at),
                latitude=h.lat,
                longitude=h.lng,
                note=h.note,
            )
            for h in m.history
        )
    stops: tuple[Place, ...] = ()
    if _loaded(m, "stops"):
        stops = tuple(
            Place(
                location=Location(s.lat, s.lng),
                address=s.address,
                label=s.label,
                contact_name=s.contact_name,
                contact_phone=s.contact_phone,
            )
            for s in m.stops
        )
    return Order(
        id=m.id,
        customer_id=m.customer_id,
        driver_id=m.driver_id,
        vehicle_type=m.vehicle_type,
        pickup=Place(
            location=Location(m.pickup_lat, m.pickup_lng),
            address=m.pickup_address,
            label=m.pickup_label,
            contact_name=m.pickup_contact_name,
            contact_phone=m.pickup_contact_phone,
        ),
        drop=Place(
            location=Location(m.drop_lat, m.drop_lng),
            address=m.drop_address,
            label=m.drop_label,
            contact_name=m.drop_contact_name,
            contact_phone=m.drop_contact_phone,
        ),
        stops=stops,
        package_description=m.package_description,
        distance_m=m.distance_m,
        duration_s=m.duration_s,
        base_fare=m.base_fare,
        distance_fare=m.distance_fare,
        time_fare=m.time_fare,
        discount=m.discount,
        promo_code=m.promo_code,
        total_fare=m.total_fare,
        payment_method=m.payment_method,
        payment_status=m.payment_status,
        status=m.status,
        history=history,
        cancellation_reason=m.cancellation_reason,
        created_at=as_utc(m.created_at),
        accepted_at=as_utc(m.accepted_at),
        picked_up_at=as_utc(m.picked_up_at),
        delivered_at=as_utc(m.delivered_at),
        cancelled_at=as_utc(m.cancelled_at),
    )


def to_driver(m: DriverModel) -> Driver:
    return Driver(
        id=m.id,
        name=m.name,
        phone=m.phone,
        vehicle_type=m.vehicle_type,
        vehicle_number=m.vehicle_number,
        vehicle_model=m.vehicle_model,
        is_verified=m.is_verified,
        is_active=m.is_active,
        is_online=m.is_online,
        latitude=m.current_lat,
        longitude=m.current_lng,
        rating=m.rating,
        total_ratings=m.total_ratings,
        total_deliveries=m.total_deliveries,
    )


def to_promo(m: PromoCodeModel) -> PromoCode:
    return PromoCode(
        id=m.id,
        code=m.code,
        description=m.description,
        discount_type=m.discount_type,
        discount_value=m.discount_value,
        max_discount=m.max_discount,
        min_order_amount=m.min_order_amount,
        max_uses=m.max_uses,
        used_count=m.used_count,
        valid_from=as_utc(m.valid_from),
        valid_until=as_utc(m.valid_until),
        is_active=m.is_active,
    )


def to_message(m: ChatMessageModel) -> ChatMessage:
    return ChatMessage(
        id=m.id,
        order_id=m.order_id,
        sender_id=m.sender_id,
        sender_role=m.sender_role,
        body=m.body,
        is_read=m.is_read,
        created_at=as_utc(m.created_at),
    )


# ── Repositories ──────────────────────────────────────────────────────


class OrderRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create_order(
        self,
        order: Order,
        *,
        pickup_h3_cell: Optional[str] = None,
        idempotency_key: Optional[str] = None,
    ) -> OrderModel:
        """Insert *order*, its stops and its creation history entry."""
        pickup, drop = order.pickup, order.drop
        model = OrderModel(
            customer_id=order.customer_id,
            pickup_label=pickup.label,
            pickup_address=pickup.address,
            pickup_lat=pickup.location.latitude,
            pickup_lng=pickup.location.longitude,
            pickup_contact_name=pickup.contact_name,
            pickup_contact_phone=pickup.contact_phone,
            pickup_h3_cell=pickup_h3_cell,
            drop_label=drop.label,
            drop_address=drop.address,
            drop_lat=drop.location.latitude,
            drop_lng=drop.location.longitude,
            drop_contact_name=drop.contact_name,
            drop_contact_phone=drop.contact_phone,
            vehicle_type=order.vehicle_type,
            package_description=order.package_description,
            distance_m=order.distance_m,
            duration_s=order.duration_s,
            base_fare=order.base_fare,
            distance_fare=order.distance_fare,
            time_fare=order.time_fare,
            discount=order.discount,
            promo_code=order.promo_code,
            total_fare=order.total_fare,
            payment_method=order.payment_method,
            payment_status=PaymentStatus.PENDING,
            status=OrderStatus.PENDING,
            idempotency_key=idempotency_key,
        )
        if order.created_at is not None:
            model.created_at = order.created_at
        self.session.add(model)
        await self.session.flush()

        for position, stop in enumerate(order.stops):
            self.session.add(
                OrderStopModel(
                    order_id=model.id,
                    position=position,
                    label=stop.label,
                    address=stop.address,
                    lat=stop.location.latitude,
                    lng=stop.location.longitude,
                    contact_name=stop.contact_name,
                    contact_phone=stop.contact_phone,
                )
            )
        for entry in order.history:
            self._add_history(model.id, entry)
        await self.session.flush()
        return model

    def _add_history(self, order_id: int, entry: StatusHistoryEntry) -> None:
        self.session.add(
            StatusHistoryModel(
                order_id=order_id,
                status=entry.status,
                lat=entry.latitude,
                lng=entry.longitude,
                note=entry.note,
                created_at=entry.created_at,
            )
        )

    async def get_by_id(
        self, order_id: int, *, with_details: bool = False
    ) -> Optional[OrderModel]:
        query = select(OrderModel).where(OrderModel.id == order_id)
        if with_details:
            query = query.options(
                selectinload(OrderModel.history), selectinload(OrderModel.stops)
            )
        result = await self.session.execute(
            query.execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get_by_idempotency_key(self, key: str) -> Optional[OrderModel]:
        result = await self.session.execute(
            select(OrderModel).where(OrderModel.idempotency_key == key)
        )
        return result.scalar_one_or_none()

    async def list_for_customer(
        self,
        customer_id: int,
        *,
        status: Optional[OrderStatus] = None,
        offset: int = 0,
        limit: int = 20,
    ) -> tuple[list[OrderModel], int]:
        criteria = [OrderModel.customer_id == customer_id]
        if status is not None:
            criteria.append(OrderModel.status == status)
        rows = await self.session.execute(
            select(OrderModel)
            .where(*criteria)
            .order_by(OrderModel.created_at.desc(), OrderModel.id.desc())
            .offset(offset)
            .limit(limit)
        )
        total = await self.session.execute(
            select(func.count()).select_from(OrderModel).where(*criteria)
        )
        return list(rows.scalars().all()), total.scalar() or 0

    async def list_pending_for_tier(
        self,
        vehicle_type: VehicleType,
        *,
        cells: Optional[Iterable[str]] = None,
        limit: int = 20,
    ) -> list[OrderModel]:
        query = select(OrderModel).where(
            OrderModel.status == OrderStatus.PENDING,
            OrderModel.vehicle_type == vehicle_type,
        )
        if cells is not None:
            query = query.where(OrderModel.pickup_h3_cell.in_(list(cells)))
        result = await self.session.execute(
            query.order_by(OrderModel.created_at.desc()).limit(limit)
        )
        return list(result.scalars().all())

    async def find_active_for_driver(self, driver_id: int) -> Optional[OrderModel]:
        result = await self.session.execute(
            select(OrderModel)
            .where(
                OrderModel.driver_id == driver_id,
                OrderModel.status.in_(IN_PROGRESS_STATUSES),
            )
            .order_by(OrderModel.accepted_at.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def list_stale_pending(
        self, created_before: datetime, limit: int = 100
    ) -> list[OrderModel]:
        result = await self.session.execute(
            select(OrderModel)
            .where(
                OrderModel.status == OrderStatus.PENDING,
                OrderModel.created_at < created_before,
            )
            .order_by(OrderModel.created_at)
            .limit(limit)
        )
        return list(result.scalars().all())

    async def apply_change(self, change: OrderChange) -> bool:
        """
        Commit *change* as a compare-and-set on (status, driver_id).

        Returns ``False`` without touching anything when another writer got
        there first.  On success the history entry (and, for deliveries,
        the driver's counter) are written in the same transaction.
        """
        driver_guard = (
            OrderModel.driver_id.is_(None)
            if change.expected_driver_id is None
            else OrderModel.driver_id == change.expected_driver_id
        )
        guards = [
            OrderModel.id == change.order_id,
            OrderModel.status == change.from_status,
            driver_guard,
        ]
        if change.requires_idle_driver and change.driver_id is not None:
            busy = aliased(OrderModel)
            guards.append(
                ~exists().where(
                    busy.driver_id == change.driver_id,
                    busy.status.in_(IN_PROGRESS_STATUSES),
                )
            )
        result = await self.session.execute(
            update(OrderModel)
            .where(*guards)
            .values(**change.as_values())
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            return False

        self._add_history(change.order_id, change.entry)
        if change.increments_deliveries and change.driver_id is not None:
            await DriverRepository(self.session).increment_deliveries(change.driver_id)
        await self.session.flush()
        return True

    async def mark_paid(self, order_id: int, reference: str) -> bool:
        result = await self.session.execute(
            update(OrderModel)
            .where(
                OrderModel.id == order_id,
                OrderModel.payment_status == PaymentStatus.PENDING,
            )
            .values(payment_status=PaymentStatus.PAID, payment_reference=reference)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1


class DriverRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_by_id(
        self, driver_id: int, for_update: bool = False
    ) -> Optional[DriverModel]:
        stmt = (
            select(DriverModel)
            .where(DriverModel.id == driver_id)
            .execution_options(populate_existing=True)
        )
        if for_update:
            # Serialises one driver's concurrent claims (no-op on SQLite)
            stmt = stmt.with_for_update()
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def set_online(self, driver_id: int, online: bool) -> bool:
        result = await self.session.execute(
            update(DriverModel)
            .where(DriverModel.id == driver_id)
            .values(is_online=online)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def update_location(self, driver_id: int, lat: float, lng: float) -> bool:
        result = await self.session.execute(
            update(DriverModel)
            .where(DriverModel.id == driver_id)
            .values(current_lat=lat, current_lng=lng)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def increment_deliveries(self, driver_id: int) -> None:
        await self.session.execute(
            update(DriverModel)
            .where(DriverModel.id == driver_id)
            .values(total_deliveries=DriverModel.total_deliveries + 1)
            .execution_options(synchronize_session=False)
        )

    async def apply_rating(self, driver_id: int, rating: int) -> None:
        """Fold one rating into the running average in a single statement."""
        await self.session.execute(
            update(DriverModel)
            .where(DriverModel.id == driver_id)
            .values(
                rating=(DriverModel.rating * DriverModel.total_ratings + rating)
                / (DriverModel.total_ratings + 1),
                total_ratings=DriverModel.total_ratings + 1,
            )
            .execution_options(synchronize_session=False)
        )


class PromoRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_by_code(self, code: str) -> Optional[PromoCodeModel]:
        result = await self.session.execute(
            select(PromoCodeModel)
            .where(PromoCodeModel.code == code.strip().upper())
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def list_available(self, now: datetime) -> list[PromoCodeModel]:
        result = await self.session.execute(
            select(PromoCodeModel)
            .where(
                PromoCodeModel.is_active.is_(True),
                PromoCodeModel.valid_from <= now,
                PromoCodeModel.valid_until >= now,
                or_(
                    PromoCodeModel.max_uses.is_(None),
                    PromoCodeModel.used_count < PromoCodeModel.max_uses,
                ),
            )
            .order_by(PromoCodeModel.discount_value.desc())
        )
        return list(result.scalars().all())

    async def redeem(
        self, promo_id: int, order_id: int, discount: int, now: datetime
    ) -> bool:
        """
        Count one use of the promo for *order_id*.

        The increment re-checks activity, window and cap in its ``WHERE``
        clause, so two orders racing for the last use cannot both win.
        The redemption row is unique per order.
        """
        result = await self.session.execute(
            update(PromoCodeModel)
            .where(
                PromoCodeModel.id == promo_id,
                PromoCodeModel.is_active.is_(True),
                PromoCodeModel.valid_from <= now,
                PromoCodeModel.valid_until >= now,
                or_(
                    PromoCodeModel.max_uses.is_(None),
                    PromoCodeModel.used_count < PromoCodeModel.max_uses,
                ),
            )
            .values(used_count=PromoCodeModel.used_count + 1)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            return False
        self.session.add(
            PromoRedemptionModel(promo_id=promo_id, order_id=order_id, discount=discount)
        )
        await self.session.flush()
        return True


class ChatRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def append(
        self, order_id: int, sender_id: int, sender_role: ActorRole, body: str
    ) -> ChatMessageModel:
        message = ChatMessageModel(
            order_id=order_id,
            sender_id=sender_id,
            sender_role=sender_role,
            body=body,
            is_read=False,
        )
        self.session.add(message)
        await self.session.flush()
        await self.session.refresh(message)
        return message

    async def list_for_order(self, order_id: int) -> list[ChatMessageModel]:
        result = await self.session.execute(
            select(ChatMessageModel)
            .where(ChatMessageModel.order_id == order_id)
            .order_by(ChatMessageModel.created_at, ChatMessageModel.id)
        )
        return list(result.scalars().all())

    async def mark_read(self, order_id: int, reader_role: ActorRole) -> int:
        """Mark the other party's unread messages as read; return how many."""
        result = await self.session.execute(
            update(ChatMessageModel)
            .where(
                and_(
                    ChatMessageModel.order_id == order_id,
                    ChatMessageModel.sender_role != reader_role,
                    ChatMessageModel.is_read.is_(False),
                )
            )
            .values(is_read=True)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount or 0


class RatingRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_for_order(self, order_id: int) -> Optional[RatingModel]:
        result = await self.session.execute(
            select(RatingModel).where(RatingModel.order_id == order_id)
        )
        return result.scalar_one_or_none()

    async def create(
        self,
        *,
        order_id: int,
        customer_id: int,
        driver_id: int,
        rating: int,
        review: Optional[str] = None,
    ) -> RatingModel:
        model = RatingModel(
            order_id=order_id,
            customer_id=customer_id,
            driver_id=driver_id,
            rating=rating,
            review=review,
        )
        self.session.add(model)
        await self.session.flush()
        return model
