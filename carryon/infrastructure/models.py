"""
SQLAlchemy ORM models.

Tables
------
* ``customers``             -- people who book deliveries
* ``drivers``               -- delivery agents with vehicle tier and presence
* ``orders``                -- delivery requests and their lifecycle state
* ``order_stops``           -- ordered intermediate stops of an order
* ``order_status_history``  -- append-only audit log of transitions
* ``promo_codes``           -- discount rules
* ``promo_redemptions``     -- one row per order that used a promo
* ``chat_messages``         -- per-order chat between customer and driver
* ``ratings``               -- one rating per delivered order

Indexes
-------
* **B-Tree** on ``orders.status`` + ``vehicle_type`` + ``pickup_h3_cell``
  for the pending-pool queries, ``customer_id`` / ``driver_id`` for
  look-ups, ``idempotency_key`` for retry de-duplication.
"""

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import relationship

from .database import Base
from carryon.domain.enums import (
    ActorRole,
    DiscountType,
    OrderStatus,
    PaymentMethod,
    PaymentStatus,
    VehicleType,
)


class CustomerModel(Base):
    __tablename__ = "customers"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(120), nullable=False)
    phone = Column(String(20), unique=True, nullable=False)
    email = Column(String(255), unique=True, nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class DriverModel(Base):
    __tablename__ = "drivers"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(120), nullable=False)
    phone = Column(String(20), unique=True, nullable=False)
    vehicle_type = Column(Enum(VehicleType), nullable=False)
    vehicle_number = Column(String(20), nullable=True)
    vehicle_model = Column(String(80), nullable=True)
    is_verified = Column(Boolean, default=False, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    is_online = Column(Boolean, default=False, nullable=False)
    current_lat = Column(Float, nullable=True)
    current_lng = Column(Float, nullable=True)
    rating = Column(Float, default=5.0, nullable=False)
    total_ratings = Column(Integer, default=0, nullable=False)
    total_deliveries = Column(Integer, default=0, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        Index("idx_drivers_pool", "vehicle_type", "is_online"),
    )


class OrderModel(Base):
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, autoincrement=True)
    customer_id = Column(Integer, ForeignKey("customers.id"), nullable=False)
    driver_id = Column(Integer, ForeignKey("drivers.id"), nullable=True)

    pickup_label = Column(String(60), nullable=True)
    pickup_address = Column(String(255), nullable=False)
    pickup_lat = Column(Float, nullable=False)
    pickup_lng = Column(Float, nullable=False)
    pickup_contact_name = Column(String(120), nullable=True)
    pickup_contact_phone = Column(String(20), nullable=True)
    pickup_h3_cell = Column(String(20), nullable=True)

    drop_label = Column(String(60), nullable=True)
    drop_address = Column(String(255), nullable=False)
    drop_lat = Column(Float, nullable=False)
    drop_lng = Column(Float, nullable=False)
    drop_contact_name = Column(String(120), nullable=True)
    drop_contact_phone = Column(String(20), nullable=True)

    vehicle_type = Column(Enum(VehicleType), nullable=False)
    package_description = Column(Text, nullable=True)

    distance_m = Column(Float, nullable=False)
    duration_s = Column(Integer, nullable=False)
    base_fare = Column(Integer, nullable=False)
    distance_fare = Column(Integer, nullable=False)
    time_fare = Column(Integer, nullable=False)
    discount = Column(Integer, default=0, nullable=False)
    promo_code = Column(String(40), nullable=True)
    total_fare = Column(Integer, nullable=False)
    payment_method = Column(Enum(PaymentMethod), nullable=False)
    payment_status = Column(
        Enum(PaymentStatus), default=PaymentStatus.PENDING, nullable=False
    )
    payment_reference = Column(String(80), nullable=True)

    status = Column(Enum(OrderStatus), default=OrderStatus.PENDING, nullable=False)
    cancellation_reason = Column(String(255), nullable=True)
    idempotency_key = Column(String(64), unique=True, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    accepted_at = Column(DateTime(timezone=True), nullable=True)
    picked_up_at = Column(DateTime(timezone=True), nullable=True)
    delivered_at = Column(DateTime(timezone=True), nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    history = relationship(
        "StatusHistoryModel",
        order_by="StatusHistoryModel.id",
        lazy="raise",
    )
    stops = relationship(
        "OrderStopModel", order_by="OrderStopModel.position", lazy="raise"
    )

    __table_args__ = (
        Index("idx_orders_pool", "status", "vehicle_type", "pickup_h3_cell"),
        Index("idx_orders_customer", "customer_id"),
        Index("idx_orders_driver", "driver_id", "status"),
        Index("idx_orders_idempotency", "idempotency_key"),
    )


class OrderStopModel(Base):
    __tablename__ = "order_stops"

    id = Column(Integer, primary_key=True, autoincrement=True)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=False)
    position = Column(Integer, nullable=False)
    label = Column(String(60), nullable=True)
    address = Column(String(255), nullable=False)
    lat = Column(Float, nullable=False)
    lng = Column(Float, nullable=False)
    contact_name = Column(String(120), nullable=True)
    contact_phone = Column(String(20), nullable=True)

    __table_args__ = (UniqueConstraint("order_id", "position"),)


class StatusHistoryModel(Base):
    __tablename__ = "order_status_history"

    id = Column(Integer, primary_key=True, autoincrement=True)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=False)
    status = Column(Enum(OrderStatus), nullable=False)
    lat = Column(Float, nullable=True)
    lng = Column(Float, nullable=True)
    note = Column(String(255), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False)

    __table_args__ = (Index("idx_history_order", "order_id"),)


class PromoCodeModel(Base):
    __tablename__ = "promo_codes"

    id = Column(Integer, primary_key=True, autoincrement=True)
    code = Column(String(40), unique=True, nullable=False)
    description = Column(String(255), nullable=True)
    discount_type = Column(Enum(DiscountType), nullable=False)
    discount_value = Column(Float, nullable=False)
    max_discount = Column(Float, nullable=True)
    min_order_amount = Column(Float, nullable=True)
    max_uses = Column(Integer, nullable=True)
    used_count = Column(Integer, default=0, nullable=False)
    valid_from = Column(DateTime(timezone=True), nullable=False)
    valid_until = Column(DateTime(timezone=True), nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)


class PromoRedemptionModel(Base):
    __tablename__ = "promo_redemptions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    promo_id = Column(Integer, ForeignKey("promo_codes.id"), nullable=False)
    order_id = Column(Integer, ForeignKey("orders.id"), unique=True, nullable=False)
    discount = Column(Integer, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class ChatMessageModel(Base):
    __tablename__ = "chat_messages"

    id = Column(Integer, primary_key=True, autoincrement=True)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=False)
    sender_id = Column(Integer, nullable=False)
    sender_role = Column(Enum(ActorRole), nullable=False)
    body = Column(Text, nullable=False)
    is_read = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (Index("idx_chat_order", "order_id"),)


class RatingModel(Base):
    __tablename__ = "ratings"

    id = Column(Integer, primary_key=True, autoincrement=True)
    order_id = Column(Integer, ForeignKey("orders.id"), unique=True, nullable=False)
    customer_id = Column(Integer, ForeignKey("customers.id"), nullable=False)
    driver_id = Column(Integer, ForeignKey("drivers.id"), nullable=False)
    rating = Column(Integer, nullable=False)
    review = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
