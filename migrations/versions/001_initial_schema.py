"""Initial schema: customers, drivers, orders and their satellites.

Revision ID: 001
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


revision = "001"
down_revision = None
branch_labels = None
depends_on = None

VEHICLE_TYPE = postgresql.ENUM(
    "BIKE", "CAR", "VAN", "TRUCK", name="vehicletype", create_type=False
)
ORDER_STATUS = postgresql.ENUM(
    "PENDING",
    "DRIVER_ASSIGNED",
    "DRIVER_ARRIVED",
    "PICKUP_COMPLETE",
    "IN_TRANSIT",
    "DELIVERED",
    "CANCELLED",
    name="orderstatus",
    create_type=False,
)
PAYMENT_METHOD = postgresql.ENUM(
    "CASH", "CARD", "UPI", "WALLET", name="paymentmethod", create_type=False
)
PAYMENT_STATUS = postgresql.ENUM(
    "PENDING", "PAID", "FAILED", "REFUNDED", name="paymentstatus", create_type=False
)
DISCOUNT_TYPE = postgresql.ENUM(
    "PERCENTAGE", "FIXED", name="discounttype", create_type=False
)
ACTOR_ROLE = postgresql.ENUM(
    "ANONYMOUS", "CUSTOMER", "DRIVER", "SYSTEM", name="actorrole", create_type=False
)

ENUMS = (
    VEHICLE_TYPE,
    ORDER_STATUS,
    PAYMENT_METHOD,
    PAYMENT_STATUS,
    DISCOUNT_TYPE,
    ACTOR_ROLE,
)


def _created_at() -> sa.Column:
    return sa.Column(
        "created_at", sa.DateTime(timezone=True), server_default=sa.func.now()
    )


def upgrade() -> None:
    bind = op.get_bind()
    for enum_type in ENUMS:
        enum_type.create(bind, checkfirst=True)

    # ── customers ─────────────────────────────────────────────────────
    op.create_table(
        "customers",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(120), nullable=False),
        sa.Column("phone", sa.String(20), unique=True, nullable=False),
        sa.Column("email", sa.String(255), unique=True, nullable=True),
        sa.Column("is_active", sa.Boolean, nullable=False, server_default=sa.true()),
        _created_at(),
    )

    # ── drivers ───────────────────────────────────────────────────────
    op.create_table(
        "drivers",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(120), nullable=False),
        sa.Column("phone", sa.String(20), unique=True, nullable=False),
        sa.Column("vehicle_type", VEHICLE_TYPE, nullable=False),
        sa.Column("vehicle_number", sa.String(20), nullable=True),
        sa.Column("vehicle_model", sa.String(80), nullable=True),
        sa.Column("is_verified", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("is_active", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column("is_online", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("current_lat", sa.Float, nullable=True),
        sa.Column("current_lng", sa.Float, nullable=True),
        sa.Column("rating", sa.Float, nullable=False, server_default="5.0"),
        sa.Column("total_ratings", sa.Integer, nullable=False, server_default="0"),
        sa.Column("total_deliveries", sa.Integer, nullable=False, server_default="0"),
        _created_at(),
    )
    op.create_index("idx_drivers_pool", "drivers", ["vehicle_type", "is_online"])

    # ── orders ────────────────────────────────────────────────────────
    op.create_table(
        "orders",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("customer_id", sa.Integer, sa.ForeignKey("customers.id"), nullable=False),
        sa.Column("driver_id", sa.Integer, sa.ForeignKey("drivers.id"), nullable=True),
        sa.Column("pickup_label", sa.String(60), nullable=True),
        sa.Column("pickup_address", sa.String(255), nullable=False),
        sa.Column("pickup_lat", sa.Float, nullable=False),
        sa.Column("pickup_lng", sa.Float, nullable=False),
        sa.Column("pickup_contact_name", sa.String(120), nullable=True),
        sa.Column("pickup_contact_phone", sa.String(20), nullable=True),
        sa.Column("pickup_h3_cell", sa.String(20), nullable=True),
        sa.Column("drop_label", sa.String(60), nullable=True),
        sa.Column("drop_address", sa.String(255), nullable=False),
        sa.Column("drop_lat", sa.Float, nullable=False),
        sa.Column("drop_lng", sa.Float, nullable=False),
        sa.Column("drop_contact_name", sa.String(120), nullable=True),
        sa.Column("drop_contact_phone", sa.String(20), nullable=True),
        sa.Column("vehicle_type", VEHICLE_TYPE, nullable=False),
        sa.Column("package_description", sa.Text, nullable=True),
        sa.Column("distance_m", sa.Float, nullable=False),
        sa.Column("duration_s", sa.Integer, nullable=False),
        sa.Column("base_fare", sa.Integer, nullable=False),
        sa.Column("distance_fare", sa.Integer, nullable=False),
        sa.Column("time_fare", sa.Integer, nullable=False),
        sa.Column("discount", sa.Integer, nullable=False, server_default="0"),
        sa.Column("promo_code", sa.String(40), nullable=True),
        sa.Column("total_fare", sa.Integer, nullable=False),
        sa.Column("payment_method", PAYMENT_METHOD, nullable=False),
        sa.Column("payment_status", PAYMENT_STATUS, nullable=False, server_default="PENDING"),
        sa.Column("payment_reference", sa.String(80), nullable=True),
        sa.Column("status", ORDER_STATUS, nullable=False, server_default="PENDING"),
        sa.Column("cancellation_reason", sa.String(255), nullable=True),
        sa.Column("idempotency_key", sa.String(64), unique=True, nullable=True),
        _created_at(),
        sa.Column("accepted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("picked_up_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("delivered_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()
        ),
    )
    op.create_index(
        "idx_orders_pool", "orders", ["status", "vehicle_type", "pickup_h3_cell"]
    )
    op.create_index("idx_orders_customer", "orders", ["customer_id"])
    op.create_index("idx_orders_driver", "orders", ["driver_id", "status"])
    op.create_index("idx_orders_idempotency", "orders", ["idempotency_key"])

    # ── order_stops ───────────────────────────────────────────────────
    op.create_table(
        "order_stops",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("order_id", sa.Integer, sa.ForeignKey("orders.id"), nullable=False),
        sa.Column("position", sa.Integer, nullable=False),
        sa.Column("label", sa.String(60), nullable=True),
        sa.Column("address", sa.String(255), nullable=False),
        sa.Column("lat", sa.Float, nullable=False),
        sa.Column("lng", sa.Float, nullable=False),
        sa.Column("contact_name", sa.String(120), nullable=True),
        sa.Column("contact_phone", sa.String(20), nullable=True),
        sa.UniqueConstraint("order_id", "position"),
    )

    # ── order_status_history (append-only) ────────────────────────────
    op.create_table(
        "order_status_history",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("order_id", sa.Integer, sa.ForeignKey("orders.id"), nullable=False),
        sa.Column("status", ORDER_STATUS, nullable=False),
        sa.Column("lat", sa.Float, nullable=True),
        sa.Column("lng", sa.Float, nullable=True),
        sa.Column("note", sa.String(255), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("idx_history_order", "order_status_history", ["order_id"])

    # ── promo_codes / promo_redemptions ───────────────────────────────
    op.create_table(
        "promo_codes",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("code", sa.String(40), unique=True, nullable=False),
        sa.Column("description", sa.String(255), nullable=True),
        sa.Column("discount_type", DISCOUNT_TYPE, nullable=False),
        sa.Column("discount_value", sa.Float, nullable=False),
        sa.Column("max_discount", sa.Float, nullable=True),
        sa.Column("min_order_amount", sa.Float, nullable=True),
        sa.Column("max_uses", sa.Integer, nullable=True),
        sa.Column("used_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("valid_from", sa.DateTime(timezone=True), nullable=False),
        sa.Column("valid_until", sa.DateTime(timezone=True), nullable=False),
        sa.Column("is_active", sa.Boolean, nullable=False, server_default=sa.true()),
    )
    op.create_table(
        "promo_redemptions",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("promo_id", sa.Integer, sa.ForeignKey("promo_codes.id"), nullable=False),
        sa.Column(
            "order_id", sa.Integer, sa.ForeignKey("orders.id"), unique=True, nullable=False
        ),
        sa.Column("discount", sa.Integer, nullable=False),
        _created_at(),
    )

    # ── chat_messages ─────────────────────────────────────────────────
    op.create_table(
        "chat_messages",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("order_id", sa.Integer, sa.ForeignKey("orders.id"), nullable=False),
        sa.Column("sender_id", sa.Integer, nullable=False),
        sa.Column("sender_role", ACTOR_ROLE, nullable=False),
        sa.Column("body", sa.Text, nullable=False),
        sa.Column("is_read", sa.Boolean, nullable=False, server_default=sa.false()),
        _created_at(),
    )
    op.create_index("idx_chat_order", "chat_messages", ["order_id"])

    # ── ratings ───────────────────────────────────────────────────────
    op.create_table(
        "ratings",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column(
            "order_id", sa.Integer, sa.ForeignKey("orders.id"), unique=True, nullable=False
        ),
        sa.Column("customer_id", sa.Integer, sa.ForeignKey("customers.id"), nullable=False),
        sa.Column("driver_id", sa.Integer, sa.ForeignKey("drivers.id"), nullable=False),
        sa.Column("rating", sa.Integer, nullable=False),
        sa.Column("review", sa.Text, nullable=True),
        _created_at(),
    )


def downgrade() -> None:
    op.drop_table("ratings")
    op.drop_table("chat_messages")
    op.drop_table("promo_redemptions")
    op.drop_table("promo_codes")
    op.drop_table("order_status_history")
    op.drop_table("order_stops")
    op.drop_table("orders")
    op.drop_table("drivers")
    op.drop_table("customers")
    for name in (
        "actorrole",
        "discounttype",
        "paymentstatus",
        "paymentmethod",
        "orderstatus",
        "vehicletype",
    ):
        op.execute(f"DROP TYPE IF EXISTS {name}")
