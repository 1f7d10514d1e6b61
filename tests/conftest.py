"""
Shared test fixtures.

Uses a file-backed SQLite database per test (via aiosqlite) so tests run
without Docker / PostgreSQL / Redis.  A file rather than ``:memory:``
lets several sessions hold their own connections and genuinely race on
the conditional updates, the way separate API processes would.
"""

from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, AsyncGenerator, Optional

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from carryon.domain.entities import Location, Place, utcnow
from carryon.domain.enums import DiscountType, PaymentMethod, VehicleType
from carryon.domain.errors import UpstreamUnavailable
from carryon.domain.identity import Customer, Driver, Identity
from carryon.infrastructure.database import Base
from carryon.infrastructure.models import CustomerModel, DriverModel, PromoCodeModel
from carryon.infrastructure.notifications import NotificationDispatcher
from carryon.realtime.announcer import OrderAnnouncer
from carryon.realtime.hub import RealtimeHub
from carryon.services.chat import ChatRelay
from carryon.services.dispatch import DispatchMatcher
from carryon.services.orders import OrderDraft, OrderService
from carryon.services.presence import DriverPresence

# MG Road, Bengaluru
PICKUP = (12.9756, 77.6050)
DROP = (12.9784, 77.6408)


# ── Fakes ─────────────────────────────────────────────────────────────


class FakeConnection:
    """Stands in for a websocket; records every frame the hub sends."""

    def __init__(self, conn_id: str, fail: bool = False):
        self.id = conn_id
        self.sent: list[dict[str, Any]] = []
        self.fail = fail

    async def send(self, message: dict[str, Any]) -> None:
        if self.fail:
            raise ConnectionError("socket closed")
        self.sent.append(message)

    def events(self, name: Optional[str] = None) -> list[dict[str, Any]]:
        return [m["data"] for m in self.sent if name is None or m["event"] == name]

    def names(self) -> list[str]:
        return [m["event"] for m in self.sent]


class RecordingNotifier:
    def __init__(self, fail: bool = False):
        self.calls: list[tuple[Identity, str, str, dict]] = []
        self.fail = fail

    async def notify(self, recipient, title, body, data):
        self.calls.append((recipient, title, body, data))
        if self.fail:
            raise UpstreamUnavailable("push gateway down")


@dataclass
class World:
    """Ids of the rows every test starts with."""

    customer: Customer
    other_customer: Customer
    bikers: list[Driver] = field(default_factory=list)
    offline_biker: Optional[Driver] = None
    car_driver: Optional[Driver] = None


def make_draft(**overrides) -> OrderDraft:
    values = dict(
        pickup=Place(Location(*PICKUP), "MG Road, Bengaluru"),
        drop=Place(Location(*DROP), "Indiranagar, Bengaluru"),
        vehicle_type=VehicleType.BIKE,
        distance_m=4200,
        duration_s=900,
        payment_method=PaymentMethod.CASH,
    )
    values.update(overrides)
    return OrderDraft(**values)


# ── Database ──────────────────────────────────────────────────────────


@pytest_asyncio.fixture
async def engine(tmp_path) -> AsyncGenerator[AsyncEngine, None]:
    """Create tables in a fresh database file, yield the engine, dispose."""
    test_engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'carryon.db'}",
        echo=False,
        connect_args={"timeout": 30},
    )
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield test_engine
    await test_engine.dispose()


@pytest_asyncio.fixture
async def sessions(engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def world(sessions) -> World:
    now = utcnow()
    async with sessions.begin() as session:
        customers = [
            CustomerModel(name="Aarav Sharma", phone="+919800000001"),
            CustomerModel(name="Priya Patel", phone="+919800000002"),
        ]
        bikers = [
            DriverModel(
                name=f"Biker {i}",
                phone=f"+91970000000{i}",
                vehicle_type=VehicleType.BIKE,
                is_online=True,
                current_lat=PICKUP[0] + 0.001 * i,
                current_lng=PICKUP[1],
            )
            for i in range(1, 6)
        ]
        offline = DriverModel(
            name="Sleepy Biker",
            phone="+919700000009",
            vehicle_type=VehicleType.BIKE,
            is_online=False,
        )
        car = DriverModel(
            name="Car Driver",
            phone="+919700000010",
            vehicle_type=VehicleType.CAR,
            is_online=True,
            current_lat=PICKUP[0],
            current_lng=PICKUP[1],
        )
        promos = [
            PromoCodeModel(
                code="WELCOME50",
                discount_type=DiscountType.PERCENTAGE,
                discount_value=50,
                max_discount=100,
                max_uses=100,
                valid_from=now - timedelta(days=1),
                valid_until=now + timedelta(days=30),
            ),
            PromoCodeModel(
                code="LASTONE",
                discount_type=DiscountType.FIXED,
                discount_value=20,
                max_uses=1,
                valid_from=now - timedelta(days=1),
                valid_until=now + timedelta(days=30),
            ),
            PromoCodeModel(
                code="EXPIRED",
                discount_type=DiscountType.FIXED,
                discount_value=20,
                valid_from=now - timedelta(days=60),
                valid_until=now - timedelta(days=30),
            ),
            PromoCodeModel(
                code="BIGSPEND",
                discount_type=DiscountType.FIXED,
                discount_value=50,
                min_order_amount=1000,
                valid_from=now - timedelta(days=1),
                valid_until=now + timedelta(days=30),
            ),
        ]
        session.add_all([*customers, *bikers, offline, car, *promos])
        await session.flush()
        return World(
            customer=Customer(customers[0].id),
            other_customer=Customer(customers[1].id),
            bikers=[Driver(b.id) for b in bikers],
            offline_biker=Driver(offline.id),
            car_driver=Driver(car.id),
        )


# ── Core services ─────────────────────────────────────────────────────


@pytest.fixture
def hub() -> RealtimeHub:
    return RealtimeHub()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def notifications(notifier) -> NotificationDispatcher:
    return NotificationDispatcher(notifier)


@pytest.fixture
def announcer(hub, notifications) -> OrderAnnouncer:
    return OrderAnnouncer(hub, notifications)


@pytest.fixture
def orders(sessions, announcer) -> OrderService:
    return OrderService(sessions, announcer)


@pytest.fixture
def matcher(sessions, announcer) -> DispatchMatcher:
    return DispatchMatcher(sessions, announcer)


@pytest.fixture
def chat(sessions, hub) -> ChatRelay:
    return ChatRelay(sessions, hub)


@pytest.fixture
def presence(sessions, announcer, hub) -> DriverPresence:
    presence = DriverPresence(sessions, announcer)
    hub.on_disconnect(presence.handle_disconnect)
    return presence
