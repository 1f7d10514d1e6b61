"""
FastAPI application factory.

* Wires the core services (orders, dispatch, chat, presence) around one
  ``RealtimeHub`` and stores them on ``app.state``.
* Registers REST routers under ``/api/v1`` and the websocket at ``/ws``.
* Starts / stops the pending-order sweeper and, when enabled, the Redis
  realtime backplane via lifespan events.
* Applies rate-limiting middleware.
* Swagger / OpenAPI UI available at ``/docs``.
"""

from contextlib import asynccontextmanager
import logging
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from carryon.api.middleware import limiter
from carryon.api.routes import admin, chat, drivers, orders, payments, promos, realtime
from carryon.config import settings
from carryon.infrastructure.backplane import RedisBackplane
from carryon.infrastructure.credentials import TokenCodec
from carryon.infrastructure.database import async_session_factory, dispose_engine
from carryon.infrastructure.notifications import (
    NotificationDispatcher,
    Notifier,
    build_notifier,
)
from carryon.infrastructure.payments import HmacSignatureVerifier, SignatureVerifier
from carryon.infrastructure.redis_client import close_redis, get_redis
from carryon.realtime.announcer import OrderAnnouncer
from carryon.realtime.gateway import RealtimeGateway
from carryon.realtime.hub import RealtimeHub
from carryon.services.chat import ChatRelay
from carryon.services.dispatch import DispatchMatcher
from carryon.services.orders import OrderService
from carryon.services.presence import DriverPresence
from carryon.workers import sweeper as _sweeper

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Start the sweeper (and backplane) on startup; stop on shutdown."""
    backplane = None
    if settings.realtime_backplane_enabled:
        backplane = RedisBackplane(await get_redis(), settings.realtime_channel)
        await backplane.start(app.state.hub.deliver_local)
        app.state.hub.set_backplane(backplane)
    await _sweeper.start_sweeper(app.state.orders)
    yield
    await _sweeper.stop_sweeper()
    if backplane is not None:
        app.state.hub.set_backplane(None)
        await backplane.stop()
    await app.state.notifications.drain()
    await close_redis()
    await dispose_engine()


async def _validation_error_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=400,
        content={"detail": {"code": "validation_error", "errors": jsonable_encoder(exc.errors())}},
    )


def create_app(
    session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
    *,
    hub: Optional[RealtimeHub] = None,
    notifier: Optional[Notifier] = None,
    verifier: Optional[SignatureVerifier] = None,
) -> FastAPI:
    app = FastAPI(
        title="CarryOn Delivery API",
        description=(
            "Last-mile delivery marketplace: customers book parcel pickups, "
            "drivers race to accept them, and both sides track the order "
            "live over a websocket."
        ),
        version="1.0.0",
        lifespan=lifespan,
    )

    # Core services
    sessions = session_factory or async_session_factory
    hub = hub or RealtimeHub()
    notifications = NotificationDispatcher(
        notifier
        or build_notifier(settings.push_webhook_url, settings.notification_timeout_seconds)
    )
    announcer = OrderAnnouncer(hub, notifications)
    order_service = OrderService(sessions, announcer, h3_resolution=settings.h3_resolution)
    matcher = DispatchMatcher(
        sessions,
        announcer,
        require_online=settings.require_online_for_claim,
        h3_resolution=settings.h3_resolution,
        nearby_rings=settings.nearby_ring_size,
    )
    chat_relay = ChatRelay(sessions, hub)
    presence = DriverPresence(sessions, announcer)
    hub.on_disconnect(presence.handle_disconnect)

    app.state.hub = hub
    app.state.notifications = notifications
    app.state.orders = order_service
    app.state.matcher = matcher
    app.state.chat = chat_relay
    app.state.presence = presence
    app.state.gateway = RealtimeGateway(hub, order_service, matcher, chat_relay, presence)
    app.state.tokens = TokenCodec(
        settings.jwt_secret, settings.jwt_algorithm, settings.token_ttl_hours
    )
    app.state.payments = verifier or HmacSignatureVerifier(settings.payment_key_secret)

    # Rate limiter
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
    app.add_exception_handler(RequestValidationError, _validation_error_handler)

    # Routers
    app.include_router(orders.router, prefix="/api/v1")
    app.include_router(chat.router, prefix="/api/v1")
    app.include_router(drivers.router, prefix="/api/v1")
    app.include_router(promos.router, prefix="/api/v1")
    app.include_router(payments.router, prefix="/api/v1")
    app.include_router(admin.router, prefix="/api/v1")
    app.include_router(realtime.router)

    return app
