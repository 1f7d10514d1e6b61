"""FastAPI dependency injection helpers."""

from typing import Optional

from fastapi import Depends, HTTPException, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from carryon.domain.identity import Customer, Driver, Identity
from carryon.infrastructure.database import async_session_factory
from carryon.realtime.hub import RealtimeHub
from carryon.services.chat import ChatRelay
from carryon.services.dispatch import DispatchMatcher
from carryon.services.orders import OrderService
from carryon.services.presence import DriverPresence

_bearer = HTTPBearer(auto_error=False)


async def get_db() -> AsyncSession:  # type: ignore[misc]
    """Yield an async DB session; commit on success, rollback on error."""
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


# ── Services (built once in create_app) ───────────────────────────────


def get_orders(request: Request) -> OrderService:
    return request.app.state.orders


def get_matcher(request: Request) -> DispatchMatcher:
    return request.app.state.matcher


def get_chat(request: Request) -> ChatRelay:
    return request.app.state.chat


def get_presence(request: Request) -> DriverPresence:
    return request.app.state.presence


def get_hub(request: Request) -> RealtimeHub:
    return request.app.state.hub


# ── Identity ──────────────────────────────────────────────────────────


def get_identity(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(_bearer),
) -> Identity:
    """Resolve the bearer token; no or bad token means ``Anonymous``."""
    token = credentials.credentials if credentials else None
    return request.app.state.tokens.resolve(token)


def _require_authenticated(identity: Identity) -> None:
    if not identity.is_authenticated:
        raise HTTPException(
            status_code=401,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )


def require_identity(identity: Identity = Depends(get_identity)) -> Identity:
    _require_authenticated(identity)
    return identity


def require_customer(identity: Identity = Depends(get_identity)) -> Customer:
    _require_authenticated(identity)
    if not isinstance(identity, Customer):
        raise HTTPException(status_code=403, detail="Customer access required")
    return identity


def require_driver(identity: Identity = Depends(get_identity)) -> Driver:
    _require_authenticated(identity)
    if not isinstance(identity, Driver):
        raise HTTPException(status_code=403, detail="Driver access required")
    return identity
