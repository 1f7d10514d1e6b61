"""
Driver endpoints
================

GET  /api/v1/drivers/orders/available        -- claimable orders, nearest first
POST /api/v1/drivers/orders/{order_id}/accept -- race for an order (409 if lost)
POST /api/v1/drivers/orders/{order_id}/status -- report progress
POST /api/v1/drivers/location                 -- push the current position
POST /api/v1/drivers/online                   -- go online / offline
"""

from fastapi import APIRouter, Depends, Request

from carryon.api.dependencies import get_matcher, get_orders, get_presence, require_driver
from carryon.api.errors import raise_http, unwrap
from carryon.api.middleware import limiter
from carryon.api.schemas import (
    AvailableOrderResponse,
    DriverStatusResponse,
    LocationAck,
    LocationUpdateRequest,
    OnlineRequest,
    OrderResponse,
    PlaceOut,
    StatusUpdateRequest,
)
from carryon.config import settings
from carryon.domain.entities import Location
from carryon.domain.identity import Driver
from carryon.services.dispatch import DispatchMatcher
from carryon.services.orders import OrderService
from carryon.services.presence import DriverPresence

router = APIRouter(prefix="/drivers", tags=["drivers"])


@router.get(
    "/orders/available",
    response_model=list[AvailableOrderResponse],
    summary="Pending orders of my tier near me",
)
@limiter.limit(settings.rate_limit)
async def available_orders(
    request: Request,
    driver: Driver = Depends(require_driver),
    matcher: DispatchMatcher = Depends(get_matcher),
):
    ranked = unwrap(await matcher.available_orders(driver.id, settings.available_orders_limit))
    return [
        AvailableOrderResponse(
            id=order.id,
            vehicle_type=order.vehicle_type.value,
            pickup=PlaceOut.from_place(order.pickup),
            drop=PlaceOut.from_place(order.drop),
            total_fare=order.total_fare,
            distance_m=order.distance_m,
            distance_to_pickup_km=round(km, 2) if km is not None else None,
            created_at=order.created_at,
        )
        for order, km in ranked
    ]


@router.post(
    "/orders/{order_id}/accept",
    response_model=OrderResponse,
    summary="Accept a pending order",
    responses={409: {"description": "Another driver claimed the order first."}},
)
@limiter.limit(settings.rate_limit)
async def accept_order(
    request: Request,
    order_id: int,
    driver: Driver = Depends(require_driver),
    matcher: DispatchMatcher = Depends(get_matcher),
):
    result = await matcher.try_claim(order_id, driver.id)
    if not result.won:
        raise_http(result.reason)
    return OrderResponse.from_order(result.order)


@router.post(
    "/orders/{order_id}/status",
    response_model=OrderResponse,
    summary="Update the status of my assigned order",
)
@limiter.limit(settings.rate_limit)
async def update_status(
    request: Request,
    order_id: int,
    body: StatusUpdateRequest,
    driver: Driver = Depends(require_driver),
    orders: OrderService = Depends(get_orders),
):
    position = (
        Location(body.lat, body.lng) if body.lat is not None and body.lng is not None else None
    )
    order = unwrap(
        await orders.push_status(driver, order_id, body.status, position=position, note=body.note)
    )
    return OrderResponse.from_order(order)


@router.post("/location", response_model=LocationAck, summary="Push my current position")
@limiter.limit(settings.rate_limit)
async def update_location(
    request: Request,
    body: LocationUpdateRequest,
    driver: Driver = Depends(require_driver),
    presence: DriverPresence = Depends(get_presence),
):
    active_order_id = unwrap(await presence.update_location(driver.id, body.lat, body.lng))
    return LocationAck(active_order_id=active_order_id)


@router.post("/online", response_model=DriverStatusResponse, summary="Go online or offline")
@limiter.limit(settings.rate_limit)
async def set_online(
    request: Request,
    body: OnlineRequest,
    driver: Driver = Depends(require_driver),
    presence: DriverPresence = Depends(get_presence),
):
    state = unwrap(await presence.set_online(driver.id, body.online))
    return DriverStatusResponse(
        id=state.id,
        is_online=state.is_online,
        vehicle_type=state.vehicle_type.value,
        lat=state.latitude,
        lng=state.longitude,
    )
