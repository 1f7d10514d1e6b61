"""
Order endpoints
===============

POST /api/v1/orders/estimate          -- fares for every tier (+ promo preview)
POST /api/v1/orders                   -- create an order (201)
GET  /api/v1/orders                   -- the customer's orders, newest first
GET  /api/v1/orders/{order_id}        -- detail with stops and status history
POST /api/v1/orders/{order_id}/cancel -- cancel (customer owner only)
POST /api/v1/orders/{order_id}/rate   -- rate a delivered order once
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query, Request

from carryon.api.dependencies import get_orders, require_customer, require_identity
from carryon.api.errors import unwrap
from carryon.api.middleware import limiter
from carryon.api.schemas import (
    CancelRequest,
    EstimateRequest,
    EstimateResponse,
    OrderCreateRequest,
    OrderListResponse,
    OrderResponse,
    RateRequest,
    RatingResponse,
)
from carryon.config import settings
from carryon.domain.enums import OrderStatus
from carryon.domain.identity import Customer, Identity
from carryon.services.orders import OrderService

router = APIRouter(prefix="/orders", tags=["orders"])


@router.post(
    "/estimate",
    response_model=EstimateResponse,
    summary="Estimate the fare for every vehicle tier",
)
@limiter.limit(settings.rate_limit)
async def estimate(
    request: Request,
    body: EstimateRequest,
    orders: OrderService = Depends(get_orders),
):
    quote = unwrap(await orders.estimate(body.distance_m, body.duration_s, body.promo_code))
    return EstimateResponse.from_quote(quote)


@router.post(
    "",
    status_code=201,
    response_model=OrderResponse,
    summary="Create a delivery order",
    description=(
        "Prices the order, redeems the promo code (if any) and offers the "
        "order to online drivers of the requested tier.  Retrying with the "
        "same idempotency key returns the original order."
    ),
)
@limiter.limit(settings.rate_limit)
async def create_order(
    request: Request,
    body: OrderCreateRequest,
    customer: Customer = Depends(require_customer),
    orders: OrderService = Depends(get_orders),
):
    order = unwrap(await orders.create_order(customer, body.to_draft()))
    return OrderResponse.from_order(order)


@router.get("", response_model=OrderListResponse, summary="List my orders")
@limiter.limit(settings.rate_limit)
async def list_orders(
    request: Request,
    status: Optional[OrderStatus] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    customer: Customer = Depends(require_customer),
    orders: OrderService = Depends(get_orders),
):
    result = unwrap(await orders.list_orders(customer, status=status, page=page, limit=limit))
    return OrderListResponse(
        orders=[OrderResponse.from_order(o) for o in result.orders],
        total=result.total,
        page=result.page,
        limit=result.limit,
    )


@router.get("/{order_id}", response_model=OrderResponse, summary="Get an order")
@limiter.limit(settings.rate_limit)
async def get_order(
    request: Request,
    order_id: int,
    identity: Identity = Depends(require_identity),
    orders: OrderService = Depends(get_orders),
):
    return OrderResponse.from_order(unwrap(await orders.get_order(identity, order_id)))


@router.post("/{order_id}/cancel", response_model=OrderResponse, summary="Cancel an order")
@limiter.limit(settings.rate_limit)
async def cancel_order(
    request: Request,
    order_id: int,
    body: Optional[CancelRequest] = None,
    customer: Customer = Depends(require_customer),
    orders: OrderService = Depends(get_orders),
):
    reason = body.reason if body else None
    return OrderResponse.from_order(unwrap(await orders.cancel(customer, order_id, reason)))


@router.post("/{order_id}/rate", response_model=RatingResponse, summary="Rate the driver")
@limiter.limit(settings.rate_limit)
async def rate_order(
    request: Request,
    order_id: int,
    body: RateRequest,
    customer: Customer = Depends(require_customer),
    orders: OrderService = Depends(get_orders),
):
    result = unwrap(await orders.rate(customer, order_id, body.rating, body.review))
    return RatingResponse(
        order_id=result.order_id,
        driver_id=result.driver_id,
        rating=result.rating,
        review=result.review,
    )
