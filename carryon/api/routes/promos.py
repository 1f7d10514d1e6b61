"""
Promo endpoints
===============

POST /api/v1/promos/validate  -- discount a code would give for an amount
GET  /api/v1/promos/available -- currently redeemable codes
"""

from fastapi import APIRouter, Depends, Request

from carryon.api.dependencies import get_orders
from carryon.api.errors import unwrap
from carryon.api.middleware import limiter
from carryon.api.schemas import PromoQuoteResponse, PromoSummary, PromoValidateRequest
from carryon.config import settings
from carryon.services.orders import OrderService

router = APIRouter(prefix="/promos", tags=["promos"])


@router.post("/validate", response_model=PromoQuoteResponse, summary="Validate a promo code")
@limiter.limit(settings.rate_limit)
async def validate(
    request: Request,
    body: PromoValidateRequest,
    orders: OrderService = Depends(get_orders),
):
    quote = unwrap(await orders.validate_promo(body.code, body.amount))
    return PromoQuoteResponse.from_quote(quote)


@router.get("/available", response_model=list[PromoSummary], summary="List usable promo codes")
@limiter.limit(settings.rate_limit)
async def available(request: Request, orders: OrderService = Depends(get_orders)):
    return [
        PromoSummary(
            code=p.code,
            description=p.description,
            discount_type=p.discount_type.value,
            discount_value=p.discount_value,
            max_discount=p.max_discount,
            min_order_amount=p.min_order_amount,
            valid_until=p.valid_until,
        )
        for p in await orders.available_promos()
    ]
