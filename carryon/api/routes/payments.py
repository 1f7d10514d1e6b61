"""
Payment endpoints
=================

POST /api/v1/payments/verify -- confirm a gateway checkout for an order
"""

from fastapi import APIRouter, Depends, Request

from carryon.api.dependencies import get_orders, require_customer
from carryon.api.errors import unwrap
from carryon.api.middleware import limiter
from carryon.api.schemas import OrderResponse, PaymentVerifyRequest
from carryon.config import settings
from carryon.domain.identity import Customer
from carryon.services.orders import OrderService

router = APIRouter(prefix="/payments", tags=["payments"])


@router.post("/verify", response_model=OrderResponse, summary="Verify a payment signature")
@limiter.limit(settings.rate_limit)
async def verify_payment(
    request: Request,
    body: PaymentVerifyRequest,
    customer: Customer = Depends(require_customer),
    orders: OrderService = Depends(get_orders),
):
    order = unwrap(
        await orders.confirm_payment(
            customer,
            body.order_id,
            gateway_order_id=body.gateway_order_id,
            payment_id=body.payment_id,
            signature=body.signature,
            verifier=request.app.state.payments,
        )
    )
    return OrderResponse.from_order(order)
