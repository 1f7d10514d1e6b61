"""Pydantic request / response schemas for the REST API."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from carryon.domain.entities import ChatMessage, Location, Order, Place
from carryon.domain.enums import OrderStatus, PaymentMethod, VehicleType
from carryon.services.orders import FareQuote, OrderDraft, PromoQuote


# ── Requests ──────────────────────────────────────────────────────────


class PlaceIn(BaseModel):
    lat: float = Field(..., ge=-90, le=90)
    lng: float = Field(..., ge=-180, le=180)
    address: str = Field(..., min_length=1, max_length=500)
    label: Optional[str] = Field(None, max_length=100)
    contact_name: Optional[str] = Field(None, max_length=120)
    contact_phone: Optional[str] = Field(None, max_length=20)

    def to_place(self) -> Place:
        return Place(
            location=Location(self.lat, self.lng),
            address=self.address,
            label=self.label,
            contact_name=self.contact_name,
            contact_phone=self.contact_phone,
        )


class EstimateRequest(BaseModel):
    distance_m: float = Field(..., ge=0, description="Route distance in metres.")
    duration_s: int = Field(..., ge=0, description="Route duration in seconds.")
    promo_code: Optional[str] = None


class OrderCreateRequest(BaseModel):
    pickup: PlaceIn
    drop: PlaceIn
    stops: list[PlaceIn] = Field(default_factory=list, max_length=5)
    vehicle_type: VehicleType
    distance_m: float = Field(..., ge=0)
    duration_s: int = Field(..., ge=0)
    payment_method: PaymentMethod = PaymentMethod.CASH
    promo_code: Optional[str] = None
    package_description: Optional[str] = Field(None, max_length=500)
    idempotency_key: Optional[str] = Field(
        None,
        max_length=64,
        description="Client-generated UUID to prevent double-booking on retries.",
    )

    def to_draft(self) -> OrderDraft:
        return OrderDraft(
            pickup=self.pickup.to_place(),
            drop=self.drop.to_place(),
            stops=tuple(s.to_place() for s in self.stops),
            vehicle_type=self.vehicle_type,
            distance_m=self.distance_m,
            duration_s=self.duration_s,
            payment_method=self.payment_method,
            promo_code=self.promo_code,
            package_description=self.package_description,
            idempotency_key=self.idempotency_key,
        )


class CancelRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=500)


class RateRequest(BaseModel):
    rating: int = Field(..., ge=1, le=5)
    review: Optional[str] = Field(None, max_length=1000)


class StatusUpdateRequest(BaseModel):
    status: OrderStatus
    lat: Optional[float] = Field(None, ge=-90, le=90)
    lng: Optional[float] = Field(None, ge=-180, le=180)
    note: Optional[str] = Field(None, max_length=500)


class LocationUpdateRequest(BaseModel):
    lat: float = Field(..., ge=-90, le=90)
    lng: float = Field(..., ge=-180, le=180)


class OnlineRequest(BaseModel):
    online: bool


class ChatSendRequest(BaseModel):
    body: str = Field(..., min_length=1, max_length=2000)


class PromoValidateRequest(BaseModel):
    code: str = Field(..., min_length=1, max_length=30)
    amount: float = Field(..., ge=0)


class PaymentVerifyRequest(BaseModel):
    order_id: int
    gateway_order_id: str
    payment_id: str
    signature: str


# ── Responses ─────────────────────────────────────────────────────────


class PlaceOut(BaseModel):
    lat: float
    lng: float
    address: str
    label: Optional[str] = None
    contact_name: Optional[str] = None
    contact_phone: Optional[str] = None

    @classmethod
    def from_place(cls, place: Place) -> "PlaceOut":
        return cls(
            lat=place.location.latitude,
            lng=place.location.longitude,
            address=place.address,
            label=place.label,
            contact_name=place.contact_name,
            contact_phone=place.contact_phone,
        )


class HistoryEntryOut(BaseModel):
    status: str
    created_at: datetime
    lat: Optional[float] = None
    lng: Optional[float] = None
    note: Optional[str] = None


class OrderResponse(BaseModel):
    id: int
    customer_id: int
    driver_id: Optional[int] = None
    status: str
    vehicle_type: str
    pickup: PlaceOut
    drop: PlaceOut
    stops: list[PlaceOut] = []
    package_description: Optional[str] = None
    distance_m: float
    duration_s: int
    base_fare: int
    distance_fare: int
    time_fare: int
    discount: int
    promo_code: Optional[str] = None
    total_fare: int
    payment_method: str
    payment_status: str
    cancellation_reason: Optional[str] = None
    history: list[HistoryEntryOut] = []
    created_at: Optional[datetime] = None
    accepted_at: Optional[datetime] = None
    picked_up_at: Optional[datetime] = None
    delivered_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None

    @classmethod
    def from_order(cls, order: Order) -> "OrderResponse":
        return cls(
            id=order.id,
            customer_id=order.customer_id,
            driver_id=order.driver_id,
            status=order.status.value,
            vehicle_type=order.vehicle_type.value,
            pickup=PlaceOut.from_place(order.pickup),
            drop=PlaceOut.from_place(order.drop),
            stops=[PlaceOut.from_place(s) for s in order.stops],
            package_description=order.package_description,
            distance_m=order.distance_m,
            duration_s=order.duration_s,
            base_fare=order.base_fare,
            distance_fare=order.distance_fare,
            time_fare=order.time_fare,
            discount=order.discount,
            promo_code=order.promo_code,
            total_fare=order.total_fare,
            payment_method=order.payment_method.value,
            payment_status=order.payment_status.value,
            cancellation_reason=order.cancellation_reason,
            history=[
                HistoryEntryOut(
                    status=e.status.value,
                    created_at=e.created_at,
                    lat=e.latitude,
                    lng=e.longitude,
                    note=e.note,
                )
                for e in order.history
            ],
            created_at=order.created_at,
            accepted_at=order.accepted_at,
            picked_up_at=order.picked_up_at,
            delivered_at=order.delivered_at,
            cancelled_at=order.cancelled_at,
        )


class OrderListResponse(BaseModel):
    orders: list[OrderResponse]
    total: int
    page: int
    limit: int


class AvailableOrderResponse(BaseModel):
    id: int
    vehicle_type: str
    pickup: PlaceOut
    drop: PlaceOut
    total_fare: int
    distance_m: float
    distance_to_pickup_km: Optional[float] = None
    created_at: Optional[datetime] = None


class FareEstimateOut(BaseModel):
    vehicle_type: str
    base_fare: int
    distance_fare: int
    time_fare: int
    total: int
    capacity_kg: int


class PromoQuoteResponse(BaseModel):
    code: str
    description: Optional[str] = None
    discount_type: str
    discount_value: float
    max_discount: Optional[float] = None
    discount: int

    @classmethod
    def from_quote(cls, quote: PromoQuote) -> "PromoQuoteResponse":
        return cls(
            code=quote.code,
            description=quote.description,
            discount_type=quote.discount_type,
            discount_value=quote.discount_value,
            max_discount=quote.max_discount,
            discount=quote.discount,
        )


class EstimateResponse(BaseModel):
    estimates: list[FareEstimateOut]
    promo: Optional[PromoQuoteResponse] = None

    @classmethod
    def from_quote(cls, quote: FareQuote) -> "EstimateResponse":
        return cls(
            estimates=[
                FareEstimateOut(
                    vehicle_type=e.vehicle_type.value,
                    base_fare=e.base,
                    distance_fare=e.distance_fare,
                    time_fare=e.time_fare,
                    total=e.total,
                    capacity_kg=quote.capacities[e.vehicle_type],
                )
                for e in quote.estimates
            ],
            promo=PromoQuoteResponse.from_quote(quote.promo) if quote.promo else None,
        )


class PromoSummary(BaseModel):
    code: str
    description: Optional[str] = None
    discount_type: str
    discount_value: float
    max_discount: Optional[float] = None
    min_order_amount: Optional[float] = None
    valid_until: Optional[datetime] = None


class DriverStatusResponse(BaseModel):
    id: int
    is_online: bool
    vehicle_type: str
    lat: Optional[float] = None
    lng: Optional[float] = None


class LocationAck(BaseModel):
    ok: bool = True
    active_order_id: Optional[int] = None


class RatingResponse(BaseModel):
    order_id: int
    driver_id: int
    rating: int
    review: Optional[str] = None


class ChatMessageResponse(BaseModel):
    id: int
    order_id: int
    sender_id: int
    sender_role: str
    body: str
    is_read: bool
    created_at: Optional[datetime] = None

    @classmethod
    def from_message(cls, message: ChatMessage) -> "ChatMessageResponse":
        return cls(
            id=message.id,
            order_id=message.order_id,
            sender_id=message.sender_id,
            sender_role=message.sender_role.value,
            body=message.body,
            is_read=message.is_read,
            created_at=message.created_at,
        )


class MarkReadResponse(BaseModel):
    updated: int


class HealthResponse(BaseModel):
    status: str = "ok"
    connections: int = 0
