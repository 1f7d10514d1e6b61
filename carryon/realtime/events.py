"""
Realtime event payloads.

Outbound events are pydantic models serialised with camelCase keys, the
shape mobile clients consume.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

# Outbound
NEW_ORDER = "newOrder"
ORDER_TAKEN = "orderTaken"
DRIVER_ASSIGNED = "driverAssigned"
ORDER_ACCEPTED = "orderAccepted"
ORDER_ERROR = "orderError"
ORDER_STATUS_UPDATE = "orderStatusUpdate"
DRIVER_LOCATION = "driverLocation"
ORDER_CANCELLED = "orderCancelled"
NO_DRIVERS_AVAILABLE = "noDriversAvailable"
NEW_MESSAGE = "newMessage"
ERROR = "error"

# Inbound
JOIN_ORDER = "joinOrder"
LEAVE_ORDER = "leaveOrder"
JOIN_CHAT = "joinChat"
LEAVE_CHAT = "leaveChat"
SEND_MESSAGE = "sendMessage"
UPDATE_LOCATION = "updateLocation"
ACCEPT_ORDER = "acceptOrder"
UPDATE_ORDER_STATUS = "updateOrderStatus"
SET_ONLINE = "setOnline"


class EventPayload(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def dump(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)


class PlacePayload(EventPayload):
    lat: float
    lng: float
    address: str


class NewOrderEvent(EventPayload):
    order_id: int
    vehicle_type: str
    pickup: PlacePayload
    drop: PlacePayload
    fare: int
    distance_m: float


class OrderTakenEvent(EventPayload):
    order_id: int
    reason: str = "assigned"


class DriverSummary(EventPayload):
    id: int
    name: str
    phone: str
    vehicle_number: Optional[str] = None
    vehicle_model: Optional[str] = None
    rating: float
    latitude: Optional[float] = None
    longitude: Optional[float] = None


class OrderAcceptedEvent(EventPayload):
    order_id: int
    status: str
    customer_id: int
    pickup: PlacePayload
    drop: PlacePayload
    fare: int


class OrderErrorEvent(EventPayload):
    order_id: int
    code: str
    message: str


class DriverAssignedEvent(EventPayload):
    order_id: int
    driver: DriverSummary


class OrderStatusEvent(EventPayload):
    order_id: int
    status: str
    timestamp: datetime
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    note: Optional[str] = None


class DriverLocationEvent(EventPayload):
    order_id: int
    latitude: float
    longitude: float
    timestamp: datetime


class OrderCancelledEvent(EventPayload):
    order_id: int
    reason: Optional[str] = None


class NoDriversAvailableEvent(EventPayload):
    order_id: int
    waited_seconds: int


class ChatMessagePayload(EventPayload):
    id: int
    order_id: int
    sender_id: int
    sender_role: str
    body: str
    is_read: bool
    created_at: Optional[datetime] = None


class NewMessageEvent(EventPayload):
    message: ChatMessagePayload


class ErrorEvent(EventPayload):
    code: str
    message: str
    event: Optional[str] = None
