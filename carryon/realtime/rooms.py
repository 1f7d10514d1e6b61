"""Room keys.  Every room is bound to an identity-checked audience."""

from carryon.domain.enums import VehicleType


def order_room(order_id: int) -> str:
    return f"order:{order_id}"


def driver_room(driver_id: int) -> str:
    return f"driver:{driver_id}"


def pool_room(vehicle_type: VehicleType) -> str:
    return f"drivers:{VehicleType(vehicle_type).value}"


def chat_room(order_id: int) -> str:
    return f"chat:{order_id}"
