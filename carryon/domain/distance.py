"""
Distance and spatial-cell helpers.

Assumption
----------
Great-circle (Haversine) distance is only used to rank nearby work for a
driver.  Fares use the road distance and duration the client obtained
from its routing provider.

Complexity: O(1) per call.
"""

import math

import h3

EARTH_RADIUS_KM = 6_371.0


def haversine_km(
    lat1: float, lng1: float, lat2: float, lng2: float
) -> float:
    """Return the great-circle distance in **km** between two points."""
    lat1_r, lat2_r = math.radians(lat1), math.radians(lat2)
    dlat = math.radians(lat2 - lat1)
    dlng = math.radians(lng2 - lng1)

    a = (
        math.sin(dlat / 2) ** 2
        + math.cos(lat1_r) * math.cos(lat2_r) * math.sin(dlng / 2) ** 2
    )
    return 2 * EARTH_RADIUS_KM * math.asin(math.sqrt(a))


def h3_cell(lat: float, lng: float, resolution: int = 7) -> str:
    """Map a geo-point to an H3 hexagonal cell index."""
    return h3.latlng_to_cell(lat, lng, resolution)


def nearby_cells(lat: float, lng: float, resolution: int = 7, rings: int = 2) -> set[str]:
    """The cell containing the point plus *rings* rings of neighbours."""
    return set(h3.grid_disk(h3_cell(lat, lng, resolution), rings))
