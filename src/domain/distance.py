"""
Distance calculation using the Haversine formula.

Assumption
----------
We use great-circle (Haversine) distance instead of a real routing engine
(OSRM / Google Maps) to keep the project self-contained and runnable
locally without external API keys.  Fares are therefore computed on the
straight line between a passenger's pickup and drop.

Coordinates travel through the system in GeoJSON order,
``[longitude, latitude]``.  Swapping them silently corrupts every fare.

Complexity: O(1) per call.
"""

from __future__ import annotations

import math
from typing import TYPE_CHECKING

from .errors import InvalidCoordinate

if TYPE_CHECKING:
    from .entities import GeoPoint

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


def _lng_lat(point: GeoPoint) -> tuple[float, float]:
    coords = point.coordinates
    if coords is None or len(coords) != 2:
        raise InvalidCoordinate(f"{point.name!r} has no coordinates")
    lng, lat = coords
    if not (math.isfinite(lng) and math.isfinite(lat)):
        raise InvalidCoordinate(f"{point.name!r} has non-finite coordinates {coords}")
    return lng, lat


def distance_km(a: GeoPoint, b: GeoPoint) -> float:
    """Great-circle distance between two ``[lng, lat]`` points."""
    lng1, lat1 = _lng_lat(a)
    lng2, lat2 = _lng_lat(b)
    return haversine_km(lat1, lng1, lat2, lng2)
