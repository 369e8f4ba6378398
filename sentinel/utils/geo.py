"""
Great-circle distance helpers.
"""

import math

from sentinel.models.report import Coordinate

EARTH_RADIUS_METERS = 6371000


def haversine_meters(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Calculate distance between two points using Haversine formula."""
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    dphi = math.radians(lat2 - lat1)
    dlambda = math.radians(lon2 - lon1)
    a = math.sin(dphi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(dlambda / 2) ** 2
    # Rounding can push a a hair past 1 for near-antipodal points
    a = min(1.0, max(0.0, a))
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return EARTH_RADIUS_METERS * c


def distance(a: Coordinate, b: Coordinate) -> float:
    """Distance in meters between two coordinates."""
    if a.lat == b.lat and a.lng == b.lng:
        return 0.0
    return haversine_meters(a.lat, a.lng, b.lat, b.lng)
