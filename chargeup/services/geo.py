"""
Geographic utility functions
"""
from math import radians, sin, cos, atan2, sqrt
from typing import Tuple

EARTH_RADIUS_MI = 3958.8

Coordinate = Tuple[float, float]


def _central_angle(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    dlat = radians(lat2 - lat1)
    dlon = radians(lon2 - lon1)
    a = sin(dlat / 2) ** 2 + cos(radians(lat1)) * cos(radians(lat2)) * sin(dlon / 2) ** 2
    # atan2 stays in-domain if rounding pushes `a` past 1; NaN passes through
    return 2 * atan2(sqrt(a), sqrt(1 - a))


def haversine_mi(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """
    Great-circle distance between two lat/lng points in miles.

    Args:
        lat1, lon1: First point coordinates (degrees)
        lat2, lon2: Second point coordinates (degrees)

    Returns:
        Distance in miles (NaN if any input is NaN)
    """
    return EARTH_RADIUS_MI * _central_angle(lat1, lon1, lat2, lon2)


def distance_miles(a: Coordinate, b: Coordinate) -> float:
    """Distance in miles between two (lat, lon) pairs."""
    return haversine_mi(a[0], a[1], b[0], b[1])
