"""Straight-line distance helpers used for diagnostics."""

import math

EARTH_RADIUS_KM = 6371.0


def haversine_km(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """Calculate the great-circle distance between two points in km."""
    phi1, lam1 = math.radians(lat1), math.radians(lng1)
    phi2, lam2 = math.radians(lat2), math.radians(lng2)

    dlat = phi2 - phi1
    dlng = lam2 - lam1

    a = math.sin(dlat / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(dlng / 2) ** 2
    c = 2 * math.asin(math.sqrt(a))

    return EARTH_RADIUS_KM * c
