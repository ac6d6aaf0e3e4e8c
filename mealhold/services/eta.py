"""Walking-time estimate between a diner and a store.

Straight-line distance is inflated by a fixed detour factor and divided by a
fixed walking speed, so no directions API is needed.
"""

import math

from mealhold.models.geo import ETAEstimate

EARTH_RADIUS_METERS = 6_371_000
DETOUR_FACTOR = 1.3
WALKING_SPEED_M_PER_MIN = 80
VERY_CLOSE_METERS = 300


def haversine_distance(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """Great-circle distance between two points in meters."""
    phi1, phi2 = math.radians(lat1), math.radians(lat2)
    dphi = math.radians(lat2 - lat1)
    dlambda = math.radians(lng2 - lng1)

    a = math.sin(dphi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(dlambda / 2) ** 2
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))

    return EARTH_RADIUS_METERS * c


def estimate_eta(
    user_lat: float,
    user_lng: float,
    store_lat: float,
    store_lng: float,
) -> ETAEstimate:
    """
    Estimate how long the diner needs to walk to the store.

    Minutes and the proximity flags are derived from unrounded distances;
    only the reported distances are rounded to whole meters.
    """
    distance = haversine_distance(user_lat, user_lng, store_lat, store_lng)
    estimated_distance = distance * DETOUR_FACTOR
    estimated_minutes = math.ceil(estimated_distance / WALKING_SPEED_M_PER_MIN)

    return ETAEstimate(
        distance_meters=round(distance),
        estimated_distance_meters=round(estimated_distance),
        estimated_minutes=estimated_minutes,
        is_very_close=estimated_distance < VERY_CLOSE_METERS,
        has_arrived=estimated_minutes == 0,
    )
