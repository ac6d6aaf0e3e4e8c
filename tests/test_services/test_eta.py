"""Tests for the walking ETA estimate."""

import math

from mealhold.services.eta import estimate_eta, haversine_distance


def _reference_haversine(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    r = 6_371_000
    phi1, phi2 = math.radians(lat1), math.radians(lat2)
    a = (
        math.sin(math.radians(lat2 - lat1) / 2) ** 2
        + math.cos(phi1) * math.cos(phi2) * math.sin(math.radians(lng2 - lng1) / 2) ** 2
    )
    return 2 * r * math.asin(math.sqrt(a))


def test_estimate_matches_haversine() -> None:
    """Test distance, minutes and proximity for two points near Tokyo Station."""
    expected = _reference_haversine(35.6812, 139.7671, 35.6900, 139.7700)

    eta = estimate_eta(35.6812, 139.7671, 35.6900, 139.7700)

    assert abs(eta.distance_meters - expected) <= 1
    assert eta.estimated_minutes == math.ceil(expected * 1.3 / 80)
    assert eta.is_very_close is (expected * 1.3 < 300)
    assert eta.is_very_close is False
    assert eta.has_arrived is False
    assert abs(eta.estimated_distance_meters - expected * 1.3) <= 1


def test_same_point_has_arrived() -> None:
    """Test zero distance means arrived and very close."""
    eta = estimate_eta(35.6812, 139.7671, 35.6812, 139.7671)

    assert eta.distance_meters == 0
    assert eta.estimated_minutes == 0
    assert eta.is_very_close is True
    assert eta.has_arrived is True


def test_nearby_point_is_very_close_but_not_arrived() -> None:
    """Test a walk of about 150 meters is very close with one minute left."""
    eta = estimate_eta(35.6812, 139.7671, 35.6825, 139.7671)

    assert eta.is_very_close is True
    assert eta.has_arrived is False
    assert eta.estimated_minutes >= 1


def test_haversine_is_symmetric() -> None:
    there = haversine_distance(35.6812, 139.7671, 34.7025, 135.4959)
    back = haversine_distance(34.7025, 135.4959, 35.6812, 139.7671)

    assert math.isclose(there, back)
    # Tokyo to Osaka, roughly 400 km
    assert 390_000 < there < 410_000
