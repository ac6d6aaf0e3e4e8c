"""Data models for the reservation service."""

from mealhold.models.geo import ETAEstimate, GeoPoint
from mealhold.models.reservation import (
    EstimatedArrival,
    Reservation,
    ReservationStatus,
    UserLocation,
)
from mealhold.models.store import StoreInventory

__all__ = [
    # Geo
    "GeoPoint",
    "ETAEstimate",
    # Store
    "StoreInventory",
    # Reservation
    "Reservation",
    "ReservationStatus",
    "UserLocation",
    "EstimatedArrival",
]
