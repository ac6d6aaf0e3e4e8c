"""Reservation lifecycle, booking monitor and supporting services."""

from mealhold.services.booking_monitor import BookingMonitor, BookingRow
from mealhold.services.eta import estimate_eta
from mealhold.services.lifecycle import LifecycleSnapshot, ReservationLifecycleEngine
from mealhold.services.sweeper import ExpirySweeper

__all__ = [
    "ReservationLifecycleEngine",
    "LifecycleSnapshot",
    "BookingMonitor",
    "BookingRow",
    "ExpirySweeper",
    "estimate_eta",
]
