"""Tests for persisted record models and the state machine tables."""

import pytest
from pydantic import ValidationError

from mealhold.models.geo import GeoPoint
from mealhold.models.reservation import Reservation, ReservationStatus
from mealhold.models.store import StoreInventory
from mealhold.state.workflow import PhaseTransitions, ReservationPhase, ReservationTransitions


def test_reservation_from_record_with_placeholder_created_at() -> None:
    """Test a server-assigned placeholder timestamp reads as unknown."""
    reservation = Reservation.from_record(
        "r1",
        {
            "storeId": "s1",
            "userId": "u1",
            "status": "active",
            "createdAt": {".sv": "timestamp"},
            "expiresAt": 900_000,
            "quantity": 1,
            "someLegacyField": True,
        },
    )

    assert reservation.created_at is None
    assert reservation.is_open is True
    assert "id" not in reservation.to_record()


def test_reservation_rejects_unknown_status() -> None:
    """Test statuses outside the enum fail validation."""
    with pytest.raises(ValidationError):
        Reservation(id="r1", store_id="s1", user_id="u1", status="pending", expires_at=0)


def test_store_inventory_validation() -> None:
    """Test negative counts and out-of-range coordinates are rejected."""
    with pytest.raises(ValidationError):
        StoreInventory(location=GeoPoint(lat=0, lng=0), remaining_count=-1)

    with pytest.raises(ValidationError):
        GeoPoint(lat=91, lng=0)

    store = StoreInventory.from_record(
        "s1",
        {"isOpen": True, "remainingCount": 0, "lastUpdated": 5, "location": {"lat": 1, "lng": 2}},
    )
    assert store.is_available is False
    assert store.to_record() == {
        "isOpen": True,
        "remainingCount": 0,
        "lastUpdated": 5,
        "location": {"lat": 1.0, "lng": 2.0},
    }


@pytest.mark.parametrize(
    "from_state,to_state,allowed",
    [
        (ReservationStatus.ACTIVE, ReservationStatus.ARRIVED, True),
        (ReservationStatus.ACTIVE, ReservationStatus.EXPIRED, True),
        (ReservationStatus.ARRIVED, ReservationStatus.COMPLETED, True),
        (ReservationStatus.ARRIVED, ReservationStatus.CANCELLED, True),
        (ReservationStatus.ARRIVED, ReservationStatus.EXPIRED, False),
        (ReservationStatus.CANCELLED, ReservationStatus.ACTIVE, False),
        (ReservationStatus.COMPLETED, ReservationStatus.CANCELLED, False),
    ],
)
def test_status_transitions(from_state, to_state, allowed) -> None:
    """Test which persisted status moves are allowed."""
    assert ReservationTransitions.can_transition(from_state, to_state) is allowed


def test_terminal_statuses() -> None:
    assert ReservationTransitions.is_terminal(ReservationStatus.EXPIRED)
    assert not ReservationTransitions.is_terminal(ReservationStatus.ARRIVED)


def test_phase_order() -> None:
    """Test phases only move forward one step at a time."""
    assert PhaseTransitions.can_transition(None, ReservationPhase.NAVIGATING)
    assert PhaseTransitions.can_transition(ReservationPhase.NAVIGATING, ReservationPhase.PHOTO)
    assert PhaseTransitions.can_transition(ReservationPhase.PHOTO, ReservationPhase.DINING)
    assert not PhaseTransitions.can_transition(ReservationPhase.NAVIGATING, ReservationPhase.DINING)
    assert not PhaseTransitions.can_transition(ReservationPhase.DINING, ReservationPhase.PHOTO)
