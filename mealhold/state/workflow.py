"""Reservation state machine: persisted statuses and client-side phases."""

from enum import Enum

from mealhold.models.reservation import ReservationStatus


class ReservationPhase(str, Enum):
    """Where the diner is in the visit, tracked on the diner's device only."""

    NAVIGATING = "navigating"
    PHOTO = "photo"
    DINING = "dining"


class ReservationTransitions:
    """Valid persisted status transitions."""

    TRANSITIONS = {
        ReservationStatus.ACTIVE: [
            ReservationStatus.ARRIVED,
            ReservationStatus.COMPLETED,
            ReservationStatus.CANCELLED,
            ReservationStatus.EXPIRED,
        ],
        ReservationStatus.ARRIVED: [
            ReservationStatus.COMPLETED,
            ReservationStatus.CANCELLED,
        ],
    }

    TERMINAL = frozenset(
        {
            ReservationStatus.COMPLETED,
            ReservationStatus.CANCELLED,
            ReservationStatus.EXPIRED,
        }
    )

    @classmethod
    def can_transition(cls, from_state: ReservationStatus, to_state: ReservationStatus) -> bool:
        """Check if a status transition is valid."""
        return to_state in cls.TRANSITIONS.get(from_state, [])

    @classmethod
    def is_terminal(cls, state: ReservationStatus) -> bool:
        return state in cls.TERMINAL


class PhaseTransitions:
    """Valid client-side phase transitions."""

    TRANSITIONS = {
        None: [ReservationPhase.NAVIGATING],
        ReservationPhase.NAVIGATING: [ReservationPhase.PHOTO],
        ReservationPhase.PHOTO: [ReservationPhase.DINING],
    }

    @classmethod
    def can_transition(
        cls,
        from_phase: ReservationPhase | None,
        to_phase: ReservationPhase,
    ) -> bool:
        """Check if a phase transition is valid."""
        return to_phase in cls.TRANSITIONS.get(from_phase, [])
