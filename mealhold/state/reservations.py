"""Reservation record persistence and the per-user reservation pointer."""

from typing import Any

from mealhold.errors import (
    InvalidDiningWindowError,
    InvalidTransitionError,
    ReservationNotFoundError,
)
from mealhold.models.reservation import (
    EstimatedArrival,
    Reservation,
    ReservationStatus,
    UserLocation,
)
from mealhold.state.manager import ABORT, StateManager
from mealhold.state.workflow import ReservationTransitions
from mealhold.utils.logging import get_logger
from mealhold.utils.time import MS_PER_MINUTE

logger = get_logger(__name__)

RESERVATIONS = "reservations"
USERS = "users"


class ReservationRepository:
    """Reads and writes reservation records.

    Status changes are plain last-write-wins writes: only one actor ever moves
    a given reservation at a time, so no optimistic retry is needed here.
    """

    def __init__(self, state_manager: StateManager):
        self.state = state_manager

    def _reservation_path(self, reservation_id: str) -> str:
        return f"{RESERVATIONS}/{reservation_id}"

    def _user_path(self, user_id: str, field: str) -> str:
        return f"{USERS}/{user_id}/{field}"

    async def create_reservation(
        self,
        store_id: str,
        user_id: str,
        created_at: int,
        hold_duration_ms: int,
        user_display_name: str | None = None,
    ) -> Reservation:
        """Insert a new active reservation."""
        reservation = Reservation(
            id=self.state.new_id(),
            store_id=store_id,
            user_id=user_id,
            status=ReservationStatus.ACTIVE,
            created_at=created_at,
            expires_at=created_at + hold_duration_ms,
            quantity=1,
            user_display_name=user_display_name,
        )
        await self.state.write(self._reservation_path(reservation.id), reservation.to_record())

        logger.info(
            "reservation_created",
            reservation_id=reservation.id,
            store_id=store_id,
            user_id=user_id,
            expires_at=reservation.expires_at,
        )
        return reservation

    async def get_reservation(self, reservation_id: str) -> Reservation | None:
        """Retrieve a reservation by ID."""
        data = await self.state.read(self._reservation_path(reservation_id))
        if not data:
            return None
        return Reservation.from_record(reservation_id, data)

    async def list_reservations(self) -> list[Reservation]:
        """Every reservation ever written, terminal ones included."""
        records = await self.state.read_collection(RESERVATIONS)
        return [Reservation.from_record(rid, data) for rid, data in records.items()]

    async def set_status(self, reservation_id: str, status: ReservationStatus) -> None:
        """Overwrite a reservation's status."""
        await self.state.write(f"{self._reservation_path(reservation_id)}/status", status.value)
        logger.info("reservation_status_set", reservation_id=reservation_id, status=status.value)

    async def mark_arrived(
        self,
        reservation_id: str,
        max_dining_minutes: int,
        now: int,
    ) -> Reservation:
        """
        Record that the diner is at the store and start the dining window.

        The diner's location and ETA are deleted in the same write that flips
        the status, so they never outlive the walk to the store.

        Raises:
            ReservationNotFoundError: no such reservation.
            InvalidTransitionError: the reservation is not active.
            InvalidDiningWindowError: ``max_dining_minutes`` is below 1.
        """
        if max_dining_minutes < 1:
            raise InvalidDiningWindowError(max_dining_minutes)

        reservation = await self.get_reservation(reservation_id)
        if reservation is None:
            raise ReservationNotFoundError(reservation_id)
        if not ReservationTransitions.can_transition(reservation.status, ReservationStatus.ARRIVED):
            raise InvalidTransitionError(reservation.status.value, ReservationStatus.ARRIVED.value)

        dining_expires_at = now + max_dining_minutes * MS_PER_MINUTE
        await self.state.update(
            self._reservation_path(reservation_id),
            {
                "status": ReservationStatus.ARRIVED.value,
                "arrivedAt": now,
                "diningExpiresAt": dining_expires_at,
                "userLocation": None,
                "estimatedArrival": None,
            },
        )

        logger.info(
            "reservation_marked_arrived",
            reservation_id=reservation_id,
            store_id=reservation.store_id,
            dining_expires_at=dining_expires_at,
        )
        return reservation.model_copy(
            update={
                "status": ReservationStatus.ARRIVED,
                "arrived_at": now,
                "dining_expires_at": dining_expires_at,
                "user_location": None,
                "estimated_arrival": None,
            }
        )

    async def update_location(
        self,
        reservation_id: str,
        location: UserLocation,
        estimated_arrival: EstimatedArrival | None,
    ) -> bool:
        """
        Store the diner's latest position and ETA.

        Only active reservations carry a location; a report that lands after
        the store marked the diner arrived is dropped. Returns whether it was
        written.
        """

        def apply(current: dict[str, Any] | None) -> Any:
            if current is None or current.get("status") != ReservationStatus.ACTIVE.value:
                return ABORT
            return {
                **current,
                "userLocation": location.model_dump(by_alias=True),
                "estimatedArrival": (
                    estimated_arrival.model_dump(by_alias=True) if estimated_arrival else None
                ),
            }

        result = await self.state.adjust(self._reservation_path(reservation_id), apply)
        if not result.committed:
            logger.debug("location_update_dropped", reservation_id=reservation_id)
        return result.committed

    async def close_if_active(self, reservation_id: str, status: ReservationStatus) -> bool:
        """
        Move an active reservation to a terminal ``status``.

        Returns False without writing when the reservation is gone or has
        already moved on, e.g. the store marked the diner arrived.
        """

        def close(current: dict[str, Any] | None) -> Any:
            if current is None or current.get("status") != ReservationStatus.ACTIVE.value:
                return ABORT
            return {
                **current,
                "status": status.value,
                "userLocation": None,
                "estimatedArrival": None,
            }

        result = await self.state.adjust(self._reservation_path(reservation_id), close)
        if result.committed:
            logger.info("reservation_closed", reservation_id=reservation_id, status=status.value)
        return result.committed

    async def expire_if_active(self, reservation_id: str) -> bool:
        """Flip an active reservation to expired. False if it already moved on."""
        return await self.close_if_active(reservation_id, ReservationStatus.EXPIRED)

    async def get_active_reservation_id(self, user_id: str) -> str | None:
        return await self.state.read(self._user_path(user_id, "activeReservationId"))

    async def set_active_reservation_id(self, user_id: str, reservation_id: str | None) -> None:
        await self.state.write(self._user_path(user_id, "activeReservationId"), reservation_id)

    async def clear_active_reservation_if(self, user_id: str, reservation_id: str) -> bool:
        """Clear the user's pointer only while it still names ``reservation_id``."""

        def clear(current: Any) -> Any:
            if current != reservation_id:
                return ABORT
            return None

        result = await self.state.adjust(self._user_path(user_id, "activeReservationId"), clear)
        return result.committed

    async def record_overtime(self, user_id: str) -> int:
        """Bump the user's overtime counter."""
        return await self.state.increment(self._user_path(user_id, "overtimeCount"))

    async def get_overtime_count(self, user_id: str) -> int:
        value = await self.state.read(self._user_path(user_id, "overtimeCount"))
        return int(value or 0)
