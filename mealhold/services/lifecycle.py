"""Reservation lifecycle engine: one diner's hold from creation to release."""

import inspect
import math
from typing import Any, Awaitable, Callable

from pydantic import BaseModel

from mealhold.config import Settings, get_settings
from mealhold.errors import (
    AuthenticationRequiredError,
    InvalidTransitionError,
    MealholdError,
    NoActiveReservationError,
    ReservationAborted,
    ReservationNotFoundError,
    ReservationPersistError,
)
from mealhold.models.geo import ETAEstimate
from mealhold.models.reservation import (
    EstimatedArrival,
    Reservation,
    ReservationStatus,
    UserLocation,
)
from mealhold.services.alerts import OVERTIME, AlertSink, LoggingAlertSink
from mealhold.services.eta import estimate_eta
from mealhold.services.observable import Observable
from mealhold.services.timers import OneShotLatch, Ticker
from mealhold.state.ledger import InventoryLedger
from mealhold.state.manager import StateManager
from mealhold.state.reservations import ReservationRepository
from mealhold.state.workflow import PhaseTransitions, ReservationPhase, ReservationTransitions
from mealhold.utils.logging import ReservationLogger
from mealhold.utils.time import MS_PER_MINUTE, ceil_seconds, format_mmss, now_ms

TimeoutCallback = Callable[[Reservation], Awaitable[None] | None]


class LifecycleSnapshot(BaseModel):
    """Client-side view of the diner's reservation, rebuilt every tick."""

    reservation: Reservation | None = None
    phase: ReservationPhase | None = None
    remaining_seconds: int = 0
    dining_started_at: int | None = None
    dining_expires_at: int | None = None
    dining_remaining_seconds: int | None = None
    overtime_handled: bool = False
    is_processing: bool = False
    error: str | None = None

    @property
    def formatted_time(self) -> str:
        return format_mmss(self.remaining_seconds)

    @property
    def is_expired(self) -> bool:
        return self.phase == ReservationPhase.NAVIGATING and self.remaining_seconds <= 0

    @property
    def is_overtime(self) -> bool:
        return (
            self.phase == ReservationPhase.DINING
            and self.dining_remaining_seconds is not None
            and self.dining_remaining_seconds <= 0
        )


class ReservationLifecycleEngine:
    """
    Drives a single diner's reservation.

    Persisted status lives in the shared store; the phase, countdowns and
    one-shot latches live here and are recomputed from persisted timestamps on
    every ``tick``. Inventory and record failures are raised as typed errors
    and never retried by the engine itself.
    """

    def __init__(
        self,
        state_manager: StateManager,
        user_id: str | None,
        user_display_name: str | None = None,
        ledger: InventoryLedger | None = None,
        repository: ReservationRepository | None = None,
        alert: AlertSink | None = None,
        clock: Callable[[], int] = now_ms,
        on_timeout: TimeoutCallback | None = None,
        settings: Settings | None = None,
    ):
        self.user_id = user_id
        self.user_display_name = user_display_name
        self.clock = clock
        self.settings = settings or get_settings()
        self.ledger = ledger or InventoryLedger(state_manager, clock)
        self.repository = repository or ReservationRepository(state_manager)
        self.alert = alert or LoggingAlertSink()
        self.logger = ReservationLogger(user_id)

        self.state: Observable[LifecycleSnapshot] = Observable(LifecycleSnapshot())
        self.expiry_latch = OneShotLatch()
        self.overtime_latch = OneShotLatch()

        self._on_timeout = on_timeout
        self._cancelling: set[str] = set()
        self._ticker = Ticker(
            f"lifecycle:{user_id}",
            self.settings.tick_interval_seconds,
            self.tick,
        )

    @property
    def snapshot(self) -> LifecycleSnapshot:
        return self.state.value

    def _update(self, **changes: Any) -> None:
        self.state.set(self.state.value.model_copy(update=changes))

    def _require_user(self) -> str:
        if not self.user_id:
            raise AuthenticationRequiredError()
        return self.user_id

    def _clear_local(self) -> None:
        self.expiry_latch.reset()
        self.overtime_latch.reset()
        self.state.set(LifecycleSnapshot())

    def _is_current(self, reservation_id: str) -> bool:
        current = self.snapshot.reservation
        return current is not None and current.id == reservation_id

    def start(self) -> None:
        """Begin recomputing countdowns every tick interval."""
        self._ticker.start()

    async def stop(self) -> None:
        await self._ticker.stop()

    async def create(self, store_id: str) -> Reservation:
        """
        Hold one slot at ``store_id`` for the diner.

        Raises:
            AuthenticationRequiredError: no diner is signed in.
            InvalidTransitionError: the diner already holds a reservation.
            ReservationAborted: the store is missing, closed or sold out.
                Nothing was written.
            ReservationPersistError: the slot was taken but the record could
                not be saved. The slot is not returned automatically.
        """
        user_id = self._require_user()

        if self.snapshot.reservation is not None:
            raise InvalidTransitionError(self.snapshot.reservation.status.value, "active")

        self._update(is_processing=True, error=None)

        try:
            await self.ledger.reserve(store_id)
        except ReservationAborted as e:
            self._update(is_processing=False, error=e.reason)
            raise
        except MealholdError as e:
            self._update(is_processing=False, error=e.message)
            raise

        now = self.clock()
        try:
            reservation = await self.repository.create_reservation(
                store_id=store_id,
                user_id=user_id,
                created_at=now,
                hold_duration_ms=self.settings.hold_duration_ms,
                user_display_name=self.user_display_name,
            )
            await self.repository.set_active_reservation_id(user_id, reservation.id)
        except Exception as e:
            self.logger.log_error(
                "slot_taken_but_reservation_not_saved",
                store_id=store_id,
                cause=str(e),
            )
            error = ReservationPersistError(store_id, e)
            self._update(is_processing=False, error=error.message)
            raise error from e

        self.expiry_latch.reset()
        self.overtime_latch.reset()
        self.state.set(
            LifecycleSnapshot(
                reservation=reservation,
                phase=ReservationPhase.NAVIGATING,
                remaining_seconds=ceil_seconds(reservation.expires_at - now),
            )
        )
        self.logger.log_transition(reservation.id, None, ReservationStatus.ACTIVE.value, store_id=store_id)
        return reservation

    async def cancel(self, reservation_id: str, store_id: str) -> bool:
        """
        Give the slot back and mark the reservation cancelled.

        Cancelling a reservation that is already finished, or one that is
        being cancelled right now, does nothing and returns False.
        """
        user_id = self._require_user()

        if reservation_id in self._cancelling:
            return False
        self._cancelling.add(reservation_id)

        try:
            reservation = await self.repository.get_reservation(reservation_id)
            if reservation is None or not reservation.is_open:
                self.logger.logger.info(
                    "cancel_ignored",
                    reservation_id=reservation_id,
                    status=reservation.status.value if reservation else None,
                )
                if self._is_current(reservation_id):
                    self._clear_local()
                return False

            self._update(is_processing=True)
            try:
                # Release first: a crash after this leaves a spare slot, not a lost one
                await self.ledger.release(store_id)
                await self.repository.set_status(reservation_id, ReservationStatus.CANCELLED)
                await self.repository.set_active_reservation_id(user_id, None)
            except MealholdError as e:
                self.logger.log_error(e.message, reservation_id, during="cancel")
                self._update(is_processing=False, error=e.message)
                raise

            self.logger.log_transition(
                reservation_id,
                reservation.status.value,
                ReservationStatus.CANCELLED.value,
            )
            if self._is_current(reservation_id):
                self._clear_local()
            return True
        finally:
            self._cancelling.discard(reservation_id)

    async def mark_arrived(
        self,
        reservation_id: str,
        max_dining_minutes: int | None = None,
    ) -> Reservation:
        """Store-side: the diner is here. Starts the dining window and drops their location."""
        minutes = max_dining_minutes
        if minutes is None:
            minutes = self.settings.default_dining_minutes
        reservation = await self.repository.mark_arrived(reservation_id, minutes, self.clock())

        self.logger.log_transition(
            reservation_id,
            ReservationStatus.ACTIVE.value,
            ReservationStatus.ARRIVED.value,
            max_dining_minutes=minutes,
        )
        if self._is_current(reservation_id):
            self._update(reservation=reservation)
        return reservation

    async def complete(self, reservation_id: str) -> None:
        """Finish the visit. The consumed slot is not returned to inventory."""
        user_id = self._require_user()

        reservation = await self.repository.get_reservation(reservation_id)
        if reservation is None:
            raise ReservationNotFoundError(reservation_id)
        if not ReservationTransitions.can_transition(reservation.status, ReservationStatus.COMPLETED):
            raise InvalidTransitionError(reservation.status.value, ReservationStatus.COMPLETED.value)

        await self.repository.set_status(reservation_id, ReservationStatus.COMPLETED)
        await self.repository.set_active_reservation_id(user_id, None)

        self.logger.log_transition(
            reservation_id,
            reservation.status.value,
            ReservationStatus.COMPLETED.value,
        )
        if self._is_current(reservation_id):
            self._clear_local()

    def _advance_phase(self, to_phase: ReservationPhase) -> Reservation:
        reservation = self.snapshot.reservation
        if reservation is None:
            raise NoActiveReservationError()
        if not PhaseTransitions.can_transition(self.snapshot.phase, to_phase):
            current = self.snapshot.phase.value if self.snapshot.phase else None
            raise InvalidTransitionError(current, to_phase.value)
        return reservation

    async def confirm_arrival(self) -> None:
        """The diner says they reached the store; next they photograph the meal."""
        reservation = self._advance_phase(ReservationPhase.PHOTO)
        self._update(phase=ReservationPhase.PHOTO)
        self.logger.log_transition(
            reservation.id,
            ReservationPhase.NAVIGATING.value,
            ReservationPhase.PHOTO.value,
        )

    async def submit_photo(self) -> None:
        """The meal photo is in; the dining window starts now."""
        reservation = self._advance_phase(ReservationPhase.DINING)
        now = self.clock()

        latest = await self.repository.get_reservation(reservation.id) or reservation
        if latest.dining_expires_at is not None:
            dining_expires_at = latest.dining_expires_at
        else:
            # Store has not marked the arrival yet
            dining_expires_at = now + self.settings.default_dining_minutes * MS_PER_MINUTE

        self._update(
            reservation=latest,
            phase=ReservationPhase.DINING,
            dining_started_at=now,
            dining_expires_at=dining_expires_at,
            dining_remaining_seconds=math.ceil((dining_expires_at - now) / 1000),
        )
        self.logger.log_transition(
            reservation.id,
            ReservationPhase.PHOTO.value,
            ReservationPhase.DINING.value,
            dining_expires_at=dining_expires_at,
        )

    async def report_location(self, lat: float, lng: float) -> ETAEstimate | None:
        """
        Share the diner's position with the store while they walk there.

        Ignored outside the navigating phase. Returns the ETA written, or None.
        """
        reservation = self.snapshot.reservation
        if reservation is None or self.snapshot.phase != ReservationPhase.NAVIGATING:
            return None

        now = self.clock()
        location = UserLocation(lat=lat, lng=lng, updated_at=now)

        eta = None
        estimated_arrival = None
        store = await self.ledger.get(reservation.store_id)
        if store is not None:
            eta = estimate_eta(lat, lng, store.location.lat, store.location.lng)
            estimated_arrival = EstimatedArrival(
                duration_seconds=eta.estimated_minutes * 60,
                distance_meters=eta.estimated_distance_meters,
                updated_at=now,
            )

        written = await self.repository.update_location(reservation.id, location, estimated_arrival)
        return eta if written else None

    async def resume(self) -> Reservation | None:
        """Rebuild local state from the diner's persisted reservation pointer."""
        user_id = self._require_user()

        reservation_id = await self.repository.get_active_reservation_id(user_id)
        if not reservation_id:
            self._clear_local()
            return None

        reservation = await self.repository.get_reservation(reservation_id)
        if reservation is None or not reservation.is_open:
            self.logger.logger.info("stale_reservation_pointer_cleared", reservation_id=reservation_id)
            await self.repository.set_active_reservation_id(user_id, None)
            self._clear_local()
            return None

        self.expiry_latch.reset()
        self.overtime_latch.reset()
        now = self.clock()

        if reservation.status == ReservationStatus.ARRIVED and reservation.dining_expires_at:
            self._enter_dining(reservation, now)
        else:
            self.state.set(
                LifecycleSnapshot(
                    reservation=reservation,
                    phase=ReservationPhase.NAVIGATING,
                    remaining_seconds=ceil_seconds(reservation.expires_at - now),
                )
            )

        self.logger.logger.info(
            "reservation_resumed",
            reservation_id=reservation.id,
            phase=self.snapshot.phase.value,
        )
        return reservation

    def _enter_dining(self, reservation: Reservation, now: int) -> None:
        self.state.set(
            LifecycleSnapshot(
                reservation=reservation,
                phase=ReservationPhase.DINING,
                dining_started_at=reservation.arrived_at,
                dining_expires_at=reservation.dining_expires_at,
                dining_remaining_seconds=math.ceil((reservation.dining_expires_at - now) / 1000),
            )
        )

    async def _refresh(self, reservation: Reservation) -> Reservation | None:
        """
        Pick up what the store or another session wrote to the record.

        Returns the latest record, or None after clearing local state when the
        reservation was closed elsewhere. A failed read keeps the local copy.
        """
        try:
            latest = await self.repository.get_reservation(reservation.id)
        except MealholdError as e:
            self.logger.logger.warning(
                "reservation_refresh_failed",
                reservation_id=reservation.id,
                error=e.message,
            )
            return reservation

        if latest is None or not latest.is_open:
            self.logger.logger.info(
                "reservation_closed_elsewhere",
                reservation_id=reservation.id,
                status=latest.status.value if latest else None,
            )
            self._clear_local()
            return None

        changes: dict[str, Any] = {"reservation": latest}
        if self.snapshot.phase == ReservationPhase.DINING and latest.dining_expires_at is not None:
            # The store's arrival mark wins over the photo-time default
            changes["dining_expires_at"] = latest.dining_expires_at
        self._update(**changes)
        return latest

    async def tick(self) -> None:
        """Recompute countdowns and fire any due one-shot timers."""
        snapshot = self.snapshot
        if snapshot.reservation is None or snapshot.phase is None:
            return

        reservation = await self._refresh(snapshot.reservation)
        if reservation is None:
            return

        snapshot = self.snapshot
        now = self.clock()

        if snapshot.phase == ReservationPhase.NAVIGATING:
            remaining_ms = max(0, reservation.expires_at - now)
            self._update(remaining_seconds=ceil_seconds(remaining_ms))
            if remaining_ms > 0:
                return

            if reservation.status == ReservationStatus.ARRIVED:
                # Seated by the store before confirming on their own screen
                self.logger.log_transition(
                    reservation.id,
                    ReservationPhase.NAVIGATING.value,
                    ReservationPhase.DINING.value,
                    dining_expires_at=reservation.dining_expires_at,
                )
                self._enter_dining(reservation, now)
            elif self.expiry_latch.try_fire():
                self.logger.log_timer_fired("hold_expiry", reservation.id, now - reservation.expires_at)
                await self._handle_timeout(reservation)

        elif snapshot.phase == ReservationPhase.DINING and snapshot.dining_expires_at is not None:
            remaining_ms = snapshot.dining_expires_at - now
            self._update(dining_remaining_seconds=math.ceil(remaining_ms / 1000))

            if remaining_ms <= 0 and self.overtime_latch.try_fire():
                self.logger.log_timer_fired("dining_overtime", reservation.id, -remaining_ms)
                self._update(overtime_handled=True)
                self.alert.play(OVERTIME, reservation_id=reservation.id)
                await self._record_overtime()

    async def _handle_timeout(self, reservation: Reservation) -> None:
        try:
            if self._on_timeout is not None:
                result = self._on_timeout(reservation)
                if inspect.isawaitable(result):
                    await result
            else:
                await self._cancel_lapsed_hold(reservation)
        except Exception as e:
            # Surface through state; the countdown loop has to keep going
            self.logger.log_error(str(e), reservation.id, during="hold_expiry")
            self._update(is_processing=False, error="Failed to cancel the expired reservation")

    async def _cancel_lapsed_hold(self, reservation: Reservation) -> None:
        """
        Cancel a hold whose countdown ran out.

        The status flip only commits while the record is still active, and the
        slot goes back only after it commits, so a diner the store has already
        seated keeps their slot.
        """
        user_id = self._require_user()

        self._update(is_processing=True)
        if not await self.repository.close_if_active(reservation.id, ReservationStatus.CANCELLED):
            self.logger.logger.info("lapsed_hold_moved_on", reservation_id=reservation.id)
            self._update(is_processing=False)
            return

        await self.ledger.release(reservation.store_id)
        await self.repository.clear_active_reservation_if(user_id, reservation.id)

        self.logger.log_transition(
            reservation.id,
            ReservationStatus.ACTIVE.value,
            ReservationStatus.CANCELLED.value,
            reason="hold_expired",
        )
        if self._is_current(reservation.id):
            self._clear_local()

    async def _record_overtime(self) -> None:
        try:
            count = await self.repository.record_overtime(self._require_user())
            self.logger.logger.info("overtime_recorded", overtime_count=count)
        except Exception as e:
            self.logger.logger.warning("overtime_counter_failed", error=str(e))
