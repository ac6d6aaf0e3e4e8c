"""Live view of one store's open bookings, for the store's own screen."""

from typing import Any, Callable

from pydantic import BaseModel

from mealhold.config import Settings, get_settings
from mealhold.models.geo import ETAEstimate, GeoPoint
from mealhold.models.reservation import Reservation, ReservationStatus
from mealhold.services.alerts import NEW_BOOKING, AlertSink, LoggingAlertSink
from mealhold.services.eta import estimate_eta
from mealhold.services.observable import Observable
from mealhold.state.ledger import InventoryLedger
from mealhold.state.manager import StateManager, Subscription
from mealhold.state.reservations import RESERVATIONS, ReservationRepository
from mealhold.utils.logging import get_logger
from mealhold.utils.time import ceil_seconds, now_ms

logger = get_logger(__name__)

WATCHED_STATUSES = (ReservationStatus.ACTIVE, ReservationStatus.ARRIVED)


class BookingRow(BaseModel):
    """One booking as the store sees it at a given instant."""

    reservation: Reservation
    countdown_seconds: int
    is_urgent: bool = False
    is_expired: bool = False
    is_overtime: bool = False
    eta: ETAEstimate | None = None

    @classmethod
    def build(
        cls,
        reservation: Reservation,
        now: int,
        store_location: GeoPoint | None = None,
        urgent_threshold_seconds: int = 300,
    ) -> "BookingRow":
        if reservation.status == ReservationStatus.ARRIVED:
            seconds = ceil_seconds((reservation.dining_expires_at or 0) - now)
            return cls(
                reservation=reservation,
                countdown_seconds=seconds,
                is_overtime=seconds <= 0,
            )

        seconds = ceil_seconds(reservation.expires_at - now)
        eta = None
        if reservation.user_location is not None and store_location is not None:
            eta = estimate_eta(
                reservation.user_location.lat,
                reservation.user_location.lng,
                store_location.lat,
                store_location.lng,
            )
        return cls(
            reservation=reservation,
            countdown_seconds=seconds,
            is_urgent=0 < seconds < urgent_threshold_seconds,
            is_expired=seconds <= 0,
            eta=eta,
        )


class BookingMonitor:
    """
    Watches every reservation and keeps the open ones for a single store.

    There is no filtered subscription on the server, so the whole collection
    is read on each change and filtered here. Bookings that appear between
    two snapshots trigger a new-booking alert, except on the very first
    snapshot after subscribing.
    """

    def __init__(
        self,
        state_manager: StateManager,
        store_id: str,
        repository: ReservationRepository | None = None,
        ledger: InventoryLedger | None = None,
        alert: AlertSink | None = None,
        clock: Callable[[], int] = now_ms,
        settings: Settings | None = None,
    ):
        self.state_manager = state_manager
        self.store_id = store_id
        self.repository = repository or ReservationRepository(state_manager)
        self.ledger = ledger or InventoryLedger(state_manager, clock)
        self.alert = alert or LoggingAlertSink()
        self.clock = clock
        self.settings = settings or get_settings()

        self.bookings: Observable[list[Reservation]] = Observable([])
        self.is_loading = True
        self.error: str | None = None

        self._known_ids: set[str] = set()
        self._first_snapshot = True
        self._subscription: Subscription | None = None

    async def start(self) -> None:
        """Subscribe to reservation changes."""
        if self._subscription is not None:
            return

        self.is_loading = True
        self.error = None
        self._first_snapshot = True
        self._known_ids = set()
        self._subscription = await self.state_manager.subscribe(
            RESERVATIONS,
            self.handle_snapshot,
            self.handle_error,
        )
        logger.info("booking_monitor_started", store_id=self.store_id)

    async def stop(self) -> None:
        if self._subscription is None:
            return
        await self._subscription.unsubscribe()
        self._subscription = None
        logger.info("booking_monitor_stopped", store_id=self.store_id)

    def handle_snapshot(self, records: dict[str, dict[str, Any]] | None) -> None:
        """Filter a full reservations snapshot down to this store's open bookings."""
        bookings: list[Reservation] = []
        current_ids: set[str] = set()
        now = self.clock()

        for reservation_id, data in (records or {}).items():
            if data.get("storeId") != self.store_id:
                continue
            if data.get("status") not in {status.value for status in WATCHED_STATUSES}:
                continue

            try:
                reservation = Reservation.from_record(reservation_id, data)
            except ValueError as e:
                logger.warning(
                    "booking_record_invalid",
                    store_id=self.store_id,
                    reservation_id=reservation_id,
                    error=str(e),
                )
                continue

            current_ids.add(reservation_id)
            bookings.append(reservation)

        if not self._first_snapshot:
            for reservation_id in sorted(current_ids - self._known_ids):
                logger.info("new_booking_detected", store_id=self.store_id, reservation_id=reservation_id)
                self.alert.play(NEW_BOOKING, store_id=self.store_id, reservation_id=reservation_id)

        self._known_ids = current_ids
        self._first_snapshot = False

        # Unknown creation time sorts as "just now"
        bookings.sort(
            key=lambda r: r.created_at if r.created_at is not None else now,
            reverse=True,
        )

        self.is_loading = False
        self.error = None
        self.bookings.set(bookings)

    def handle_error(self, error: Exception) -> None:
        logger.error("booking_watch_failed", store_id=self.store_id, error=str(error))
        self.error = "failed to watch reservations"
        self.is_loading = False

    @property
    def active_count(self) -> int:
        return sum(1 for r in self.bookings.value if r.status == ReservationStatus.ACTIVE)

    @property
    def arrived_count(self) -> int:
        return sum(1 for r in self.bookings.value if r.status == ReservationStatus.ARRIVED)

    def rows(
        self,
        now: int | None = None,
        store_location: GeoPoint | None = None,
    ) -> list[BookingRow]:
        """Booking rows with countdowns and ETA as of ``now``."""
        now = self.clock() if now is None else now
        return [
            BookingRow.build(
                reservation,
                now,
                store_location,
                self.settings.urgent_threshold_seconds,
            )
            for reservation in self.bookings.value
        ]

    async def mark_as_arrived(
        self,
        reservation_id: str,
        max_dining_minutes: int | None = None,
    ) -> Reservation:
        """Mark a diner as arrived; defaults to the store's configured dining window."""
        if max_dining_minutes is None:
            store = await self.ledger.get(self.store_id)
            max_dining_minutes = (
                store.max_dining_minutes
                if store is not None and store.max_dining_minutes
                else self.settings.default_dining_minutes
            )

        return await self.repository.mark_arrived(reservation_id, max_dining_minutes, self.clock())
