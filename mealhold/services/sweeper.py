"""Server-side sweep for holds whose diner never came back to cancel them.

Hold expiry is normally enforced by the diner's own countdown. A diner that
goes offline keeps the slot until they return; this sweep expires such holds
once ``expiry_sweep_grace_seconds`` have passed beyond ``expiresAt``.

The diner's photo and dining phases are not persisted, so a diner who is
already eating but has not been marked arrived by the store still looks
like an active hold. Enable the sweep only where stores mark arrivals within
the hold window.
"""

import asyncio
from typing import Callable

from mealhold.config import Settings, get_settings
from mealhold.models.reservation import ReservationStatus
from mealhold.state.ledger import InventoryLedger
from mealhold.state.manager import StateManager
from mealhold.state.reservations import ReservationRepository
from mealhold.utils.logging import get_logger
from mealhold.utils.time import MS_PER_SECOND, now_ms

logger = get_logger(__name__)


class ExpirySweeper:
    """Expires lapsed holds and returns their slots."""

    def __init__(
        self,
        state_manager: StateManager,
        clock: Callable[[], int] = now_ms,
        settings: Settings | None = None,
    ):
        self.settings = settings or get_settings()
        self.clock = clock
        self.ledger = InventoryLedger(state_manager, clock)
        self.repository = ReservationRepository(state_manager)
        self._task: asyncio.Task | None = None

    async def sweep(self, now: int | None = None) -> list[str]:
        """Expire every active hold past its grace period. Returns the expired ids."""
        now = self.clock() if now is None else now
        cutoff = now - self.settings.expiry_sweep_grace_seconds * MS_PER_SECOND
        expired: list[str] = []

        for reservation in await self.repository.list_reservations():
            if reservation.status != ReservationStatus.ACTIVE:
                continue
            if reservation.expires_at > cutoff:
                continue

            # Guarded flip: a diner cancelling at the same moment wins cleanly
            if not await self.repository.expire_if_active(reservation.id):
                continue

            await self.ledger.release(reservation.store_id)
            await self.repository.clear_active_reservation_if(reservation.user_id, reservation.id)
            expired.append(reservation.id)

        if expired:
            logger.info("expiry_sweep_completed", expired_count=len(expired), reservation_ids=expired)
        return expired

    async def run(self) -> None:
        """Sweep forever at the configured interval."""
        interval = self.settings.expiry_sweep_interval_seconds
        logger.info("expiry_sweeper_started", interval=interval)
        while True:
            try:
                await self.sweep()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error("expiry_sweep_failed", error=str(e))
            await asyncio.sleep(interval)

    def start(self) -> None:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self.run(), name="expiry-sweeper")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
