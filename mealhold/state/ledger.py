"""Per-store inventory ledger.

Every change to ``remainingCount`` or ``isOpen`` goes through
``StateManager.adjust`` so concurrent diners racing for the last slot are
serialized without a lock: each committed transform observes the value the
previous commit left behind.
"""

from typing import Any, Callable

from mealhold.errors import ReservationAborted
from mealhold.models.geo import GeoPoint
from mealhold.models.store import StoreInventory
from mealhold.state.manager import ABORT, AdjustResult, StateManager
from mealhold.utils.logging import get_logger
from mealhold.utils.time import now_ms

logger = get_logger(__name__)

STORES = "stores"


def store_path(store_id: str) -> str:
    return f"{STORES}/{store_id}"


class InventoryLedger:
    """Atomic adjustments to store inventory records."""

    def __init__(
        self,
        state_manager: StateManager,
        clock: Callable[[], int] = now_ms,
    ):
        self.state = state_manager
        self.clock = clock

    async def register_store(
        self,
        store_id: str,
        location: GeoPoint,
        remaining_count: int = 0,
        is_open: bool = False,
        max_dining_minutes: int | None = None,
        name: str | None = None,
    ) -> StoreInventory:
        """Create or replace a store's inventory record."""
        inventory = StoreInventory(
            store_id=store_id,
            is_open=is_open,
            remaining_count=max(0, remaining_count),
            last_updated=self.clock(),
            location=location,
            max_dining_minutes=max_dining_minutes,
            name=name,
        )
        await self.state.write(store_path(store_id), inventory.to_record())

        logger.info(
            "store_registered",
            store_id=store_id,
            remaining_count=inventory.remaining_count,
            is_open=is_open,
        )
        return inventory

    async def get(self, store_id: str) -> StoreInventory | None:
        """Fetch a store's current inventory."""
        data = await self.state.read(store_path(store_id))
        if not data:
            return None
        return StoreInventory.from_record(store_id, data)

    async def list_stores(self) -> list[StoreInventory]:
        """All stores with an inventory record."""
        records = await self.state.read_collection(STORES)
        return [StoreInventory.from_record(store_id, data) for store_id, data in records.items()]

    async def list_open_stores(self) -> list[StoreInventory]:
        """Stores currently serving with at least one slot left."""
        return [store for store in await self.list_stores() if store.is_available]

    async def reserve(self, store_id: str) -> StoreInventory:
        """
        Take one slot from a store.

        Returns:
            The inventory as committed.

        Raises:
            ReservationAborted: the store is missing, closed or sold out.
        """
        reasons: list[str] = []

        def take_one(current: dict[str, Any] | None) -> Any:
            # Transform may re-run after a conflict; keep only the latest reason
            reasons.clear()
            if current is None:
                reasons.append(ReservationAborted.NO_SUCH_STORE)
                return ABORT
            if not current.get("isOpen"):
                reasons.append(ReservationAborted.NOT_ACCEPTING)
                return ABORT
            if current.get("remainingCount", 0) <= 0:
                reasons.append(ReservationAborted.SOLD_OUT)
                return ABORT
            return {
                **current,
                "remainingCount": current["remainingCount"] - 1,
                "lastUpdated": self.clock(),
            }

        result = await self.state.adjust(store_path(store_id), take_one)

        if not result.committed:
            reason = reasons[0] if reasons else ReservationAborted.SOLD_OUT
            logger.info("reserve_aborted", store_id=store_id, reason=reason)
            raise ReservationAborted(reason, store_id=store_id)

        logger.info(
            "reserve_committed",
            store_id=store_id,
            remaining_count=result.value["remainingCount"],
            attempts=result.attempts,
        )
        return StoreInventory.from_record(store_id, result.value)

    async def release(self, store_id: str) -> StoreInventory | None:
        """Return one slot to a store. No-op when the store record is gone."""

        def give_back(current: dict[str, Any] | None) -> Any:
            if current is None:
                return ABORT
            return {
                **current,
                "remainingCount": current.get("remainingCount", 0) + 1,
                "lastUpdated": self.clock(),
            }

        result = await self.state.adjust(store_path(store_id), give_back)
        if not result.committed:
            logger.warning("release_skipped_missing_store", store_id=store_id)
            return None

        logger.info(
            "release_committed",
            store_id=store_id,
            remaining_count=result.value["remainingCount"],
        )
        return StoreInventory.from_record(store_id, result.value)

    async def set_remaining(self, store_id: str, count: int) -> StoreInventory | None:
        """Owner sets the remaining count directly."""
        return await self._admin_update(
            store_id,
            "set_remaining",
            lambda current: {"remainingCount": max(0, count)},
        )

    async def adjust_remaining(self, store_id: str, delta: int) -> StoreInventory | None:
        """Owner adds to or subtracts from the remaining count."""
        return await self._admin_update(
            store_id,
            "adjust_remaining",
            lambda current: {
                "remainingCount": max(0, current.get("remainingCount", 0) + delta)
            },
        )

    async def set_open(self, store_id: str, is_open: bool) -> StoreInventory | None:
        """Owner starts or stops serving."""
        return await self._admin_update(
            store_id,
            "set_open",
            lambda current: {"isOpen": is_open},
        )

    async def toggle_open(self, store_id: str) -> StoreInventory | None:
        """Owner flips the serving flag in one tap."""
        return await self._admin_update(
            store_id,
            "toggle_open",
            lambda current: {"isOpen": not current.get("isOpen", False)},
        )

    async def _admin_update(
        self,
        store_id: str,
        operation: str,
        changes: Callable[[dict[str, Any]], dict[str, Any]],
    ) -> StoreInventory | None:
        def apply(current: dict[str, Any] | None) -> Any:
            if current is None:
                return ABORT
            return {**current, **changes(current), "lastUpdated": self.clock()}

        result: AdjustResult = await self.state.adjust(store_path(store_id), apply)
        if not result.committed:
            logger.warning("admin_update_missing_store", store_id=store_id, operation=operation)
            return None

        logger.info(
            "inventory_admin_update",
            store_id=store_id,
            operation=operation,
            remaining_count=result.value.get("remainingCount"),
            is_open=result.value.get("isOpen"),
        )
        return StoreInventory.from_record(store_id, result.value)
