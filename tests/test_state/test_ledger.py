"""Tests for the per-store inventory ledger."""

import asyncio

import pytest

from mealhold.errors import ReservationAborted
from mealhold.models.geo import GeoPoint
from mealhold.models.store import StoreInventory
from mealhold.state.ledger import InventoryLedger, store_path
from mealhold.state.manager import StateManager

TOKYO_STATION = GeoPoint(lat=35.6812, lng=139.7671)


@pytest.mark.asyncio
async def test_register_store(ledger: InventoryLedger, clock) -> None:
    """Test a registered store is readable with its persisted shape."""
    inventory = await ledger.register_store(
        "s1",
        location=TOKYO_STATION,
        remaining_count=4,
        is_open=True,
        max_dining_minutes=45,
    )

    assert inventory.last_updated == clock.now
    stored = await ledger.get("s1")
    assert stored == inventory
    assert stored.store_id == "s1"
    assert stored.is_available is True


@pytest.mark.asyncio
async def test_register_store_record_shape(
    ledger: InventoryLedger,
    state_manager: StateManager,
) -> None:
    """Test the persisted record uses the shared field names."""
    await ledger.register_store("s1", location=TOKYO_STATION, remaining_count=2, is_open=True)

    record = await state_manager.read(store_path("s1"))

    assert record["isOpen"] is True
    assert record["remainingCount"] == 2
    assert record["location"] == {"lat": 35.6812, "lng": 139.7671}
    assert "lastUpdated" in record
    assert "maxDiningMinutes" not in record


@pytest.mark.asyncio
async def test_reserve_decrements(ledger: InventoryLedger, clock) -> None:
    """Test reserve takes one slot and stamps lastUpdated."""
    await ledger.register_store("s1", location=TOKYO_STATION, remaining_count=2, is_open=True)
    clock.advance(5000)

    inventory = await ledger.reserve("s1")

    assert inventory.remaining_count == 1
    assert inventory.last_updated == clock.now
    assert (await ledger.get("s1")).remaining_count == 1


@pytest.mark.asyncio
async def test_reserve_missing_store(ledger: InventoryLedger) -> None:
    """Test reserving at an unknown store aborts with its reason."""
    with pytest.raises(ReservationAborted) as exc_info:
        await ledger.reserve("ghost")

    assert exc_info.value.reason == ReservationAborted.NO_SUCH_STORE
    assert await ledger.get("ghost") is None


@pytest.mark.asyncio
async def test_reserve_closed_store_reports_closed_before_sold_out(ledger: InventoryLedger) -> None:
    """Test a closed store with no slots reports closed, not sold out."""
    await ledger.register_store("s1", location=TOKYO_STATION, remaining_count=0, is_open=False)

    with pytest.raises(ReservationAborted) as exc_info:
        await ledger.reserve("s1")

    assert exc_info.value.reason == "store not accepting orders"
    assert exc_info.value.status_code == 409


@pytest.mark.asyncio
async def test_reserve_sold_out_leaves_record(ledger: InventoryLedger, clock) -> None:
    """Test an abort writes nothing."""
    before = await ledger.register_store("s1", location=TOKYO_STATION, remaining_count=0, is_open=True)
    clock.advance(1000)

    with pytest.raises(ReservationAborted) as exc_info:
        await ledger.reserve("s1")

    assert exc_info.value.reason == "sold out"
    assert await ledger.get("s1") == before


@pytest.mark.asyncio
@pytest.mark.parametrize("attempts,slots", [(8, 3), (3, 5), (6, 6)])
async def test_no_oversell_under_concurrency(
    ledger: InventoryLedger,
    attempts: int,
    slots: int,
) -> None:
    """Test concurrent reserves commit exactly min(N, k) times."""
    await ledger.register_store("s1", location=TOKYO_STATION, remaining_count=slots, is_open=True)

    results = await asyncio.gather(
        *(ledger.reserve("s1") for _ in range(attempts)),
        return_exceptions=True,
    )

    committed = [r for r in results if isinstance(r, StoreInventory)]
    aborted = [r for r in results if isinstance(r, ReservationAborted)]

    assert len(committed) == min(attempts, slots)
    assert len(aborted) == attempts - min(attempts, slots)
    assert all(a.reason == ReservationAborted.SOLD_OUT for a in aborted)
    assert (await ledger.get("s1")).remaining_count == max(0, slots - attempts)
    # Each commit observed the count the previous one left behind
    assert sorted(r.remaining_count for r in committed) == list(
        range(slots - len(committed), slots)
    )


@pytest.mark.asyncio
async def test_release_adds_back(ledger: InventoryLedger) -> None:
    """Test release returns one slot, even on a closed store."""
    await ledger.register_store("s1", location=TOKYO_STATION, remaining_count=0, is_open=False)

    inventory = await ledger.release("s1")

    assert inventory.remaining_count == 1
    assert inventory.is_open is False


@pytest.mark.asyncio
async def test_release_missing_store_is_noop(ledger: InventoryLedger) -> None:
    """Test release does not create a record for an unknown store."""
    assert await ledger.release("ghost") is None
    assert await ledger.get("ghost") is None


@pytest.mark.asyncio
async def test_set_and_adjust_remaining_clamp(ledger: InventoryLedger) -> None:
    """Test owner adjustments never go below zero."""
    await ledger.register_store("s1", location=TOKYO_STATION, remaining_count=2, is_open=True)

    assert (await ledger.set_remaining("s1", 7)).remaining_count == 7
    assert (await ledger.adjust_remaining("s1", -3)).remaining_count == 4
    assert (await ledger.adjust_remaining("s1", -10)).remaining_count == 0
    assert (await ledger.set_remaining("s1", -1)).remaining_count == 0


@pytest.mark.asyncio
async def test_toggle_and_set_open(ledger: InventoryLedger, clock) -> None:
    """Test serving flag changes keep the count and stamp lastUpdated."""
    await ledger.register_store("s1", location=TOKYO_STATION, remaining_count=2, is_open=False)
    clock.advance(60_000)

    toggled = await ledger.toggle_open("s1")
    assert toggled.is_open is True
    assert toggled.remaining_count == 2
    assert toggled.last_updated == clock.now

    assert (await ledger.toggle_open("s1")).is_open is False
    assert (await ledger.set_open("s1", True)).is_open is True


@pytest.mark.asyncio
async def test_admin_update_missing_store(ledger: InventoryLedger) -> None:
    """Test owner actions on an unknown store return None."""
    assert await ledger.toggle_open("ghost") is None
    assert await ledger.set_remaining("ghost", 3) is None


@pytest.mark.asyncio
async def test_list_open_stores(ledger: InventoryLedger) -> None:
    """Test only serving stores with slots are listed as open."""
    await ledger.register_store("open", location=TOKYO_STATION, remaining_count=1, is_open=True)
    await ledger.register_store("closed", location=TOKYO_STATION, remaining_count=1, is_open=False)
    await ledger.register_store("empty", location=TOKYO_STATION, remaining_count=0, is_open=True)

    assert {s.store_id for s in await ledger.list_stores()} == {"open", "closed", "empty"}
    assert [s.store_id for s in await ledger.list_open_stores()] == ["open"]
