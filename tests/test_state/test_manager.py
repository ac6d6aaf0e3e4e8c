"""Tests for the Redis-backed state tree."""

import fakeredis
import pytest

from mealhold.errors import LedgerConflictError, StoreUnavailableError
from mealhold.state.manager import ABORT, StateManager, parse_path


def test_parse_path() -> None:
    """Test record and field paths split into collection, key and field."""
    record = parse_path("stores/store_1")
    assert record.collection == "stores"
    assert record.key == "stores/store_1"
    assert record.field is None
    assert record.record_id == "store_1"

    field = parse_path("/users/u1/activeReservationId/")
    assert field.key == "users/u1"
    assert field.field == "activeReservationId"

    with pytest.raises(ValueError):
        parse_path("stores")


@pytest.mark.asyncio
async def test_write_and_read_record(state_manager: StateManager) -> None:
    """Test records round-trip with nested values intact."""
    await state_manager.write(
        "stores/s1",
        {"isOpen": True, "remainingCount": 3, "location": {"lat": 1.5, "lng": 2.5}},
    )

    assert await state_manager.read("stores/s1") == {
        "isOpen": True,
        "remainingCount": 3,
        "location": {"lat": 1.5, "lng": 2.5},
    }
    assert await state_manager.read("stores/s1/remainingCount") == 3
    assert await state_manager.read("stores/missing") is None


@pytest.mark.asyncio
async def test_write_none_deletes(state_manager: StateManager) -> None:
    """Test writing None removes the record and its index entry."""
    await state_manager.write("stores/s1", {"isOpen": True})
    await state_manager.write("stores/s1", None)

    assert await state_manager.read("stores/s1") is None
    assert await state_manager.read_collection("stores") == {}


@pytest.mark.asyncio
async def test_read_collection(state_manager: StateManager) -> None:
    """Test every record in a collection is returned by id."""
    await state_manager.write("reservations/a", {"status": "active"})
    await state_manager.write("reservations/b", {"status": "arrived"})

    records = await state_manager.read_collection("reservations")

    assert records == {"a": {"status": "active"}, "b": {"status": "arrived"}}


@pytest.mark.asyncio
async def test_update_sets_and_deletes_fields(state_manager: StateManager) -> None:
    """Test update merges fields and drops the ones set to None."""
    await state_manager.write(
        "reservations/r1",
        {"status": "active", "userLocation": {"lat": 1.0, "lng": 2.0, "updatedAt": 5}},
    )

    await state_manager.update("reservations/r1", {"status": "arrived", "userLocation": None})

    assert await state_manager.read("reservations/r1") == {"status": "arrived"}


@pytest.mark.asyncio
async def test_increment(state_manager: StateManager) -> None:
    """Test counters start from zero and add up."""
    assert await state_manager.increment("users/u1/overtimeCount") == 1
    assert await state_manager.increment("users/u1/overtimeCount") == 2
    assert await state_manager.read("users/u1/overtimeCount") == 2


@pytest.mark.asyncio
async def test_adjust_commits_transform(state_manager: StateManager) -> None:
    """Test adjust writes the transformed value."""
    await state_manager.write("stores/s1", {"remainingCount": 2})

    result = await state_manager.adjust(
        "stores/s1",
        lambda current: {**current, "remainingCount": current["remainingCount"] - 1},
    )

    assert result.committed is True
    assert result.value == {"remainingCount": 1}
    assert result.attempts == 1
    assert await state_manager.read("stores/s1/remainingCount") == 1


@pytest.mark.asyncio
async def test_adjust_abort_leaves_value(state_manager: StateManager) -> None:
    """Test ABORT stops without writing and reports the current value."""
    await state_manager.write("stores/s1", {"remainingCount": 0})

    result = await state_manager.adjust("stores/s1", lambda current: ABORT)

    assert result.committed is False
    assert result.value == {"remainingCount": 0}
    assert await state_manager.read("stores/s1") == {"remainingCount": 0}


@pytest.mark.asyncio
async def test_adjust_sees_none_for_missing(state_manager: StateManager) -> None:
    """Test the transform receives None for an absent path."""
    seen = []

    def transform(current):
        seen.append(current)
        return ABORT

    await state_manager.adjust("stores/nope", transform)

    assert seen == [None]


@pytest.mark.asyncio
async def test_adjust_retries_exhausted() -> None:
    """Test a transform that always loses the race raises a conflict error."""
    server = fakeredis.FakeServer()
    rival = fakeredis.FakeRedis(server=server, decode_responses=True)
    manager = StateManager(redis_client=fakeredis.FakeAsyncRedis(server=server, decode_responses=True))
    manager.max_retries = 3
    manager.backoff_base = 0
    manager.backoff_max = 0

    await manager.write("stores/s1", {"remainingCount": 5})
    calls = []

    def losing(current):
        calls.append(current)
        # Another writer touches the watched key before EXEC every time
        rival.hset("stores/s1", "lastUpdated", str(len(calls)))
        return {**current, "remainingCount": 4}

    with pytest.raises(LedgerConflictError) as exc_info:
        await manager.adjust("stores/s1", losing)

    assert exc_info.value.attempts == 3
    assert exc_info.value.status_code == 503
    assert len(calls) == 3
    await manager.disconnect()


@pytest.mark.asyncio
async def test_connection_failure_is_translated() -> None:
    """Test Redis connection errors surface as a store-unavailable error."""
    server = fakeredis.FakeServer()
    server.connected = False
    manager = StateManager(redis_client=fakeredis.FakeAsyncRedis(server=server, decode_responses=True))

    with pytest.raises(StoreUnavailableError):
        await manager.read("stores/s1")


@pytest.mark.asyncio
async def test_subscribe_collection(state_manager: StateManager, wait_for) -> None:
    """Test subscribers get the current snapshot, then every change."""
    snapshots = []

    subscription = await state_manager.subscribe("reservations", snapshots.append)
    await wait_for(lambda: len(snapshots) == 1)
    assert snapshots[0] == {}

    await state_manager.write("reservations/r1", {"status": "active"})
    await wait_for(lambda: len(snapshots) == 2)
    assert snapshots[-1] == {"r1": {"status": "active"}}

    await subscription.unsubscribe()
    assert subscription.active is False


@pytest.mark.asyncio
async def test_subscribe_record_ignores_other_records(state_manager: StateManager, wait_for) -> None:
    """Test a record subscription only fires for its own record."""
    await state_manager.write("reservations/r1", {"status": "active"})
    snapshots = []

    subscription = await state_manager.subscribe("reservations/r1", snapshots.append)
    await wait_for(lambda: len(snapshots) == 1)

    await state_manager.write("reservations/r2", {"status": "active"})
    await state_manager.write("reservations/r1/status", "arrived")
    await wait_for(lambda: len(snapshots) == 2)

    assert snapshots[-1] == {"status": "arrived"}
    await subscription.unsubscribe()
