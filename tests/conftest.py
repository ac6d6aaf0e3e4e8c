"""Pytest configuration and fixtures."""

import asyncio
from typing import AsyncGenerator, Awaitable, Callable

import fakeredis
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from mealhold.api.sessions import registry
from mealhold.main import app
from mealhold.models.geo import GeoPoint
from mealhold.models.store import StoreInventory
from mealhold.services.alerts import RecordingAlertSink
from mealhold.services.lifecycle import ReservationLifecycleEngine
from mealhold.state.ledger import InventoryLedger
from mealhold.state.manager import StateManager, set_state_manager
from mealhold.state.reservations import ReservationRepository

TOKYO_STATION = GeoPoint(lat=35.6812, lng=139.7671)


class FakeClock:
    """Manually advanced epoch-millisecond clock."""

    def __init__(self, start: int = 1_700_000_000_000):
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> int:
        self.now += ms
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    """Create a fake clock."""
    return FakeClock()


@pytest_asyncio.fixture
async def state_manager() -> AsyncGenerator[StateManager, None]:
    """Create a state manager backed by an in-memory Redis."""
    server = fakeredis.FakeServer()
    client = fakeredis.FakeAsyncRedis(server=server, decode_responses=True)
    manager = StateManager(redis_client=client)
    yield manager
    await manager.disconnect()


@pytest.fixture
def ledger(state_manager: StateManager, clock: FakeClock) -> InventoryLedger:
    return InventoryLedger(state_manager, clock)


@pytest.fixture
def repository(state_manager: StateManager) -> ReservationRepository:
    return ReservationRepository(state_manager)


@pytest.fixture
def alerts() -> RecordingAlertSink:
    return RecordingAlertSink()


@pytest.fixture
def make_engine(
    state_manager: StateManager,
    ledger: InventoryLedger,
    repository: ReservationRepository,
    alerts: RecordingAlertSink,
    clock: FakeClock,
) -> Callable[..., ReservationLifecycleEngine]:
    """Build lifecycle engines that share the test store and clock."""

    def factory(user_id: str | None = "user_a", **kwargs) -> ReservationLifecycleEngine:
        kwargs.setdefault("ledger", ledger)
        kwargs.setdefault("repository", repository)
        kwargs.setdefault("alert", alerts)
        kwargs.setdefault("clock", clock)
        return ReservationLifecycleEngine(state_manager, user_id, **kwargs)

    return factory


@pytest_asyncio.fixture
async def open_store(ledger: InventoryLedger) -> StoreInventory:
    """A serving store with a single slot left."""
    return await ledger.register_store(
        "store_1",
        location=TOKYO_STATION,
        remaining_count=1,
        is_open=True,
        max_dining_minutes=30,
        name="Tokyo Station Teishoku",
    )


@pytest.fixture
def wait_for() -> Callable[..., Awaitable[None]]:
    """Poll a condition until it holds or the timeout passes."""

    async def waiter(condition: Callable[[], bool], timeout: float = 3.0) -> None:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while not condition():
            if loop.time() > deadline:
                raise AssertionError("condition not met before timeout")
            await asyncio.sleep(0.01)

    return waiter


@pytest_asyncio.fixture
async def test_client(state_manager: StateManager) -> AsyncGenerator[AsyncClient, None]:
    """Create a test HTTP client wired to the in-memory store."""
    set_state_manager(state_manager)
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
    await registry.shutdown()
    set_state_manager(None)
