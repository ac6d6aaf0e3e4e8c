"""Long-lived lifecycle engines, one per signed-in diner."""

import time
from typing import Callable

from mealhold.config import get_settings
from mealhold.services.lifecycle import ReservationLifecycleEngine
from mealhold.state.manager import StateManager
from mealhold.utils.logging import get_logger

logger = get_logger(__name__)


class EngineRegistry:
    """
    Keeps each diner's engine alive between requests so its countdowns keep running.

    An engine with no reservation that nobody has asked for within
    ``idle_seconds`` is stopped and dropped; it is rebuilt from persisted state
    on the diner's next request.
    """

    def __init__(
        self,
        idle_seconds: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._engines: dict[str, ReservationLifecycleEngine] = {}
        self._last_used: dict[str, float] = {}
        self._idle_seconds = idle_seconds
        self.clock = clock

    @property
    def idle_seconds(self) -> float:
        if self._idle_seconds is None:
            return get_settings().engine_idle_seconds
        return self._idle_seconds

    async def get(
        self,
        state_manager: StateManager,
        user_id: str,
        user_display_name: str | None = None,
    ) -> ReservationLifecycleEngine:
        """Get the diner's engine, restoring it from persisted state on first use."""
        self._last_used[user_id] = self.clock()
        await self.prune()

        engine = self._engines.get(user_id)
        if engine is not None:
            return engine

        engine = ReservationLifecycleEngine(
            state_manager,
            user_id,
            user_display_name=user_display_name,
        )
        self._engines[user_id] = engine
        await engine.resume()
        engine.start()

        logger.info("engine_started", user_id=user_id)
        return engine

    async def prune(self) -> list[str]:
        """Stop engines that hold no reservation and have sat unused for ``idle_seconds``."""
        now = self.clock()
        idle = [
            user_id
            for user_id, engine in self._engines.items()
            if engine.snapshot.reservation is None
            and now - self._last_used.get(user_id, now) >= self.idle_seconds
        ]

        for user_id in idle:
            engine = self._engines.pop(user_id)
            self._last_used.pop(user_id, None)
            await engine.stop()

        if idle:
            logger.info("idle_engines_stopped", count=len(idle))
        return idle

    def __contains__(self, user_id: str) -> bool:
        return user_id in self._engines

    def __len__(self) -> int:
        return len(self._engines)

    async def shutdown(self) -> None:
        """Stop every engine's ticker."""
        for engine in self._engines.values():
            await engine.stop()
        self._engines.clear()
        self._last_used.clear()
        logger.info("engines_stopped")


# Global engine registry
registry = EngineRegistry()
