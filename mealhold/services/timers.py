"""Latches and the periodic ticker that drive client-side countdowns."""

import asyncio
from typing import Awaitable, Callable

from mealhold.utils.logging import get_logger

logger = get_logger(__name__)


class OneShotLatch:
    """Lets a time-triggered action run once no matter how often it is polled.

    Check-and-set happens without an await in between, so on a single event
    loop two ticks can never both win.
    """

    def __init__(self) -> None:
        self._fired = False

    @property
    def fired(self) -> bool:
        return self._fired

    def try_fire(self) -> bool:
        """Return True the first time only."""
        if self._fired:
            return False
        self._fired = True
        return True

    def reset(self) -> None:
        self._fired = False


class Ticker:
    """Calls an async callback every ``interval`` seconds until stopped."""

    def __init__(
        self,
        name: str,
        interval: float,
        callback: Callable[[], Awaitable[None]],
    ):
        self.name = name
        self.interval = interval
        self.callback = callback
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._run(), name=f"ticker:{self.name}")
        logger.debug("ticker_started", ticker=self.name, interval=self.interval)

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.debug("ticker_stopped", ticker=self.name)

    async def _run(self) -> None:
        while True:
            try:
                await self.callback()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                # A failed tick must not stop the countdown
                logger.error("tick_failed", ticker=self.name, error=str(e))
            await asyncio.sleep(self.interval)
