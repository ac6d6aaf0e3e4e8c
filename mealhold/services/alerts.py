"""Audible alert hooks.

Sound playback belongs to the client; the core only says when to play.
"""

from typing import Protocol

from mealhold.utils.logging import get_logger

logger = get_logger(__name__)

NEW_BOOKING = "new_booking"
OVERTIME = "overtime"


class AlertSink(Protocol):
    def play(self, kind: str, **context: str) -> None: ...


class LoggingAlertSink:
    """Alert sink that only records the alert."""

    def play(self, kind: str, **context: str) -> None:
        logger.info("alert_played", kind=kind, **context)


class RecordingAlertSink:
    """Keeps every alert in memory; handy for tests and websocket fan-out."""

    def __init__(self) -> None:
        self.played: list[tuple[str, dict[str, str]]] = []

    def play(self, kind: str, **context: str) -> None:
        self.played.append((kind, context))

    def count(self, kind: str) -> int:
        return sum(1 for played_kind, _ in self.played if played_kind == kind)

    def drain(self) -> list[tuple[str, dict[str, str]]]:
        played, self.played = self.played, []
        return played
