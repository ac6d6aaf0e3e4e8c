"""Tests for latches, the ticker, observables and alert sinks."""

import asyncio

import pytest

from mealhold.services.alerts import NEW_BOOKING, OVERTIME, RecordingAlertSink
from mealhold.services.observable import Observable
from mealhold.services.timers import OneShotLatch, Ticker


def test_one_shot_latch() -> None:
    """Test the latch fires once until reset."""
    latch = OneShotLatch()

    assert latch.try_fire() is True
    assert latch.try_fire() is False
    assert latch.fired is True

    latch.reset()
    assert latch.fired is False
    assert latch.try_fire() is True


@pytest.mark.asyncio
async def test_ticker_survives_failing_callback(wait_for) -> None:
    """Test a raising tick does not stop later ticks."""
    calls = []

    async def callback() -> None:
        calls.append(len(calls))
        if len(calls) == 1:
            raise RuntimeError("boom")

    ticker = Ticker("test", 0.01, callback)
    ticker.start()
    await wait_for(lambda: len(calls) >= 3)
    await ticker.stop()

    assert ticker.running is False
    count = len(calls)
    await asyncio.sleep(0.05)
    assert len(calls) == count


def test_observable_notifies_and_unsubscribes() -> None:
    """Test listeners see each new value until they unsubscribe."""
    observable = Observable(0)
    seen = []

    unsubscribe = observable.subscribe(seen.append)
    observable.set(1)
    unsubscribe()
    observable.set(2)

    assert seen == [1]
    assert observable.value == 2


def test_observable_isolates_failing_listener() -> None:
    """Test a broken listener does not block the others."""
    observable = Observable("a")
    seen = []

    def broken(value: str) -> None:
        raise ValueError(value)

    observable.subscribe(broken)
    observable.subscribe(seen.append)
    observable.set("b")

    assert seen == ["b"]


def test_recording_alert_sink() -> None:
    sink = RecordingAlertSink()
    sink.play(NEW_BOOKING, reservation_id="r1")
    sink.play(OVERTIME, reservation_id="r2")

    assert sink.count(NEW_BOOKING) == 1
    assert sink.drain() == [
        (NEW_BOOKING, {"reservation_id": "r1"}),
        (OVERTIME, {"reservation_id": "r2"}),
    ]
    assert sink.played == []
