from __future__ import annotations

import threading
from datetime import datetime, timedelta

import pytest

from watchmymcserver.clock import ScheduleClock
from watchmymcserver.config import ScheduleWindow
from watchmymcserver.models import LogicalEvent

WINDOW = ScheduleWindow.parse("8:00", "21:06")


@pytest.fixture
def events() -> list:
    return []


@pytest.fixture
def clock(events: list) -> ScheduleClock:
    return ScheduleClock(WINDOW, events.append)


def test_on_minute_emits_server_on(clock: ScheduleClock, events: list) -> None:
    assert clock.tick(datetime(2026, 10, 19, 8, 0, 0)) is LogicalEvent.SERVER_ON
    assert events == [LogicalEvent.SERVER_ON]


def test_off_minute_emits_server_off(clock: ScheduleClock, events: list) -> None:
    assert clock.tick(datetime(2026, 10, 19, 21, 6, 42)) is LogicalEvent.SERVER_OFF
    assert events == [LogicalEvent.SERVER_OFF]


@pytest.mark.parametrize(
    "moment",
    [
        datetime(2026, 10, 19, 7, 59, 59),
        datetime(2026, 10, 19, 8, 1, 0),
        datetime(2026, 10, 19, 21, 5, 59),
        datetime(2026, 10, 19, 20, 6, 0),
        datetime(2026, 10, 19, 0, 0, 0),
    ],
)
def test_other_minutes_emit_nothing(clock: ScheduleClock, events: list, moment: datetime) -> None:
    assert clock.tick(moment) is None
    assert events == []


def test_repeated_polls_in_the_same_minute_fire_once(clock: ScheduleClock, events: list) -> None:
    start = datetime(2026, 10, 19, 8, 0, 0)

    for i in range(5):
        clock.tick(start + timedelta(seconds=5 * i))

    assert events == [LogicalEvent.SERVER_ON]


def test_polling_a_whole_minute_every_five_seconds_fires_once(clock: ScheduleClock, events: list) -> None:
    start = datetime(2026, 10, 19, 7, 59, 30)

    for i in range(30):
        clock.tick(start + timedelta(seconds=5 * i))

    assert events == [LogicalEvent.SERVER_ON]


def test_fires_again_the_next_day(clock: ScheduleClock, events: list) -> None:
    clock.tick(datetime(2026, 10, 19, 8, 0, 10))
    clock.tick(datetime(2026, 10, 19, 21, 6, 10))
    clock.tick(datetime(2026, 10, 20, 8, 0, 3))

    assert events == [
        LogicalEvent.SERVER_ON,
        LogicalEvent.SERVER_OFF,
        LogicalEvent.SERVER_ON,
    ]


def test_next_transition(clock: ScheduleClock) -> None:
    assert clock.next_transition(datetime(2026, 10, 19, 7, 0)) == (
        LogicalEvent.SERVER_ON,
        datetime(2026, 10, 19, 8, 0),
    )
    assert clock.next_transition(datetime(2026, 10, 19, 12, 30)) == (
        LogicalEvent.SERVER_OFF,
        datetime(2026, 10, 19, 21, 6),
    )
    assert clock.next_transition(datetime(2026, 10, 19, 22, 0)) == (
        LogicalEvent.SERVER_ON,
        datetime(2026, 10, 20, 8, 0),
    )


def test_background_thread_polls_until_stopped() -> None:
    received = []
    fired = threading.Event()

    def submit(event):
        received.append(event)
        fired.set()

    clock = ScheduleClock(
        WINDOW,
        submit,
        interval=0.01,
        now=lambda: datetime(2026, 10, 19, 8, 0, 30),
    )
    clock.start()
    try:
        assert fired.wait(5)
    finally:
        clock.stop(timeout=5)

    assert received == [LogicalEvent.SERVER_ON]


def test_tick_errors_do_not_kill_the_loop() -> None:
    calls = []
    done = threading.Event()

    def now():
        calls.append(1)
        if len(calls) == 1:
            raise RuntimeError("clock glitch")
        done.set()
        return datetime(2026, 10, 19, 12, 0)

    clock = ScheduleClock(WINDOW, lambda event: None, interval=0.01, now=now)
    clock.start()
    try:
        assert done.wait(5)
    finally:
        clock.stop(timeout=5)

    assert len(calls) >= 2
