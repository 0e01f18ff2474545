"""
Schedule clock.

Samples the local time every few seconds and submits ServerOn/ServerOff
when the on/off minute is reached. The poll interval is shorter than a
minute, so each matched minute fires at most once no matter how many polls
land inside it.
"""

import logging
import threading
from datetime import datetime, timedelta
from typing import Callable, Optional

from croniter import croniter

from .config import ScheduleWindow
from .models import LogicalEvent

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL = 5.0


class ScheduleClock:
    """Background timer driving the daily on/off window."""

    def __init__(
        self,
        window: ScheduleWindow,
        submit: Callable[[LogicalEvent], None],
        interval: float = DEFAULT_POLL_INTERVAL,
        now: Callable[[], datetime] = datetime.now,
    ):
        self.window = window
        self.interval = interval
        self._submit = submit
        self._now = now
        self._last_fired: Optional[datetime] = None
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def _matches(self, mark, minute: datetime) -> bool:
        """Check if the daily mark falls on the given (truncated) minute."""
        cron = croniter(self.window.cron_expression(mark), minute - timedelta(minutes=1))
        return cron.get_next(datetime) == minute

    def tick(self, now: Optional[datetime] = None) -> Optional[LogicalEvent]:
        """Sample the clock once, submitting and returning the event if any."""
        if now is None:
            now = self._now()
        minute = now.replace(second=0, microsecond=0)

        if minute == self._last_fired:
            return None

        if self._matches(self.window.on, minute):
            event = LogicalEvent.SERVER_ON
        elif self._matches(self.window.off, minute):
            event = LogicalEvent.SERVER_OFF
        else:
            return None

        self._last_fired = minute
        logger.info(f"Schedule reached {minute.strftime('%H:%M')}, submitting {event.name}")
        self._submit(event)
        return event

    def next_transition(self, now: Optional[datetime] = None) -> tuple[LogicalEvent, datetime]:
        """The next on or off mark after now."""
        if now is None:
            now = self._now()
        upcoming = [
            (croniter(self.window.cron_expression(mark), now).get_next(datetime), event)
            for mark, event in (
                (self.window.on, LogicalEvent.SERVER_ON),
                (self.window.off, LogicalEvent.SERVER_OFF),
            )
        ]
        when, event = min(upcoming, key=lambda item: item[0])
        return event, when

    def run(self):
        """Poll until stop() is called."""
        logger.info(f"Schedule clock running ({self.window.describe()}, every {self.interval}s)")
        while not self._stop_event.is_set():
            try:
                self.tick()
            except Exception as e:
                logger.error(f"Error in schedule clock: {e}")
            self._stop_event.wait(self.interval)
        logger.info("Schedule clock stopped")

    def start(self):
        """Start polling on a daemon thread."""
        if self._thread and self._thread.is_alive():
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self.run, name="schedule-clock", daemon=True)
        self._thread.start()

    def stop(self, timeout: Optional[float] = None):
        self._stop_event.set()
        if self._thread:
            self._thread.join(timeout)
            self._thread = None
