"""
Operator interrupt handling.

Ctrl-C and SIGTERM are turned into a single StopWatching event on the
supervisor mailbox, so interrupt-driven stops are ordered with scheduled
ones and never write to the server's input concurrently.
"""

import logging
import signal
from typing import Callable

from .models import LogicalEvent

logger = logging.getLogger(__name__)


class InterruptBridge:
    """Forwards process signals to the supervisor exactly once."""

    def __init__(
        self,
        submit: Callable[[LogicalEvent], None],
        signals: tuple = (signal.SIGINT, signal.SIGTERM),
    ):
        self._submit = submit
        self._signals = signals
        self._previous = {}
        self.triggered = False

    def install(self):
        """Register handlers. Must be called from the main thread."""
        for sig in self._signals:
            self._previous[sig] = signal.signal(sig, self.handle)

    def uninstall(self):
        for sig, handler in self._previous.items():
            signal.signal(sig, handler)
        self._previous.clear()

    def handle(self, signum, _frame=None):
        first = not self.triggered
        self.triggered = True

        name = signal.Signals(signum).name
        if not first:
            logger.warning(f"Received {name} again, stop already in progress")
            return

        logger.info(f"Received {name}, stopping server and exiting")
        self._submit(LogicalEvent.STOP_WATCHING)

    def __enter__(self):
        self.install()
        return self

    def __exit__(self, *exc):
        self.uninstall()
        return False
