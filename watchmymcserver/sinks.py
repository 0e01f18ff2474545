"""
File sinks bound to the managed server.

LogSink is the append-only server log: every write is one complete,
timestamped line, optionally echoed to the console. InputChannel is the
file (or FIFO) the server reads its console input from; writing to it is
how the server is told to shut down.
"""

import logging
import os
import sys
from datetime import datetime
from pathlib import Path
from typing import Callable, Optional

from .errors import ServerIOError

logger = logging.getLogger(__name__)

LOG_TAG = "WATCHMYMCSERVER"
STOP_PAYLOAD = b"stop"


def console_echo(text: str):
    """Write a log line to standard output as-is."""
    sys.stdout.write(text)
    sys.stdout.flush()


class LogSink:
    """Append-only, line-oriented server log."""

    def __init__(
        self,
        path: Path,
        echo: Optional[Callable[[str], None]] = None,
        now: Callable[[], datetime] = datetime.now,
    ):
        self.path = Path(path)
        self._echo = echo
        self._now = now
        self._file = open(self.path, "ab")

    def format_lifecycle(self, message: str) -> str:
        stamp = self._now().strftime("%Y-%m-%d %H:%M:%S")
        return f"[{LOG_TAG} LOG {stamp}] {message}\n"

    def format_output(self, line: str) -> str:
        stamp = self._now().strftime("%Y-%m-%d")
        return f"[{LOG_TAG} SERVER {stamp}] {line}\n"

    def lifecycle(self, message: str) -> str:
        """Record a watcher event such as the server starting or exiting."""
        return self.write(self.format_lifecycle(message))

    def output(self, line: str) -> str:
        """Record one line of server output."""
        return self.write(self.format_output(line))

    def write(self, text: str) -> str:
        try:
            self._file.write(text.encode("utf-8"))
            self._file.flush()
        except (OSError, ValueError) as e:
            # ValueError: write to a closed file
            raise ServerIOError(f"cannot write to log {self.path}: {e}") from e

        if self._echo:
            self._echo(text)
        return text

    @property
    def closed(self) -> bool:
        return self._file.closed

    def close(self):
        self._file.close()


class InputChannel:
    """Console input of the managed server, opened once and kept open."""

    def __init__(self, path: Path):
        self.path = Path(path)
        # Read+write so opening a FIFO never blocks; truncates a regular file
        self._file = open(self.path, "w+b")

    def reader(self):
        """
        Open a read handle for the server's stdin.

        The handle starts at the current end of the channel, so instructions
        sent to an earlier server run are not replayed to the new one.
        """
        handle = open(self.path, "rb")
        if handle.seekable():
            handle.seek(0, os.SEEK_END)
        return handle

    def send(self, payload: bytes = STOP_PAYLOAD):
        try:
            self._file.write(payload)
            self._file.flush()
        except (OSError, ValueError) as e:
            raise ServerIOError(f"cannot write to input channel {self.path}: {e}") from e
        logger.debug(f"Sent {payload!r} to {self.path}")

    @property
    def closed(self) -> bool:
        return self._file.closed

    def close(self):
        self._file.close()
