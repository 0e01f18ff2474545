"""
Error types raised by watchmymcserver.

Configuration and construction errors are fatal at startup. Runtime I/O
errors are raised by the process runner and contained by the supervisor.
"""

from pathlib import Path


class WatchError(Exception):
    """Base class for all watchmymcserver errors."""


class ConfigError(WatchError):
    """The server configuration is missing, malformed or inconsistent."""


class ScheduleParseError(ConfigError):
    """An on/off time string is not a valid HH:MM time of day."""


class ServerNotFoundError(WatchError):
    """A path the managed server needs does not exist."""

    def __init__(self, what: str, path: Path):
        self.what = what
        self.path = Path(path)
        super().__init__(f"{what} not found: {self.path}")


class ServerPermissionError(WatchError):
    """Opening the log or input channel was denied."""

    def __init__(self, path: Path, reason: str = ""):
        self.path = Path(path)
        message = f"permission denied: {self.path}"
        if reason:
            message = f"{message} ({reason})"
        super().__init__(message)


class ServerIOError(WatchError):
    """Writing to the log, the input channel or spawning the server failed."""
