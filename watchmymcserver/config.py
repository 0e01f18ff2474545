"""
Configuration for watchmymcserver.

Runtime settings come from environment variables (a local .env file is
honored). The managed server itself is described by a YAML file, which is
bootstrapped with defaults the first time it is missing.
"""

import logging
import os
from dataclasses import dataclass, field
from datetime import datetime, time
from pathlib import Path
from typing import Optional

import yaml
from dotenv import load_dotenv

from .errors import ConfigError, ScheduleParseError, ServerNotFoundError

load_dotenv()

logger = logging.getLogger(__name__)

DEFAULT_CONFIG = """\
java: /usr/local/bin/java   # path to your java executable
quiet: false

server:
  base: /var/minecraft/server               # directory to run the JAR in
  jar: /var/minecraft/softwares/paper.jar   # server JAR file
  on: "8:00"                                # when to turn the server on (24h time)
  off: "21:06"                              # when to turn the server off (24h time)
  log: /var/log/wmms.log                    # server output log
  stdin: /tmp/wmms_stdin                    # input channel, leave as is unless you know why

  # extra jvm opts
  max_heap_size: 4000        # megabytes
  soft_max_heap_size: 3000   # megabytes
  extra_args: ["-XX:+UnlockExperimentalVMOptions", "-XX:+UseZGC"]  # use [] on Java 13 or before
"""


def _optional_float(value: str) -> Optional[float]:
    return float(value) if value else None


@dataclass
class Settings:
    """Runtime settings for the watcher process."""

    # Paths
    config_path: Path = Path(
        os.environ.get("WMMS_CONFIG", str(Path.home() / ".watchmymcserver.yaml"))
    )
    data_dir: Path = Path(
        os.environ.get("WMMS_DATA_DIR", str(Path.home() / ".watchmymcserver"))
    )
    supervisor_log: Path = None

    # Logging
    log_level: str = os.environ.get("WMMS_LOG_LEVEL", "INFO")
    log_max_bytes: int = int(os.environ.get("LOG_MAX_BYTES", str(10 * 1024 * 1024)))  # 10MB
    log_backup_count: int = int(os.environ.get("LOG_BACKUP_COUNT", "5"))

    # Scheduling
    poll_interval: float = float(os.environ.get("WMMS_POLL_INTERVAL", "5"))

    # Seconds to wait for the server to exit after "stop"; None waits forever
    stop_timeout: Optional[float] = _optional_float(os.environ.get("WMMS_STOP_TIMEOUT", ""))

    def __post_init__(self):
        """Derive paths that depend on the data directory."""
        self.config_path = Path(self.config_path).expanduser()
        self.data_dir = Path(self.data_dir).expanduser()
        if self.supervisor_log is None:
            self.supervisor_log = self.data_dir / "watchmymcserver.log"


@dataclass(frozen=True)
class ScheduleWindow:
    """Daily on/off marks, minute granularity."""

    on: time
    off: time

    @staticmethod
    def parse_time(value: str) -> time:
        """Parse a 24-hour HH:MM (or H:MM) string."""
        if not isinstance(value, str):
            raise ScheduleParseError(f"time must be a string like '08:00', got {value!r}")
        try:
            parsed = datetime.strptime(value.strip(), "%H:%M")
        except ValueError as e:
            raise ScheduleParseError(f"invalid time {value!r}: expected HH:MM") from e
        return parsed.time()

    @classmethod
    def parse(cls, on: str, off: str) -> "ScheduleWindow":
        window = cls(on=cls.parse_time(on), off=cls.parse_time(off))
        if window.on == window.off:
            raise ScheduleParseError(
                f"on and off times are both {window.on.strftime('%H:%M')}"
            )
        return window

    def cron_expression(self, mark: time) -> str:
        """Daily cron expression firing at the given mark."""
        return f"{mark.minute} {mark.hour} * * *"

    def describe(self) -> str:
        return f"on at {self.on.strftime('%H:%M')}, off at {self.off.strftime('%H:%M')}"


@dataclass(frozen=True)
class ProcessConfig:
    """Everything needed to launch and watch the managed server."""

    java: Path
    jar: Path
    base: Path
    log: Path
    stdin: Path
    max_heap_size: int
    soft_max_heap_size: int
    extra_args: tuple = field(default_factory=tuple)
    quiet: bool = False

    def __post_init__(self):
        for name in ("max_heap_size", "soft_max_heap_size"):
            value = getattr(self, name)
            if not isinstance(value, int) or isinstance(value, bool) or value <= 0:
                raise ConfigError(f"{name} must be a positive integer, got {value!r}")

    def validate(self):
        """Check that the files the server needs exist on disk."""
        if not self.java.exists():
            raise ServerNotFoundError("java executable", self.java)
        if not self.jar.exists():
            raise ServerNotFoundError("jarfile", self.jar)
        if not self.base.is_dir():
            raise ServerNotFoundError("server directory", self.base)


@dataclass(frozen=True)
class ServerConfig:
    """Parsed server config file."""

    process: ProcessConfig
    window: ScheduleWindow
    path: Optional[Path] = None


def _require(section: dict, key: str, where: str):
    if key not in section:
        raise ConfigError(f"missing key '{key}' in {where}")
    return section[key]


def _path(section: dict, key: str, where: str) -> Path:
    value = _require(section, key, where)
    if not isinstance(value, str) or not value:
        raise ConfigError(f"'{key}' in {where} must be a path string, got {value!r}")
    return Path(value).expanduser()


def _schedule_mark(server: dict, key: str, yaml_bool: bool):
    # YAML 1.1 loads bare `on:` / `off:` keys as booleans
    if key in server:
        return server[key]
    if yaml_bool in server:
        return server[yaml_bool]
    raise ConfigError(f"missing key '{key}' in server")


def parse_config(data, path: Optional[Path] = None) -> ServerConfig:
    """Build a ServerConfig from the mapping read out of the config file."""
    if not isinstance(data, dict):
        raise ConfigError("config must be a mapping with 'java' and 'server' keys")

    server = _require(data, "server", "config")
    if not isinstance(server, dict):
        raise ConfigError("'server' must be a mapping")

    extra_args = server.get("extra_args") or []
    if not isinstance(extra_args, list) or not all(isinstance(a, str) for a in extra_args):
        raise ConfigError("'extra_args' must be a list of strings")

    max_heap = _require(server, "max_heap_size", "server")
    quiet = data.get("quiet", False)
    if not isinstance(quiet, bool):
        raise ConfigError(f"'quiet' must be true or false, got {quiet!r}")

    process = ProcessConfig(
        java=_path(data, "java", "config"),
        jar=_path(server, "jar", "server"),
        base=_path(server, "base", "server"),
        log=_path(server, "log", "server"),
        stdin=_path(server, "stdin", "server"),
        max_heap_size=max_heap,
        soft_max_heap_size=server.get("soft_max_heap_size", max_heap),
        # Empty strings are placeholders for "no extra args"
        extra_args=tuple(a for a in extra_args if a),
        quiet=quiet,
    )
    window = ScheduleWindow.parse(
        _schedule_mark(server, "on", True),
        _schedule_mark(server, "off", False),
    )
    return ServerConfig(process=process, window=window, path=path)


def load_config(path: Path) -> ServerConfig:
    """
    Load the server config, writing the default one first if it is missing.
    """
    path = Path(path).expanduser()

    try:
        if not path.exists():
            logger.warning(f"Config {path} not found, writing defaults")
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(DEFAULT_CONFIG)
            text = DEFAULT_CONFIG
        else:
            text = path.read_text()
    except OSError as e:
        raise ConfigError(f"cannot read config {path}: {e}") from e

    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise ConfigError(f"invalid YAML in {path}: {e}") from e

    return parse_config(data, path=path)


settings = Settings()
