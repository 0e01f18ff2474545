from __future__ import annotations

import stat
import threading
import time
from pathlib import Path

import pytest

from watchmymcserver.config import ProcessConfig, Settings

EXITING_SERVER = """#!/bin/sh
echo "Starting minecraft server"
echo "args: $*"
printf 'bad \\377\\376 bytes\\n'
echo "Done"
"""

# Reads console input until it sees "stop", like the real server console
WAITING_SERVER = """#!/bin/sh
echo "Done (1.0s)! For help, type \\"help\\""
while :; do
  line=""
  read -r line
  case "$line" in
    stop*) echo "Stopping server"; exit 0 ;;
  esac
  sleep 0.05
done
"""


def write_script(path: Path, body: str) -> Path:
    path.write_text(body, encoding="utf-8")
    path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return path


def wait_for(predicate, timeout: float = 5.0, interval: float = 0.02) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()


@pytest.fixture
def server_dir(tmp_path: Path) -> Path:
    base = tmp_path / "server"
    base.mkdir()
    (tmp_path / "paper.jar").write_bytes(b"PK")
    return tmp_path


@pytest.fixture
def make_config(server_dir: Path):
    def _make(body: str = EXITING_SERVER, **overrides) -> ProcessConfig:
        java = write_script(server_dir / "java", body)
        values = dict(
            java=java,
            jar=server_dir / "paper.jar",
            base=server_dir / "server",
            log=server_dir / "wmms.log",
            stdin=server_dir / "wmms_stdin",
            max_heap_size=4000,
            soft_max_heap_size=3000,
            extra_args=("-XX:+UnlockExperimentalVMOptions", "-XX:+UseZGC"),
            quiet=True,
        )
        values.update(overrides)
        return ProcessConfig(**values)

    return _make


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(
        config_path=tmp_path / "wmms.yaml",
        data_dir=tmp_path / "data",
        poll_interval=0.01,
        stop_timeout=None,
    )


class FakeRunner:
    """Stands in for ProcessRunner; start() blocks until stopped or exited."""

    def __init__(
        self,
        fail_start: bool = False,
        honor_stop: bool = True,
        fail_stop: bool = False,
        launch_delay: float = 0,
    ):
        self.fail_start = fail_start
        self.honor_stop = honor_stop
        self.fail_stop = fail_stop
        self.launch_delay = launch_delay
        self.start_calls = 0
        self.stop_calls = 0
        self.kill_calls = 0
        self.closed = False
        # "launch" / "stop" / "kill" in the order they happened
        self.calls: list[str] = []
        self._started = False
        self._exit = threading.Event()

    def start(self, on_launch=None):
        from watchmymcserver.errors import ServerIOError

        self.start_calls += 1
        self._started = True
        try:
            time.sleep(self.launch_delay)
            if self.fail_start:
                raise ServerIOError("cannot write to log")
            self.calls.append("launch")
            if on_launch:
                on_launch()
            self._exit.wait(10)
        finally:
            self._started = False
            self._exit.clear()

    def stop(self):
        from watchmymcserver.errors import ServerIOError

        self.stop_calls += 1
        self.calls.append("stop")
        if self.fail_stop:
            raise ServerIOError("cannot write to input channel")
        self._started = False
        if self.honor_stop:
            self._exit.set()

    def exit_on_its_own(self):
        self._exit.set()

    def started(self) -> bool:
        return self._started

    def stats(self):
        return None

    def kill(self, timeout: float = 5) -> bool:
        self.kill_calls += 1
        self.calls.append("kill")
        self._exit.set()
        return True

    def close(self):
        self.closed = True


@pytest.fixture
def fake_runner() -> FakeRunner:
    return FakeRunner()


@pytest.fixture
def runner_factory():
    return FakeRunner


@pytest.fixture
def wait():
    return wait_for


@pytest.fixture
def waiting_server() -> str:
    return WAITING_SERVER
