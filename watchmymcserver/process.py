"""
Process runner for the managed server.

Launches the server JAR, captures its combined stdout/stderr into the
server log line by line, and shuts it down by writing "stop" to its console
input. All state changes and sink writes happen under one lock, held for a
single check or write at a time so stop() is never starved by the capture
loop.
"""

import logging
import shlex
import subprocess
import threading
from datetime import datetime
from typing import Callable, Optional

import psutil

from .config import ProcessConfig
from .errors import ServerIOError, ServerPermissionError
from .models import ProcessStats
from .sinks import STOP_PAYLOAD, InputChannel, LogSink, console_echo

logger = logging.getLogger(__name__)


def _open_sink(factory, path, *args, **kwargs):
    try:
        return factory(path, *args, **kwargs)
    except PermissionError as e:
        raise ServerPermissionError(path, e.strerror) from e
    except OSError as e:
        raise ServerIOError(f"cannot open {path}: {e}") from e


class ProcessRunner:
    """Owns one managed server process at a time."""

    def __init__(self, config: ProcessConfig, now: Callable[[], datetime] = datetime.now):
        # Validate before opening anything so a bad config leaves no files behind
        config.validate()

        self.config = config
        self._lock = threading.Lock()
        self._started = False
        self._process: Optional[subprocess.Popen] = None
        self._returncode: Optional[int] = None
        # psutil handles are kept so cpu_percent() measures since the last sample
        self._ps_procs: dict[int, psutil.Process] = {}

        echo = None if config.quiet else console_echo
        self._log = _open_sink(LogSink, config.log, echo=echo, now=now)
        try:
            self._channel = _open_sink(InputChannel, config.stdin)
        except Exception:
            self._log.close()
            raise

    def build_command(self) -> list[str]:
        """Full argument vector: java, JVM flags, jar and nogui."""
        max_heap = self.config.max_heap_size
        return [
            str(self.config.java),
            "-jar",
            f"-Xmx{max_heap}M",
            f"-XX:SoftMaxHeapSize={self.config.soft_max_heap_size}M",
            f"-Xms{max_heap // 4}M",
            *self.config.extra_args,
            str(self.config.jar),
            "nogui",
        ]

    def started(self) -> bool:
        with self._lock:
            return self._started

    @property
    def pid(self) -> Optional[int]:
        with self._lock:
            return self._process.pid if self._process else None

    @property
    def returncode(self) -> Optional[int]:
        """Exit code of the last server run, None while running."""
        with self._lock:
            return self._returncode

    def start(self, on_launch: Optional[Callable[[], None]] = None):
        """
        Run the server until its output stream closes.

        Blocks for the whole lifetime of the server. on_launch is called once
        the server is spawned and reading its console input, so a stop() sent
        after it is guaranteed to reach the server. Raises ServerIOError if it
        cannot be launched or its output cannot be logged; the lifecycle is
        back to stopped whenever this returns or raises.
        """
        with self._lock:
            self._started = True
            self._returncode = None

        try:
            self._run(on_launch)
        finally:
            with self._lock:
                self._started = False
                self._process = None
                self._ps_procs.clear()

    def _run(self, on_launch: Optional[Callable[[], None]] = None):
        with self._lock:
            self._log.lifecycle("starting server")

        cmd = self.build_command()
        logger.info(f"Launching server: {shlex.join(cmd)}")

        try:
            stdin = self._channel.reader()
            try:
                process = subprocess.Popen(
                    cmd,
                    stdin=stdin,
                    stdout=subprocess.PIPE,
                    stderr=subprocess.STDOUT,
                    cwd=self.config.base,
                )
            finally:
                stdin.close()
        except OSError as e:
            raise ServerIOError(f"cannot launch {cmd[0]}: {e}") from e

        with self._lock:
            self._process = process
        logger.info(f"Started server with PID {process.pid}")
        self._sample(process.pid)
        if on_launch:
            on_launch()

        try:
            self._capture_output(process)
        except ServerIOError:
            # Don't leave the server running unwatched
            logger.error(f"Lost the server log, asking PID {process.pid} to stop")
            try:
                with self._lock:
                    self._channel.send(STOP_PAYLOAD)
            except ServerIOError as e:
                logger.error(f"Could not send stop to PID {process.pid}: {e}")
            raise

        returncode = process.wait()
        with self._lock:
            self._returncode = returncode
            self._log.lifecycle("server exited")
        logger.info(f"Server PID {process.pid} exited with code {returncode}")

    def _capture_output(self, process: subprocess.Popen):
        """Copy merged server output into the log until the pipe closes."""
        skipped = 0
        try:
            for raw in iter(process.stdout.readline, b""):
                try:
                    line = raw.decode("utf-8").rstrip("\r\n")
                except UnicodeDecodeError:
                    skipped += 1
                    logger.debug(f"Skipping undecodable output line: {raw[:80]!r}")
                    continue

                with self._lock:
                    self._log.output(line)
        finally:
            process.stdout.close()

        if skipped:
            logger.warning(f"Skipped {skipped} undecodable line(s) of server output")

    def stop(self):
        """Ask the server to shut down. Does not wait for it to exit."""
        with self._lock:
            self._channel.send(STOP_PAYLOAD)
            self._started = False
        logger.info("Sent stop to server")

    def stats(self) -> Optional[ProcessStats]:
        """CPU and memory of the running server, including child processes."""
        with self._lock:
            process = self._process

        if process is None or process.poll() is not None:
            return None

        try:
            proc = self._sample(process.pid)
            if proc is None:
                return None
            stats = ProcessStats(
                pid=process.pid,
                cpu_percent=proc.cpu_percent(interval=None),
                memory_mb=proc.memory_info().rss / 1024 / 1024,
            )
            try:
                for child in proc.children(recursive=True):
                    child = self._sample(child.pid) or child
                    stats.cpu_percent += child.cpu_percent(interval=None)
                    stats.memory_mb += child.memory_info().rss / 1024 / 1024
                    stats.num_children += 1
            except (psutil.NoSuchProcess, psutil.AccessDenied):
                pass
            return stats
        except (psutil.NoSuchProcess, psutil.AccessDenied):
            return None

    def _sample(self, pid: int) -> Optional[psutil.Process]:
        """
        Cached psutil handle for pid. A new handle gets its first
        cpu_percent() call here, so the next one reports usage since then.
        """
        with self._lock:
            proc = self._ps_procs.get(pid)
        if proc is not None:
            return proc

        try:
            proc = psutil.Process(pid)
            proc.cpu_percent(interval=None)
        except (psutil.NoSuchProcess, psutil.AccessDenied):
            return None

        with self._lock:
            return self._ps_procs.setdefault(pid, proc)

    def kill(self, timeout: float = 5) -> bool:
        """
        Terminate the server and its children, killing whatever is left
        after timeout seconds. Returns False if nothing was running.
        """
        with self._lock:
            process = self._process

        if process is None or process.poll() is not None:
            return False

        try:
            proc = psutil.Process(process.pid)
            procs = [proc, *proc.children(recursive=True)]
        except psutil.NoSuchProcess:
            return False

        logger.warning(f"Terminating server PID {process.pid}")
        for p in procs:
            try:
                p.terminate()
            except psutil.NoSuchProcess:
                pass

        _, alive = psutil.wait_procs(procs, timeout=timeout)
        for p in alive:
            logger.warning(f"PID {p.pid} ignored SIGTERM, killing")
            try:
                p.kill()
            except psutil.NoSuchProcess:
                pass
        return True

    def close(self):
        """Close the log and input channel. The runner is unusable afterwards."""
        with self._lock:
            self._log.close()
            self._channel.close()
