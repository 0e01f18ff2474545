"""
Supervisor event loop.

The schedule clock and the interrupt bridge submit LogicalEvents into one
FIFO mailbox; the supervisor consumes them one at a time and is the only
place that decides whether to start or stop the server. The server itself
runs on a worker thread whose handle is kept on the supervisor, so a later
stop can always find and join it.
"""

import logging
import queue
import threading
from typing import Optional

from .clock import ScheduleClock
from .config import ScheduleWindow, Settings, settings as default_settings
from .errors import WatchError
from .models import LogicalEvent, SupervisorState, WorkerFailure
from .process import ProcessRunner

logger = logging.getLogger(__name__)

# How long to wait for the worker after a hard kill
KILL_GRACE_SECONDS = 10


class Supervisor:
    """Single consumer of schedule and interrupt events."""

    def __init__(
        self,
        runner: ProcessRunner,
        window: Optional[ScheduleWindow] = None,
        settings: Optional[Settings] = None,
        mailbox: Optional[queue.SimpleQueue] = None,
    ):
        self.runner = runner
        self.settings = settings or default_settings
        # SimpleQueue.put is reentrant, so signal handlers can submit safely
        self.mailbox = mailbox if mailbox is not None else queue.SimpleQueue()
        self.last_failure: Optional[WorkerFailure] = None

        self._state = SupervisorState.IDLE
        self._state_lock = threading.Lock()
        self._worker: Optional[threading.Thread] = None
        self._launched = threading.Event()

        self.clock: Optional[ScheduleClock] = None
        if window is not None:
            self.clock = ScheduleClock(
                window, self.submit, interval=self.settings.poll_interval
            )

    @property
    def state(self) -> SupervisorState:
        with self._state_lock:
            return self._state

    def _set_state(self, state: SupervisorState):
        with self._state_lock:
            if state is not self._state:
                logger.debug(f"Supervisor {self._state.value} -> {state.value}")
            self._state = state

    def submit(self, event: LogicalEvent):
        """Queue an event for the loop. Safe to call from any thread."""
        self.mailbox.put(event)

    def dispatch(self, event: LogicalEvent) -> bool:
        """
        Apply one event. Returns False once the loop should end.
        """
        self._reap_worker()

        if event is LogicalEvent.SERVER_ON:
            self._server_on()
        elif event is LogicalEvent.SERVER_OFF:
            self._server_off()
        elif event is LogicalEvent.STOP_WATCHING:
            logger.info("Stop watching requested")
            self._server_off()
            return False

        return True

    def _reap_worker(self):
        """Join a worker whose server exited on its own."""
        worker = self._worker
        if worker is not None and not worker.is_alive():
            worker.join()
            self._worker = None
            self._set_state(SupervisorState.IDLE)

    def _server_on(self):
        if self.state is not SupervisorState.IDLE:
            logger.debug("Server already running, ignoring ServerOn")
            return

        self._set_state(SupervisorState.LAUNCHING)
        launched = threading.Event()
        worker = threading.Thread(
            target=self._run_server, args=(launched,), name="server-worker", daemon=True
        )
        self._worker = worker
        self._launched = launched
        worker.start()
        logger.info("Server worker started")

    def _run_server(self, launched: threading.Event):
        """Worker body: run the server, reporting failures instead of raising."""

        def on_launch():
            # RUNNING only once the server reads its console input
            with self._state_lock:
                if self._state is SupervisorState.LAUNCHING:
                    self._state = SupervisorState.RUNNING
            launched.set()

        try:
            self.runner.start(on_launch=on_launch)
        except WatchError as e:
            logger.error(f"Server run failed: {e}")
            self.last_failure = WorkerFailure(error=str(e), exception=e)
        except Exception as e:
            logger.exception(f"Unexpected error in server worker: {e}")
            self.last_failure = WorkerFailure(error=str(e), exception=e)
        finally:
            launched.set()

    def _await_launch(self):
        """Block until a launching server can receive stop, or failed to launch."""
        logger.info("Server is launching, waiting before stopping it")
        self._launched.wait()

        if self.state is SupervisorState.LAUNCHING:
            # Launch failed; the worker is already on its way out
            self._worker.join()
            self._worker = None
            self._set_state(SupervisorState.IDLE)
            return

        self._reap_worker()

    def _server_off(self):
        if self.state is SupervisorState.LAUNCHING:
            self._await_launch()

        if self.state is not SupervisorState.RUNNING:
            logger.debug("Server not running, ignoring ServerOff")
            return

        self._set_state(SupervisorState.STOPPING)
        stats = self.runner.stats()
        if stats:
            logger.info(f"Stopping server: {stats.to_dict()}")

        try:
            self.runner.stop()
        except WatchError as e:
            logger.error(f"Failed to stop server: {e}")
            self.last_failure = WorkerFailure(error=str(e), exception=e)
            # Still running means the next ServerOff or interrupt can retry
            self._set_state(SupervisorState.RUNNING)
            self._reap_worker()
            return

        self._await_worker()

    def _await_worker(self):
        worker = self._worker
        timeout = self.settings.stop_timeout
        worker.join(timeout)

        if worker.is_alive():
            logger.warning(f"Server did not exit within {timeout}s of stop")
            self.runner.kill()
            worker.join(KILL_GRACE_SECONDS)

        if worker.is_alive():
            logger.error("Server worker is still running after kill")
            self._set_state(SupervisorState.RUNNING)
            return

        self._worker = None
        self._set_state(SupervisorState.IDLE)
        logger.info("Server stopped")

    def run(self):
        """Consume events until StopWatching arrives."""
        if self.clock:
            event, when = self.clock.next_transition()
            logger.info(
                f"Watching server ({self.clock.window.describe()}); "
                f"next {event.name} at {when.strftime('%Y-%m-%d %H:%M')}"
            )
            self.clock.start()

        try:
            while True:
                event = self.mailbox.get()
                try:
                    keep_going = self.dispatch(event)
                except Exception as e:
                    logger.exception(f"Error handling {event.name}: {e}")
                    keep_going = True
                if not keep_going:
                    break
        finally:
            if self.clock:
                self.clock.stop()

            if self._worker is not None and self._worker.is_alive():
                logger.warning("Exiting while the server worker is still running")
            else:
                self.runner.close()

        logger.info("Supervisor stopped")
