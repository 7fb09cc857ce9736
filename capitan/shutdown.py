"""
Capitan - Shutdown Coordinator
═══════════════════════════════
Signal-driven escalation for attached runs:

  IDLE --1st SIGINT/SIGTERM--> STOP_REQUESTED --stop finished--> STOP_COMPLETED --> DONE
                                     |
                                2nd signal
                                     v
                               KILL_REQUESTED --kill finished--> DONE

The stop and the kill each run on their own daemon thread. An in-flight stop
is never cancelled; once the killing gate is set its completion no longer
counts. Whichever path finishes first with authority fires the completion
signal, which fires at most once per run.
"""

import signal
import logging
import threading
from enum import Enum
from typing import Callable, Dict, Optional, List, Iterable

logger = logging.getLogger(__name__)


class ShutdownState(str, Enum):
    IDLE = "idle"
    STOP_REQUESTED = "stop_requested"
    STOP_COMPLETED = "stop_completed"
    KILL_REQUESTED = "kill_requested"
    DONE = "done"


# ── Completion Signal ─────────────────────────────────────

class CompletionSignal:
    """One-shot rendezvous. fire() never blocks and succeeds exactly once."""

    def __init__(self):
        self._event = threading.Event()
        self._lock = threading.Lock()

    def fire(self) -> bool:
        """Returns True only for the call that actually fired."""
        with self._lock:
            if self._event.is_set():
                return False
            self._event.set()
            return True

    @property
    def fired(self) -> bool:
        return self._event.is_set()

    def wait(self, timeout: Optional[float] = None) -> bool:
        if timeout is not None:
            return self._event.wait(timeout)
        # short waits keep the main thread responsive to signal handlers
        while not self._event.wait(0.5):
            pass
        return True


# ── Coordinator ───────────────────────────────────────────

class ShutdownCoordinator:
    """
    Owns the escalation state for one attached up/start invocation.

    stop_all / kill_all tear down the full participating container set;
    they must treat already-removed containers as absent, not as errors.
    """

    def __init__(
        self,
        stop_all: Callable[[], None],
        kill_all: Callable[[], None],
        signals: Iterable[int] = (signal.SIGINT, signal.SIGTERM),
    ):
        self._stop_all = stop_all
        self._kill_all = kill_all
        self._signals = tuple(signals)
        self._state = ShutdownState.IDLE
        self._killing = False
        self._lock = threading.RLock()
        self._completion = CompletionSignal()
        self._previous: Dict[int, object] = {}
        self._threads: List[threading.Thread] = []

    # ── Read-only view ────────────────────────────────────

    @property
    def state(self) -> ShutdownState:
        return self._state

    @property
    def killing(self) -> bool:
        return self._killing

    @property
    def completion(self) -> CompletionSignal:
        return self._completion

    # ── Signal wiring ─────────────────────────────────────

    def install(self):
        """Route SIGINT/SIGTERM to notify_signal(). Main thread only."""
        for sig in self._signals:
            self._previous[sig] = signal.signal(sig, self._handle)
        logger.debug(f"[Shutdown] Listening for signals {list(self._signals)}")

    def uninstall(self):
        for sig, handler in self._previous.items():
            signal.signal(sig, handler)
        self._previous.clear()

    def _handle(self, signum, _frame):
        self.notify_signal(signum)

    # ── Transitions ───────────────────────────────────────

    def request_stop(self) -> ShutdownState:
        """Same as receiving a termination signal."""
        return self.notify_signal()

    def notify_signal(self, signum: Optional[int] = None) -> ShutdownState:
        with self._lock:
            if self._state == ShutdownState.IDLE:
                self._state = ShutdownState.STOP_REQUESTED
                logger.info("[Shutdown] Stopping containers (repeat to kill)")
                self._launch("stop", self._run_stop)
            elif self._state == ShutdownState.STOP_REQUESTED:
                self._state = ShutdownState.KILL_REQUESTED
                self._killing = True
                logger.info("[Shutdown] Killing containers")
                self._launch("kill", self._run_kill)
            else:
                logger.info(f"[Shutdown] Ignoring signal {signum} in state {self._state.value}")
            return self._state

    def _launch(self, name: str, target: Callable[[], None]):
        thread = threading.Thread(target=target, name=f"shutdown-{name}", daemon=True)
        self._threads.append(thread)
        thread.start()

    def _run_stop(self):
        try:
            self._stop_all()
        except Exception as e:
            logger.error(f"[Shutdown] Stop failed: {e}")
        with self._lock:
            if self._killing:
                logger.debug("[Shutdown] Stop finished after kill was requested")
                return
            self._state = ShutdownState.STOP_COMPLETED
        self._complete()

    def _run_kill(self):
        try:
            self._kill_all()
        except Exception as e:
            logger.error(f"[Shutdown] Kill failed: {e}")
        self._complete()

    def _complete(self):
        if self._completion.fire():
            with self._lock:
                self._state = ShutdownState.DONE
            logger.info("[Shutdown] Done cleaning up")

    def join(self, timeout: Optional[float] = None):
        """Wait for the stop/kill threads started so far."""
        for thread in list(self._threads):
            thread.join(timeout)
