"""Lifecycle state machine and worker-thread bookkeeping for one server run."""

import enum
import threading
import time
from typing import Optional

from kookymonster.domain.request_context import component_logger

LIFECYCLE_LOGGER = component_logger("lifecycle")


class LifecycleState(enum.Enum):
    """Phases a server moves through between bind and process exit."""

    IDLE = "idle"
    LISTENING = "listening"
    DRAINING = "draining"
    STOPPED = "stopped"
    FATAL_ERROR = "fatal_error"


TERMINAL_STATES = frozenset({LifecycleState.STOPPED, LifecycleState.FATAL_ERROR})

_TRANSITIONS = {
    LifecycleState.IDLE: {LifecycleState.LISTENING, LifecycleState.FATAL_ERROR},
    LifecycleState.LISTENING: {LifecycleState.DRAINING, LifecycleState.FATAL_ERROR},
    LifecycleState.DRAINING: {LifecycleState.STOPPED, LifecycleState.FATAL_ERROR},
    LifecycleState.STOPPED: set(),
    LifecycleState.FATAL_ERROR: set(),
}


class ServerLifecycle:
    """Tracks lifecycle state, worker threads, and shutdown completion."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._state = LifecycleState.IDLE
        self._draining_event = threading.Event()
        self._finished_event = threading.Event()
        self._workers: set[threading.Thread] = set()

    @property
    def state(self) -> LifecycleState:
        """Return the current lifecycle state."""
        with self._lock:
            return self._state

    def _transition(self, target: LifecycleState) -> bool:
        with self._lock:
            current = self._state
            if target not in _TRANSITIONS[current]:
                return False
            self._state = target
        LIFECYCLE_LOGGER.debug(
            "Lifecycle transition",
            extra={
                "event": "lifecycle_transition",
                "state": f"{current.value}->{target.value}",
            },
        )
        if target is LifecycleState.DRAINING:
            self._draining_event.set()
        if target in TERMINAL_STATES:
            self._draining_event.set()
            self._finished_event.set()
        return True

    def mark_listening(self) -> bool:
        """Record a successful bind. False if shutdown already began."""
        return self._transition(LifecycleState.LISTENING)

    def begin_draining(self) -> bool:
        """Stop accepting connections and disable keep-alive.

        Returns True only for the call that actually started draining.
        """
        return self._transition(LifecycleState.DRAINING)

    def mark_stopped(self) -> bool:
        """Record that every in-flight request finished."""
        return self._transition(LifecycleState.STOPPED)

    def mark_fatal(self) -> bool:
        """Record a listen failure or an exceeded drain timeout."""
        return self._transition(LifecycleState.FATAL_ERROR)

    def is_draining(self) -> bool:
        """True once the accept loop must exit and responses must close."""
        return self._draining_event.is_set()

    def is_finished(self) -> bool:
        return self._finished_event.is_set()

    def wait_until_finished(self, timeout: Optional[float] = None) -> bool:
        """Block until the server reaches STOPPED or FATAL_ERROR."""
        return self._finished_event.wait(timeout)

    # Worker threads are registered by the accept loop before they start, so
    # a thread that is tracked but not yet alive still counts as in flight.

    def register_worker(self, thread: threading.Thread) -> None:
        with self._lock:
            self._workers.add(thread)

    def cleanup_worker(self, thread: threading.Thread) -> None:
        """Forget thread; unknown threads are ignored."""
        with self._lock:
            self._workers.discard(thread)

    def has_worker(self, thread: threading.Thread) -> bool:
        with self._lock:
            return thread in self._workers

    def active_worker_count(self) -> int:
        with self._lock:
            return len(self._workers)

    def wait_for_workers(self, timeout: float) -> bool:
        """Join tracked workers; False if any is still running after timeout."""
        give_up_at = time.monotonic() + timeout
        while True:
            with self._lock:
                pending = [
                    thread
                    for thread in self._workers
                    if thread.is_alive() or thread.ident is None
                ]
            if not pending:
                return True
            budget = give_up_at - time.monotonic()
            if budget <= 0:
                LIFECYCLE_LOGGER.warning(
                    "Shutdown timeout exceeded",
                    extra={"event": "shutdown_timeout", "active_workers": len(pending)},
                )
                return False
            if pending[0].ident is None:
                time.sleep(min(0.01, budget))
            else:
                pending[0].join(min(0.1, budget))
