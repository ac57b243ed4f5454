"""Start, serve, and gracefully stop the answer server.

``LifecycleCoordinator.run`` binds the listener and serves on the calling
thread. A background thread waits for ``request_shutdown``; when it fires the
thread drains the server (keep-alive off, listener closed, in-flight requests
given up to the grace period) and reports the outcome through the lifecycle's
completion event, which ``run`` waits on before returning.
"""

import threading
import time
from typing import Optional

from kookymonster.bootstrap.config import ServerTimeouts
from kookymonster.bootstrap.socket_factory import create_listener
from kookymonster.domain.request_context import ComponentLoggerAdapter, component_logger
from kookymonster.handlers.answer import Handler
from kookymonster.lifecycle.state import LifecycleState, ServerLifecycle
from kookymonster.transport.accept_loop import ListenerError, serve_connections
from kookymonster.transport.context import WorkerContext


class LifecycleCoordinator:
    """Owns the listener and the one-time graceful shutdown of the server."""

    def __init__(
        self,
        listen_addr: str,
        handler: Handler,
        timeouts: Optional[ServerTimeouts] = None,
        lifecycle: Optional[ServerLifecycle] = None,
        logger: Optional[ComponentLoggerAdapter] = None,
    ) -> None:
        self.listen_addr = listen_addr
        self.timeouts = timeouts or ServerTimeouts()
        self.lifecycle = lifecycle or ServerLifecycle()
        base_logger = logger or component_logger("server")
        self._logger = base_logger.child("lifecycle")
        self._context = WorkerContext(
            handler=handler,
            lifecycle=self.lifecycle,
            timeouts=self.timeouts,
            logger=base_logger.child("transport"),
        )
        self._shutdown_claim = threading.Lock()
        self._shutdown_signal: Optional[str] = None
        self._shutdown_requested = threading.Event()
        self._listener_closed = threading.Event()
        self._ready = threading.Event()
        self._shutdown_thread: Optional[threading.Thread] = None
        self.bound_address: Optional[tuple[str, int]] = None

    def request_shutdown(self, signal_name: Optional[str] = None) -> bool:
        """Ask for a graceful shutdown. Only the first call has any effect.

        Never blocks and never logs, so signal handlers may call it even while
        an earlier handler on the same thread is still inside it.
        """
        if not self._shutdown_claim.acquire(blocking=False):
            return False
        # The claim is never released; a coordinator shuts down at most once.
        self._shutdown_signal = signal_name
        self._shutdown_requested.set()
        return True

    def wait_until_ready(self, timeout: Optional[float] = None) -> bool:
        """Block until the listener is bound and accepting."""
        return self._ready.wait(timeout)

    def run(self) -> LifecycleState:
        """Bind, serve until shut down, and return the terminal state."""
        try:
            listener = create_listener(self.listen_addr)
        except (OSError, ValueError) as error:
            self._logger.critical(
                "Could not listen on %s: %s",
                self.listen_addr,
                error,
                extra={"event": "listen_failed", "listen_addr": self.listen_addr},
            )
            self.lifecycle.mark_fatal()
            return self.lifecycle.state

        self.bound_address = listener.getsockname()[:2]
        self.lifecycle.mark_listening()
        self._shutdown_thread = threading.Thread(
            target=self._await_shutdown, name="shutdown", daemon=True
        )
        self._shutdown_thread.start()

        self._logger.info(
            "Server is ready to handle requests at %s",
            self.listen_addr,
            extra={
                "event": "server_ready",
                "host": self.bound_address[0],
                "port": self.bound_address[1],
            },
        )
        self._ready.set()

        try:
            serve_connections(listener, self._context)
        except ListenerError as error:
            self._logger.critical(
                "Could not listen on %s: %s",
                self.listen_addr,
                error,
                extra={"event": "listen_failed", "listen_addr": self.listen_addr},
            )
            self.lifecycle.mark_fatal()
            return self.lifecycle.state
        finally:
            self._listener_closed.set()

        self.lifecycle.wait_until_finished()
        return self.lifecycle.state

    def _await_shutdown(self) -> None:
        self._shutdown_requested.wait()
        if self._shutdown_signal is not None:
            self._logger.info(
                "Received shutdown signal",
                extra={"event": "signal_received", "signal": self._shutdown_signal},
            )
        if self.lifecycle.is_finished():
            return
        self._shutdown()

    def _shutdown(self) -> None:
        grace = self.timeouts.shutdown_grace
        deadline = time.monotonic() + grace
        self._logger.info(
            "Server is shutting down...",
            extra={"event": "shutdown_started", "grace_seconds": grace},
        )
        if not self.lifecycle.begin_draining():
            return

        self._listener_closed.wait(max(0.0, deadline - time.monotonic()))
        remaining = max(0.0, deadline - time.monotonic())
        if self.lifecycle.wait_for_workers(remaining):
            self.lifecycle.mark_stopped()
            return

        active = self.lifecycle.active_worker_count()
        self._logger.error(
            "Could not gracefully shutdown the server: %d connection(s) still active",
            active,
            extra={"event": "shutdown_failed", "active_workers": active},
        )
        self.lifecycle.mark_fatal()


def serve_forever(coordinator: LifecycleCoordinator) -> int:
    """Run the coordinator and map its terminal state to a process exit code."""
    state = coordinator.run()
    return 0 if state is LifecycleState.STOPPED else 1

