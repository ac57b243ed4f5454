"""Interrupt signal registration for graceful shutdown."""

import signal
from types import FrameType
from typing import Iterable, Optional

from kookymonster.lifecycle.coordinator import LifecycleCoordinator

SHUTDOWN_SIGNALS = (signal.SIGINT, signal.SIGTERM)


def install_shutdown_handlers(
    coordinator: LifecycleCoordinator,
    signals: Iterable[signal.Signals] = SHUTDOWN_SIGNALS,
) -> dict[signal.Signals, object]:
    """Route interrupts to a single graceful shutdown of the coordinator.

    Must be called from the main thread. Returns the previous handlers so
    callers can restore them.
    """

    def shutdown_handler(signum: int, _frame: Optional[FrameType]) -> None:
        # Runs between bytecodes on the main thread: no locks, no logging.
        coordinator.request_shutdown(signal.Signals(signum).name)

    previous = {}
    for signum in signals:
        previous[signum] = signal.signal(signum, shutdown_handler)
    return previous


def restore_handlers(previous: dict[signal.Signals, object]) -> None:
    """Reinstall handlers returned by install_shutdown_handlers."""
    for signum, handler in previous.items():
        signal.signal(signum, handler)
