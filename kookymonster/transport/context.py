"""Context object shared across worker threads."""

from dataclasses import dataclass, field

from kookymonster.bootstrap.config import ServerTimeouts
from kookymonster.domain.request_context import ComponentLoggerAdapter, component_logger
from kookymonster.handlers.answer import Handler
from kookymonster.lifecycle.state import ServerLifecycle


@dataclass
class WorkerContext:
    """Dependencies shared across handler threads."""

    handler: Handler
    lifecycle: ServerLifecycle
    timeouts: ServerTimeouts = field(default_factory=ServerTimeouts)
    logger: ComponentLoggerAdapter = field(
        default_factory=lambda: component_logger("transport")
    )
