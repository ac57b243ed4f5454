"""Per-request identifiers and component-scoped loggers.

Each request handled by a worker thread carries an id held in a context
variable. The id is echoed to clients as ``X-Request-ID`` and stamped on every
log record emitted while the request is being served.
"""

import contextvars
import logging
import uuid
from typing import Any, MutableMapping, Optional

ROOT_LOGGER_NAME = "kookymonster"
NO_REQUEST = "-"

_request_id: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar(
    "request_id", default=None
)


def new_request_id() -> str:
    return uuid.uuid4().hex


def current_request_id() -> Optional[str]:
    return _request_id.get()


def bind_request_id(request_id: str) -> None:
    """Attach request_id to everything logged from this thread until unbound."""
    _request_id.set(request_id)


def unbind_request_id() -> None:
    _request_id.set(None)


def component_logger(component: str) -> "ComponentLoggerAdapter":
    """Return an adapter for ``kookymonster.<component>``."""
    return ComponentLoggerAdapter(
        logging.getLogger(f"{ROOT_LOGGER_NAME}.{component}"), {}
    )


class ComponentLoggerAdapter(logging.LoggerAdapter):
    """Adds ``request_id`` and ``component`` to each record's extras."""

    def process(
        self, msg: str, kwargs: MutableMapping[str, Any]
    ) -> tuple[str, MutableMapping[str, Any]]:
        extra = dict(kwargs.get("extra") or {})
        extra["request_id"] = current_request_id() or NO_REQUEST

        name = self.logger.name
        if name.startswith(ROOT_LOGGER_NAME + "."):
            name = name[len(ROOT_LOGGER_NAME) + 1 :]
        extra["component"] = name

        kwargs["extra"] = extra
        return msg, kwargs

    def child(self, suffix: str) -> "ComponentLoggerAdapter":
        """Return an adapter for a descendant of this adapter's logger."""
        return ComponentLoggerAdapter(self.logger.getChild(suffix), {})
