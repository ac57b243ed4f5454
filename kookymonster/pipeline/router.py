"""Request routing logic."""

import logging

from kookymonster.domain.http_types import HttpRequest, HttpResponse
from kookymonster.domain.request_context import component_logger
from kookymonster.handlers.answer import Handler

ROUTER_LOGGER = component_logger("pipeline.router")


class Router:
    """Exact-path routes plus a catch-all registered under "/"."""

    def __init__(self) -> None:
        self._routes: dict[str, Handler] = {}

    def handle(self, path: str, handler: Handler) -> None:
        """Register handler for path; "/" matches any path without its own route."""
        self._routes[path] = handler

    def __call__(self, request: HttpRequest) -> HttpResponse:
        return self.route_request(request)

    def route_request(self, request: HttpRequest) -> HttpResponse:
        """Route the request to the matching handler and return its response."""
        route = request.path if request.path in self._routes else "/"
        handler = self._routes.get(route)
        if handler is None:
            raise LookupError(f"No handler registered for {request.path!r}")
        if ROUTER_LOGGER.logger.isEnabledFor(logging.DEBUG):
            ROUTER_LOGGER.debug(
                "Route matched",
                extra={
                    "event": "route_matched",
                    "route": route,
                    "method": request.method,
                },
            )
        return handler(request)


def build_router(answer: Handler) -> Router:
    """Wire the answer handler onto "/answer" and the "/" catch-all."""
    router = Router()
    router.handle("/answer", answer)
    router.handle("/", answer)
    return router
