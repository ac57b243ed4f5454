"""Handler serving the configured answer text."""

import logging
from typing import Callable

from kookymonster.bootstrap.config import SECURITY_HEADERS
from kookymonster.domain.http_types import HttpRequest, HttpResponse
from kookymonster.domain.request_context import component_logger
from kookymonster.domain.response_builders import answer_response

ANSWER_LOGGER = component_logger("handlers.answer")

Handler = Callable[[HttpRequest], HttpResponse]


def answer_handler(answer_text: str) -> Handler:
    """Return a stateless handler that replies with the answer text."""

    def handle_answer(request: HttpRequest) -> HttpResponse:
        if ANSWER_LOGGER.logger.isEnabledFor(logging.DEBUG):
            ANSWER_LOGGER.debug(
                "Answer served",
                extra={"event": "answer_served", "route": request.path},
            )
        return answer_response(answer_text, request, SECURITY_HEADERS)

    return handle_answer
