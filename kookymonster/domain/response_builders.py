"""Pure HTTP response builders."""

from kookymonster.domain.http_types import HttpRequest, HttpResponse, should_close

ANSWER_TEMPLATE = "The answer is: {}\n"
TEXT_CONTENT_TYPE = "text/plain; charset=utf-8"


def answer_response(
    answer_text: str, request: HttpRequest, security_headers: dict[str, str]
) -> HttpResponse:
    """Return the 200 text/plain answer honoring the caller's connection preference."""
    headers = {"Content-Type": TEXT_CONTENT_TYPE, **security_headers}
    return HttpResponse(
        "HTTP/1.1 200 OK",
        headers,
        ANSWER_TEMPLATE.format(answer_text).encode("utf-8"),
        should_close(request),
    )


def bad_request_response(security_headers: dict[str, str]) -> HttpResponse:
    """Produce a 400 response that always closes the connection."""
    headers = {"Content-Type": TEXT_CONTENT_TYPE, **security_headers}
    return HttpResponse("HTTP/1.1 400 Bad Request", headers, b"400 Bad Request", True)


def entity_too_large_response(security_headers: dict[str, str]) -> HttpResponse:
    """Produce a 413 response that always closes the connection."""
    return HttpResponse(
        "HTTP/1.1 413 Payload Too Large", security_headers.copy(), b"", True
    )


def draining_response(security_headers: dict[str, str]) -> HttpResponse:
    """Produce a 503 response indicating the server is draining."""
    return HttpResponse(
        "HTTP/1.1 503 Service Unavailable",
        security_headers.copy(),
        b"draining",
        True,
    )
