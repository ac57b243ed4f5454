"""Reading HTTP/1.x requests from, and writing responses to, client sockets."""

import socket
import time
import urllib.parse
from email.utils import formatdate
from typing import Callable, Optional, Tuple

from kookymonster.bootstrap.config import HEADER_DELIMITER, MAX_BODY_BYTES
from kookymonster.domain.http_types import HttpRequest, HttpResponse
from kookymonster.domain.request_context import (
    bind_request_id,
    component_logger,
    current_request_id,
)

IO_LOGGER = component_logger("io")

SUPPORTED_VERSIONS = {"HTTP/1.0", "HTTP/1.1"}
MAX_HEADER_BYTES = 64 * 1024
RECV_CHUNK_BYTES = 4096
REQUEST_ID_HEADER = "X-Request-ID"


class RequestEntityTooLarge(Exception):
    """The declared body is larger than MAX_BODY_BYTES."""


def recv_with_deadline(client_socket: socket.socket, deadline_ns: int) -> bytes:
    """recv() one chunk, giving up with TimeoutError at deadline_ns."""
    timeout = (deadline_ns - time.monotonic_ns()) / 1_000_000_000
    if timeout <= 0:
        raise TimeoutError("Request deadline exceeded")
    client_socket.settimeout(timeout)
    return client_socket.recv(RECV_CHUNK_BYTES)


def _fill(
    client_socket: socket.socket,
    data: bytes,
    deadline_ns: int,
    complete: Callable[[bytes], bool],
    limit: Optional[int] = None,
) -> Optional[bytes]:
    """Append received chunks to data until complete(data); None on EOF."""
    while not complete(data):
        if limit is not None and len(data) > limit:
            raise ValueError("Header block too large")
        chunk = recv_with_deadline(client_socket, deadline_ns)
        if not chunk:
            return None
        data += chunk
    return data


def parse_headers(lines: list[str]) -> dict[str, str]:
    """Map header lines to a dict keyed by lowercased name."""
    headers: dict[str, str] = {}
    for line in filter(None, lines):
        name, colon, value = line.partition(":")
        name = name.strip()
        if not colon or not name:
            raise ValueError(f"Malformed header line: {line!r}")
        headers[name.lower()] = value.strip()
    return headers


def parse_request_line(request_line: str) -> Tuple[str, str, str]:
    """Return (method, path, version); the path loses its query and escapes."""
    parts = request_line.split(" ", 2)
    if len(parts) != 3:
        raise ValueError("Invalid request line")
    method, target, version = parts
    if not (method and target) or version not in SUPPORTED_VERSIONS:
        raise ValueError("Invalid request line")
    path = urllib.parse.unquote(urllib.parse.urlsplit(target).path)
    return method, path or "/", version


def determine_content_length(headers: dict[str, str]) -> int:
    """Body length the client declared; 0 when it declared none."""
    if "transfer-encoding" in headers:
        raise ValueError("Chunked request bodies are not supported")
    declared = headers.get("content-length", "0")
    if not declared.isdigit():
        raise ValueError(f"Invalid Content-Length: {declared!r}")
    length = int(declared)
    if length > MAX_BODY_BYTES:
        raise RequestEntityTooLarge
    return length


def receive_request(
    client_socket: socket.socket, buffer: bytes, deadline_ns: int
) -> Tuple[Optional[HttpRequest], bytes]:
    """Read one request, starting from whatever is already in buffer.

    Returns the request and any bytes that follow it on the wire, or
    (None, b"") when the peer closes mid-request. Raises TimeoutError once
    deadline_ns passes, ValueError for malformed input, and
    RequestEntityTooLarge for oversized bodies.
    """
    data = _fill(
        client_socket,
        buffer,
        deadline_ns,
        lambda received: HEADER_DELIMITER in received,
        limit=MAX_HEADER_BYTES,
    )
    if data is None:
        return None, b""

    head, rest = data.split(HEADER_DELIMITER, 1)
    request_line, *header_lines = head.decode("iso-8859-1").split("\r\n")
    method, path, version = parse_request_line(request_line)
    headers = parse_headers(header_lines)

    client_request_id = headers.get(REQUEST_ID_HEADER.lower())
    if client_request_id:
        bind_request_id(client_request_id)

    length = determine_content_length(headers)
    rest = _fill(
        client_socket, rest, deadline_ns, lambda received: len(received) >= length
    )
    if rest is None:
        return None, b""

    IO_LOGGER.debug(
        "Parsed request",
        extra={"event": "request_parsed", "method": method, "route": path},
    )
    return HttpRequest(method, path, headers, rest[:length], version), rest[length:]


def _encode_head(status_line: str, headers: dict[str, str]) -> bytes:
    lines = [status_line, *(f"{name}: {value}" for name, value in headers.items())]
    return "\r\n".join(lines).encode("iso-8859-1") + HEADER_DELIMITER


def send_response(
    client_socket: socket.socket, response: HttpResponse, include_body: bool = True
) -> None:
    """Write response with Date, Content-Length and X-Request-ID added.

    With include_body=False (HEAD) only the head goes out; Content-Length
    still describes the body that a GET would have carried.
    """
    headers = {**response.headers, "Date": formatdate(usegmt=True)}
    request_id = current_request_id()
    if request_id:
        headers[REQUEST_ID_HEADER] = request_id
    headers["Content-Length"] = str(len(response.body))
    if response.close_connection:
        headers["Connection"] = "close"

    payload = _encode_head(response.status_line, headers)
    if include_body:
        payload += response.body
    client_socket.sendall(payload)
    IO_LOGGER.debug(
        "Sent response",
        extra={"event": "response_sent", "status": response.status_line},
    )
