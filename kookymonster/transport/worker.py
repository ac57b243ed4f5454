"""Worker thread logic for handling individual client connections."""

import logging
import socket
import threading
import time
from dataclasses import dataclass
from typing import Optional

from kookymonster.bootstrap.config import MAX_BODY_BYTES, SECURITY_HEADERS
from kookymonster.domain.http_types import HttpRequest, HttpResponse
from kookymonster.domain.request_context import (
    ComponentLoggerAdapter,
    bind_request_id,
    new_request_id,
    unbind_request_id,
)
from kookymonster.domain.response_builders import (
    bad_request_response,
    entity_too_large_response,
)
from kookymonster.lifecycle.state import ServerLifecycle
from kookymonster.pipeline.io import (
    RequestEntityTooLarge,
    receive_request,
    send_response,
)
from kookymonster.transport.context import WorkerContext

IDLE_POLL_SECONDS = 0.1


def _deadline_ns(seconds: float) -> int:
    return time.monotonic_ns() + int(seconds * 1_000_000_000)


def _await_request_start(
    client_socket: socket.socket, deadline_ns: int, lifecycle: ServerLifecycle
) -> Optional[bytes]:
    """Wait for the first bytes of the next request.

    Returns None when the peer closes, the deadline passes, or draining has
    begun while the connection sits idle.
    """
    while True:
        remaining_ns = deadline_ns - time.monotonic_ns()
        if remaining_ns <= 0:
            return None
        client_socket.settimeout(min(IDLE_POLL_SECONDS, remaining_ns / 1_000_000_000))
        try:
            chunk = client_socket.recv(4096)
        except socket.timeout:
            if lifecycle.is_draining():
                return None
            continue
        return chunk or None


def _send_error(
    client_socket: socket.socket,
    response: HttpResponse,
    logger: ComponentLoggerAdapter,
) -> None:
    try:
        send_response(client_socket, response)
    except OSError as error:
        logger.debug(
            "Failed to send error response",
            extra={"event": "error_response_failed", "error_type": type(error).__name__},
        )


def _read_request_with_validation(
    client_socket: socket.socket,
    buffer: bytes,
    deadline_ns: int,
    client_addr_str: str,
    logger: ComponentLoggerAdapter,
) -> tuple[Optional[HttpRequest], bytes]:
    """Read a request, answering 413/400 itself when the input is unacceptable."""
    try:
        return receive_request(client_socket, buffer, deadline_ns)
    except RequestEntityTooLarge:
        logger.warning(
            "Request body size exceeded limit",
            extra={
                "event": "body_size_exceeded",
                "client": client_addr_str,
                "limit": MAX_BODY_BYTES,
            },
        )
        _send_error(client_socket, entity_too_large_response(SECURITY_HEADERS), logger)
    except ValueError:
        logger.warning(
            "Malformed request received",
            extra={"event": "malformed_request", "client": client_addr_str},
        )
        _send_error(client_socket, bad_request_response(SECURITY_HEADERS), logger)
    return None, b""


@dataclass
class _WorkerResources:
    thread: threading.Thread
    client_socket: socket.socket
    client_addr_str: str


def _cleanup_worker(
    context: WorkerContext,
    resources: _WorkerResources,
) -> None:
    try:
        resources.client_socket.shutdown(socket.SHUT_WR)
    except OSError:
        pass
    resources.client_socket.close()
    context.lifecycle.cleanup_worker(resources.thread)

    context.logger.debug(
        "Socket closed",
        extra={"event": "socket_closed", "client": resources.client_addr_str},
    )
    unbind_request_id()


def handle_client(
    client_socket: socket.socket,
    client_address: tuple[str, int],
    context: WorkerContext,
) -> None:
    """Serve requests on a client socket until it closes, idles out, or drains."""
    lifecycle = context.lifecycle
    timeouts = context.timeouts
    logger = context.logger
    client_addr_str = f"{client_address[0]}:{client_address[1]}"
    resources = _WorkerResources(
        threading.current_thread(), client_socket, client_addr_str
    )

    buffer = b""
    # The first request must be read in full within the read timeout of accept.
    wait_deadline_ns = _deadline_ns(timeouts.read)
    read_deadline_ns: Optional[int] = wait_deadline_ns

    try:
        while True:
            bind_request_id(new_request_id())

            if not buffer:
                chunk = _await_request_start(client_socket, wait_deadline_ns, lifecycle)
                if chunk is None:
                    if logger.logger.isEnabledFor(logging.DEBUG):
                        logger.debug(
                            "Closing idle connection",
                            extra={
                                "event": "idle_closed",
                                "client": client_addr_str,
                                "state": lifecycle.state.value,
                            },
                        )
                    break
                buffer = chunk
            if read_deadline_ns is None:
                read_deadline_ns = _deadline_ns(timeouts.read)

            request, buffer = _read_request_with_validation(
                client_socket, buffer, read_deadline_ns, client_addr_str, logger
            )
            if request is None:
                break

            response = context.handler(request)
            if lifecycle.is_draining():
                response.close_connection = True

            client_socket.settimeout(timeouts.write)
            send_response(
                client_socket, response, include_body=request.method != "HEAD"
            )

            if logger.logger.isEnabledFor(logging.DEBUG):
                logger.debug(
                    "Request processing complete",
                    extra={
                        "event": "request_complete",
                        "client": client_addr_str,
                        "method": request.method,
                        "route": request.path,
                        "status": response.status_line,
                    },
                )
            unbind_request_id()

            if response.close_connection:
                break
            wait_deadline_ns = _deadline_ns(timeouts.idle)
            read_deadline_ns = None
    except TimeoutError:
        logger.info(
            "Connection timed out",
            extra={"event": "connection_timeout", "client": client_addr_str},
        )
    except (ConnectionError, OSError) as error:
        logger.warning(
            "Error handling client connection",
            extra={
                "event": "connection_error",
                "client": client_addr_str,
                "error_type": type(error).__name__,
            },
        )
    except Exception as error:  # pylint: disable=broad-except
        logger.error(
            "Unexpected error in worker",
            extra={
                "event": "worker_error",
                "client": client_addr_str,
                "error_type": type(error).__name__,
                "error": str(error),
            },
            exc_info=True,
        )
    finally:
        _cleanup_worker(context, resources)
