"""Main connection acceptance loop."""

import errno
import socket
import threading
import time

from kookymonster.bootstrap.config import SECURITY_HEADERS
from kookymonster.domain.response_builders import draining_response
from kookymonster.pipeline.io import send_response
from kookymonster.transport.context import WorkerContext
from kookymonster.transport.worker import handle_client

# Resource exhaustion and aborted handshakes; retried after a short pause.
TEMPORARY_ACCEPT_ERRNOS = frozenset(
    {
        errno.ECONNABORTED,
        errno.EMFILE,
        errno.ENFILE,
        errno.ENOBUFS,
        errno.ENOMEM,
        errno.EINTR,
    }
)
ACCEPT_RETRY_SECONDS = 0.05


class ListenerError(Exception):
    """Raised when the listener fails for a reason other than shutdown."""


def _reject_while_draining(client_socket: socket.socket) -> None:
    try:
        send_response(client_socket, draining_response(SECURITY_HEADERS))
    except OSError:
        pass
    finally:
        client_socket.close()


def _handle_accepted_client(
    client_socket: socket.socket,
    client_address: tuple[str, int],
    context: WorkerContext,
) -> None:
    """Hand a newly accepted connection to its own worker thread."""
    context.logger.debug(
        "Client connection accepted",
        extra={
            "event": "client_accepted",
            "client": f"{client_address[0]}:{client_address[1]}",
        },
    )
    thread = threading.Thread(
        target=handle_client,
        args=(client_socket, client_address, context),
        name=f"worker-{client_address[0]}:{client_address[1]}",
        daemon=True,
    )
    # Registered before start so a drain that begins right after accept sees it.
    context.lifecycle.register_worker(thread)
    thread.start()


def serve_connections(server_socket: socket.socket, context: WorkerContext) -> None:
    """Accept connections until draining begins, then close the listener.

    Raises ListenerError when accept fails permanently.
    """
    lifecycle = context.lifecycle
    try:
        while not lifecycle.is_draining():
            try:
                client_socket, client_address = server_socket.accept()
            except socket.timeout:
                continue
            except OSError as error:
                if lifecycle.is_draining():
                    break
                if error.errno in TEMPORARY_ACCEPT_ERRNOS:
                    context.logger.warning(
                        "Temporary accept failure, retrying",
                        extra={"event": "accept_retry", "error_type": type(error).__name__},
                    )
                    time.sleep(ACCEPT_RETRY_SECONDS)
                    continue
                raise ListenerError(str(error)) from error

            if lifecycle.is_draining():
                _reject_while_draining(client_socket)
                continue

            _handle_accepted_client(client_socket, client_address[:2], context)
    finally:
        server_socket.close()
        context.logger.info(
            "Listener closed",
            extra={"event": "listener_closed"},
        )
