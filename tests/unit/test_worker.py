"""Unit tests for per-connection request handling."""

import socket
import threading
import time

import pytest

from kookymonster.bootstrap.config import MAX_BODY_BYTES, ServerTimeouts
from kookymonster.handlers.answer import answer_handler
from kookymonster.lifecycle.state import ServerLifecycle
from kookymonster.pipeline.router import build_router
from kookymonster.transport.context import WorkerContext
from kookymonster.transport.worker import handle_client
from tests.utils.http import read_http_response

CLIENT_ADDRESS = ("127.0.0.1", 40000)
FAST_TIMEOUTS = ServerTimeouts(read=1.0, write=1.0, idle=1.0, shutdown_grace=1.0)


@pytest.fixture(name="lifecycle")
def fixture_lifecycle():
    """Lifecycle already listening, as it would be when workers run."""
    lifecycle = ServerLifecycle()
    lifecycle.mark_listening()
    return lifecycle


@pytest.fixture(name="connection")
def fixture_connection(lifecycle):
    """Run handle_client on one end of a socket pair and yield the other end."""
    server_end, client_end = socket.socketpair()
    client_end.settimeout(5.0)
    context = WorkerContext(
        handler=build_router(answer_handler("42")),
        lifecycle=lifecycle,
        timeouts=FAST_TIMEOUTS,
    )
    thread = threading.Thread(
        target=handle_client, args=(server_end, CLIENT_ADDRESS, context), daemon=True
    )
    lifecycle.register_worker(thread)
    thread.start()
    yield client_end, thread
    client_end.close()
    thread.join(timeout=5.0)


def test_serves_multiple_requests_on_one_connection(connection):
    """Keep-alive connections are reused until the client closes."""
    client, thread = connection
    for path in (b"/", b"/answer"):
        client.sendall(b"GET " + path + b" HTTP/1.1\r\nHost: x\r\n\r\n")
        response = read_http_response(client)
        assert response.body == b"The answer is: 42\n"
    client.shutdown(socket.SHUT_WR)
    thread.join(timeout=2.0)
    assert not thread.is_alive()


def test_connection_close_header_ends_worker(connection, lifecycle):
    """Connection: close is honored and the worker deregisters."""
    client, thread = connection
    client.sendall(b"GET / HTTP/1.1\r\nConnection: close\r\n\r\n")
    response = read_http_response(client)
    assert response.headers["connection"] == "close"
    thread.join(timeout=2.0)
    assert not thread.is_alive()
    assert lifecycle.active_worker_count() == 0


def test_draining_disables_keep_alive(connection, lifecycle):
    """A response written while draining closes the connection."""
    client, thread = connection
    lifecycle.begin_draining()
    client.sendall(b"GET / HTTP/1.1\r\n\r\n")
    response = read_http_response(client)
    assert response.status_line == "HTTP/1.1 200 OK"
    assert response.headers["connection"] == "close"
    thread.join(timeout=2.0)
    assert not thread.is_alive()


def test_idle_connection_closes_when_draining(connection, lifecycle):
    """An idle keep-alive connection is dropped once draining begins."""
    client, thread = connection
    client.sendall(b"GET / HTTP/1.1\r\n\r\n")
    read_http_response(client)

    start = time.monotonic()
    lifecycle.begin_draining()
    thread.join(timeout=2.0)
    assert not thread.is_alive()
    assert time.monotonic() - start < 0.9
    assert client.recv(4096) == b""


def test_idle_timeout_closes_connection(connection):
    """Without a next request the connection closes after the idle timeout."""
    client, thread = connection
    client.sendall(b"GET / HTTP/1.1\r\n\r\n")
    read_http_response(client)
    thread.join(timeout=3.0)
    assert not thread.is_alive()
    assert client.recv(4096) == b""


def test_read_timeout_closes_slow_request(connection):
    """A request that never completes is abandoned after the read timeout."""
    client, thread = connection
    client.sendall(b"GET / HTTP/1.1\r\n")
    thread.join(timeout=3.0)
    assert not thread.is_alive()
    assert client.recv(4096) == b""


def test_malformed_request_gets_400(connection):
    """Garbage input is answered with 400 and the connection closed."""
    client, thread = connection
    client.sendall(b"BROKEN\r\n\r\n")
    response = read_http_response(client)
    assert response.status_line == "HTTP/1.1 400 Bad Request"
    thread.join(timeout=2.0)
    assert not thread.is_alive()


def test_oversized_body_gets_413(connection):
    """Declared bodies over the limit are refused without being read."""
    client, _thread = connection
    client.sendall(
        f"POST / HTTP/1.1\r\nContent-Length: {MAX_BODY_BYTES + 1}\r\n\r\n".encode()
    )
    response = read_http_response(client)
    assert response.status_line == "HTTP/1.1 413 Payload Too Large"


def test_head_request_has_no_body(connection):
    """HEAD gets the answer's headers only."""
    client, thread = connection
    client.sendall(b"HEAD /answer HTTP/1.1\r\nConnection: close\r\n\r\n")
    thread.join(timeout=2.0)
    raw = b""
    while chunk := client.recv(4096):
        raw += chunk
    head, body = raw.split(b"\r\n\r\n", 1)
    assert head.startswith(b"HTTP/1.1 200 OK")
    assert b"Content-Length: 18" in head
    assert body == b""
