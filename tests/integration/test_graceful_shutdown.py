"""Integration tests for signal-driven graceful shutdown."""

from __future__ import annotations

import re
import signal
import socket
import time
from typing import TYPE_CHECKING

import pytest

from tests.conftest import ANSWER_TEXT
from tests.utils.http import port_accepts_connections, read_http_response

pytestmark = pytest.mark.integration

if TYPE_CHECKING:
    from tests.conftest import ServerProcessInfo

TIMESTAMP = re.compile(r"^\d{4}-\d{2}-\d{2} \d{2}:\d{2}:\d{2} kookymonster: ")
EXPECTED_BODY = f"The answer is: {ANSWER_TEXT}\n"


def test_sigint_with_no_requests_exits_cleanly(server_process: "ServerProcessInfo") -> None:
    """An idle server stops almost immediately with status 0."""

    process = server_process["process"]
    start = time.monotonic()
    process.send_signal(signal.SIGINT)
    stdout, _ = process.communicate(timeout=10)

    assert process.returncode == 0
    assert time.monotonic() - start < 5.0
    assert "Server is shutting down..." in stdout
    assert "Server stopped" in stdout
    assert not port_accepts_connections(server_process["host"], server_process["port"])


def test_sigterm_also_drains(server_process: "ServerProcessInfo") -> None:
    """SIGTERM follows the same shutdown path as an interrupt."""

    process = server_process["process"]
    process.send_signal(signal.SIGTERM)
    process.communicate(timeout=10)

    assert process.returncode == 0


def test_repeated_interrupts_run_one_shutdown(server_process: "ServerProcessInfo") -> None:
    """A second interrupt neither escalates nor starts another shutdown."""

    process = server_process["process"]
    process.send_signal(signal.SIGINT)
    process.send_signal(signal.SIGINT)
    stdout, stderr = process.communicate(timeout=10)

    assert process.returncode == 0
    assert stdout.count("Server is shutting down...") == 1
    assert "Traceback" not in stderr


def test_idle_keep_alive_connection_does_not_block_exit(
    server_process: "ServerProcessInfo",
) -> None:
    """Idle keep-alive connections are closed instead of waited on."""

    process = server_process["process"]
    with socket.create_connection(
        (server_process["host"], server_process["port"]), timeout=5
    ) as sock:
        sock.sendall(b"GET / HTTP/1.1\r\nHost: localhost\r\n\r\n")
        assert read_http_response(sock).status_line == "HTTP/1.1 200 OK"

        start = time.monotonic()
        process.send_signal(signal.SIGINT)
        process.communicate(timeout=10)

        assert process.returncode == 0
        assert time.monotonic() - start < 5.0
        assert sock.recv(4096) == b""


def test_log_lines_are_timestamped_in_file_and_stdout(
    server_process: "ServerProcessInfo",
) -> None:
    """Every lifecycle line carries a timestamp in both destinations."""

    process = server_process["process"]
    process.send_signal(signal.SIGINT)
    stdout, _ = process.communicate(timeout=10)

    file_lines = server_process["log_file"].read_text().splitlines()
    stdout_lines = stdout.splitlines()
    assert sorted(file_lines) == sorted(stdout_lines)
    assert file_lines
    for line in file_lines:
        assert TIMESTAMP.match(line), line


def test_request_being_uploaded_completes_after_interrupt(
    server_process: "ServerProcessInfo",
) -> None:
    """A request whose body is still arriving at SIGINT is answered before exit."""

    process = server_process["process"]
    with socket.create_connection(
        (server_process["host"], server_process["port"]), timeout=5
    ) as sock:
        sock.sendall(
            b"POST /answer HTTP/1.1\r\nHost: localhost\r\nContent-Length: 10\r\n\r\nhello"
        )
        time.sleep(0.3)
        process.send_signal(signal.SIGINT)
        time.sleep(0.5)
        assert process.poll() is None

        sock.sendall(b"world")
        response = read_http_response(sock)
        assert response.status_line == "HTTP/1.1 200 OK"
        assert response.body == EXPECTED_BODY.encode()
        assert response.headers["connection"] == "close"

    stdout, _ = process.communicate(timeout=10)
    assert process.returncode == 0
    assert "Received shutdown signal" in stdout
    assert stdout.index("Server is shutting down...") < stdout.index("Server stopped")
