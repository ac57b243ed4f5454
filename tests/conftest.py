"""Shared pytest fixtures for integration and unit tests."""

from __future__ import annotations

import signal
import subprocess
import sys
from pathlib import Path
from typing import Generator, TypedDict

import pytest

from tests.utils.http import reserve_port, wait_for_port, write_config

PROJECT_ROOT = Path(__file__).resolve().parent.parent
ANSWER_TEXT = "forty-two"


class ServerProcessInfo(TypedDict):
    """Metadata describing a running server fixture instance."""

    base_url: str
    host: str
    port: int
    base_dir: Path
    process: subprocess.Popen[str]
    log_file: Path


def server_command(base_dir: Path) -> list[str]:
    """Command line that starts the server with config and log in base_dir."""

    return [sys.executable, "-m", "main", "--base-dir", str(base_dir)]


def run_server_to_exit(base_dir: Path, timeout: float = 10.0) -> subprocess.CompletedProcess:
    """Run the server expecting it to exit on its own (startup failures)."""

    return subprocess.run(
        server_command(base_dir),
        cwd=PROJECT_ROOT,
        capture_output=True,
        text=True,
        timeout=timeout,
        check=False,
    )


@pytest.fixture(scope="session")
def project_root() -> Path:
    """Expose the repository root path to tests."""

    return PROJECT_ROOT


@pytest.fixture(name="server_process")
def _server_process(tmp_path: Path) -> Generator[ServerProcessInfo, None, None]:
    """Launch the answer server in a background process for integration tests."""

    host = "127.0.0.1"
    port = reserve_port(host)
    write_config(
        tmp_path,
        f'listen_addr: "{host}:{port}"\nbroken: false\nanswer_text: "{ANSWER_TEXT}"\n',
    )

    with subprocess.Popen(
        server_command(tmp_path),
        cwd=PROJECT_ROOT,
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        text=True,
    ) as process:
        try:
            wait_for_port(host, port)
        except Exception:
            process.terminate()
            stdout, stderr = process.communicate(timeout=5)
            print(f"\nServer stdout:\n{stdout}")
            print(f"\nServer stderr:\n{stderr}")
            raise

        yield {
            "base_url": f"http://{host}:{port}",
            "host": host,
            "port": port,
            "base_dir": tmp_path,
            "process": process,
            "log_file": tmp_path / "kookymonster.log",
        }

        if process.poll() is None:
            process.send_signal(signal.SIGINT)
            try:
                process.communicate(timeout=5)
            except subprocess.TimeoutExpired:
                process.kill()
                process.communicate()


@pytest.fixture()
def base_url(server_process: ServerProcessInfo) -> str:
    """Expose the running server base URL to integration tests."""

    return server_process["base_url"]
