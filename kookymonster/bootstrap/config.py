"""Application configuration, fixed server constants, and CLI argument parsing."""

import argparse
import os
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

import yaml

CONFIG_FILE_NAME = "config.yml"
LOG_FILE_NAME = "kookymonster.log"
DEFAULT_ANSWER_TEXT = "placeholder"

READ_TIMEOUT_SECONDS = 5.0
WRITE_TIMEOUT_SECONDS = 10.0
IDLE_TIMEOUT_SECONDS = 15.0
SHUTDOWN_GRACE_SECONDS = 30.0

MAX_BODY_BYTES = 1024 * 1024
HEADER_DELIMITER = b"\r\n\r\n"

SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
}


class ConfigError(Exception):
    """Raised when the configuration file cannot be read or understood."""


@dataclass(frozen=True)
class AppConfig:
    """Settings loaded once from config.yml at process start."""

    listen_addr: str
    broken: bool = False
    answer_text: str = DEFAULT_ANSWER_TEXT


@dataclass(frozen=True)
class ServerTimeouts:
    """Connection and shutdown timeouts, in seconds."""

    read: float = READ_TIMEOUT_SECONDS
    write: float = WRITE_TIMEOUT_SECONDS
    idle: float = IDLE_TIMEOUT_SECONDS
    shutdown_grace: float = SHUTDOWN_GRACE_SECONDS


def executable_dir() -> Path:
    """Return the absolute directory holding the running entrypoint."""
    return Path(sys.argv[0] or ".").resolve().parent


def _require_type(
    data: dict[str, Any], key: str, expected: type, config_path: Path, default: Any
) -> Any:
    value = data.get(key, default)
    if not isinstance(value, expected):
        raise ConfigError(
            f"failed to unmarshal config from {config_path}: "
            f"{key} must be a {expected.__name__}, got {type(value).__name__}"
        )
    return value


def load_config(base_dir: Path) -> AppConfig:
    """Read and validate config.yml from base_dir."""
    config_path = Path(base_dir) / CONFIG_FILE_NAME
    try:
        with open(config_path, "r", encoding="utf-8") as config_file:
            data = yaml.safe_load(config_file)
    except OSError as error:
        raise ConfigError(
            f"Config file does not exist or is unable to be opened: {config_path}"
        ) from error
    except yaml.YAMLError as error:
        raise ConfigError(
            f"failed to unmarshal config from {config_path}: {error}"
        ) from error

    if not isinstance(data, dict):
        raise ConfigError(
            f"failed to unmarshal config from {config_path}: "
            "expected a mapping at the top level"
        )
    if "listen_addr" not in data:
        raise ConfigError(
            f"failed to unmarshal config from {config_path}: listen_addr is required"
        )

    return AppConfig(
        listen_addr=_require_type(data, "listen_addr", str, config_path, None),
        broken=_require_type(data, "broken", bool, config_path, False),
        answer_text=_require_type(
            data, "answer_text", str, config_path, DEFAULT_ANSWER_TEXT
        ),
    )


def parse_listen_addr(listen_addr: str) -> tuple[str, int]:
    """Split a host:port string into a bindable (host, port) pair."""
    host, separator, port_text = listen_addr.rpartition(":")
    if not separator:
        raise ValueError(f"missing port in address {listen_addr!r}")
    if host.startswith("[") and host.endswith("]"):
        host = host[1:-1]
    try:
        port = int(port_text)
    except ValueError as exc:
        raise ValueError(f"invalid port in address {listen_addr!r}") from exc
    if port < 0 or port > 65535:
        raise ValueError(f"port out of range in address {listen_addr!r}")
    return host, port


def parse_cli_args(argv: list[str]) -> argparse.Namespace:
    """Return parsed CLI arguments for process bootstrap."""
    parser = argparse.ArgumentParser(description="kookymonster answer server")
    default_base_dir: Optional[str] = os.getenv("KOOKYMONSTER_BASE_DIR")
    parser.add_argument(
        "--base-dir",
        type=Path,
        default=Path(default_base_dir) if default_base_dir else None,
        help="Directory holding config.yml and the log file "
        "(default: the executable's directory)",
    )
    parser.add_argument(
        "--log-level",
        default=os.getenv("KOOKYMONSTER_LOG_LEVEL", "INFO").upper(),
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        type=str.upper,
    )
    parser.add_argument(
        "--log-format",
        default=os.getenv("KOOKYMONSTER_LOG_FORMAT", "text").lower(),
        choices=["text", "json"],
        type=str.lower,
    )
    args = parser.parse_args(argv)
    if args.base_dir is None:
        args.base_dir = executable_dir()
    return args
