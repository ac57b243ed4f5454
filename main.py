"""Answer server: load config.yml, serve the answer, drain on interrupt."""

import sys
from typing import Optional

from kookymonster.bootstrap.config import (
    CONFIG_FILE_NAME,
    LOG_FILE_NAME,
    ConfigError,
    load_config,
    parse_cli_args,
)
from kookymonster.bootstrap.logging_setup import configure_logging
from kookymonster.handlers.answer import answer_handler
from kookymonster.lifecycle.coordinator import LifecycleCoordinator, serve_forever
from kookymonster.lifecycle.signals import install_shutdown_handlers
from kookymonster.pipeline.router import build_router


def main(argv: Optional[list[str]] = None) -> int:
    """Start the server and return the process exit code."""
    args = parse_cli_args(sys.argv[1:] if argv is None else argv)
    log_path = args.base_dir / LOG_FILE_NAME
    try:
        logger = configure_logging(
            args.log_level, log_path, use_json=args.log_format == "json"
        )
    except OSError as error:
        print(f"ERROR - unable to open logfile {log_path}: {error}", file=sys.stderr)
        return 1

    logger.info(
        "Server is starting...",
        extra={"event": "server_starting", "log_path": str(log_path)},
    )

    try:
        config = load_config(args.base_dir)
    except ConfigError as error:
        logger.critical(str(error), extra={"event": "config_failed"})
        return 1
    logger.info(
        "Successfully loaded configuration from %s",
        args.base_dir / CONFIG_FILE_NAME,
        extra={"event": "config_loaded", "listen_addr": config.listen_addr},
    )

    if config.broken:
        logger.critical(
            "Service failed; invalid configuration",
            extra={"event": "config_broken"},
        )
        return 1

    coordinator = LifecycleCoordinator(
        config.listen_addr,
        build_router(answer_handler(config.answer_text)),
        logger=logger,
    )
    install_shutdown_handlers(coordinator)

    exit_code = serve_forever(coordinator)
    if exit_code == 0:
        logger.info("Server stopped", extra={"event": "server_stopped"})
    return exit_code


def run() -> None:
    """Console script entrypoint."""
    sys.exit(main())


if __name__ == "__main__":
    run()
