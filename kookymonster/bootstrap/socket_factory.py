"""Listening socket creation."""

import socket

from kookymonster.bootstrap.config import parse_listen_addr

ACCEPT_POLL_SECONDS = 0.1


def create_listener(listen_addr: str) -> socket.socket:
    """Bind and listen on a host:port address.

    Raises ValueError for a malformed address and OSError when the bind fails.
    """
    host, port = parse_listen_addr(listen_addr)
    family = socket.AF_INET6 if ":" in host else socket.AF_INET
    listener = socket.create_server((host, port), family=family, backlog=128)
    listener.settimeout(ACCEPT_POLL_SECONDS)
    return listener
