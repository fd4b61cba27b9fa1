"""Socket helpers for the serve and client commands."""

from __future__ import annotations

import errno
import socket

_WILDCARD_HOSTS = ("0.0.0.0", "::", "")


def is_port_in_use(host: str, port: int) -> bool:
    """True when ``host:port`` cannot be bound because a listener already owns it."""
    family = socket.AF_INET6 if ":" in host else socket.AF_INET
    with socket.socket(family, socket.SOCK_STREAM) as sock:
        try:
            sock.bind((host, port))
        except OSError as e:
            if e.errno == errno.EADDRINUSE:
                return True
            raise
    return False


def http_base_url(host: str, port: int) -> str:
    """Local URL for a listener; wildcard binds are reached over loopback."""
    if host in _WILDCARD_HOSTS:
        host = "127.0.0.1"
    return f"http://{host}:{port}"
