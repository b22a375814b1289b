"""Finding unused local TCP ports."""

from __future__ import annotations

import socket

__all__ = ["PORT_RANGE_MIN", "PORT_RANGE_MAX", "PortError", "get_open_port_in_range", "get_open_port"]

PORT_RANGE_MIN = 0
PORT_RANGE_MAX = 65535


class PortError(Exception):
    """Raised when no suitable port can be found."""

    def __init__(self, message: str) -> None:
        super().__init__(f"port discovery error: {message}")
        self.message = message


def _in_use(port: int) -> bool:
    try:
        conn = socket.create_connection(("localhost", port), timeout=1.0)
    except (OSError, OverflowError):
        return False
    conn.close()
    return True


def get_open_port_in_range(lower_bound: int, upper_bound: int) -> int:
    """Return the first port in the inclusive range nothing listens on locally."""
    if lower_bound < PORT_RANGE_MIN:
        raise PortError(f"port cannot be less than {PORT_RANGE_MIN}")
    for port in range(lower_bound, min(upper_bound, PORT_RANGE_MAX) + 1):
        if not _in_use(port):
            return port
    if upper_bound > PORT_RANGE_MAX:
        raise PortError(f"port cannot be greater than {PORT_RANGE_MAX}")
    raise PortError(f"no open port found {PORT_RANGE_MIN}")


def get_open_port() -> int:
    """Return the first unused port on the host."""
    return get_open_port_in_range(PORT_RANGE_MIN, PORT_RANGE_MAX)