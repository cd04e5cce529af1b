import socket
from contextlib import closing
from typing import Any, Optional

MAX_PORT = 65535


def validate_port(value: Any) -> Optional[int]:
    """Return ``value`` as a port number, or None when it is not a usable port."""
    if isinstance(value, bool):
        return None
    if isinstance(value, float):
        if not value.is_integer():
            return None
        value = int(value)
    if isinstance(value, str):
        try:
            value = int(value.strip())
        except ValueError:
            return None
    if not isinstance(value, int):
        return None
    if 1 <= value <= MAX_PORT:
        return value
    return None


class PortManager:
    """Maps deployment indices onto host ports starting at ``base_port``."""

    def __init__(self, base_port: int = 8080, host: str = "localhost"):
        self.base_port = base_port
        self.host = host

    def host_port(self, index: int) -> int:
        return self.base_port + index

    def find_free_index(self, start_index: int) -> int:
        """Return the first index at or after ``start_index`` whose host port is not in use."""
        index = start_index
        while self.host_port(index) <= MAX_PORT:
            if not self.is_port_open(self.host, self.host_port(index)):
                return index
            index += 1
        raise RuntimeError(
            f"No free ports available in range {self.host_port(start_index)}-{MAX_PORT}"
        )

    def is_port_open(self, host: str, port: int) -> bool:
        with closing(socket.socket(socket.AF_INET, socket.SOCK_STREAM)) as sock:
            sock.settimeout(1)
            try:
                return sock.connect_ex((host, port)) == 0
            except (OSError, OverflowError):
                return False
