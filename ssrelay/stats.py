"""Traffic statistics reported to a manager process.

The manager listens either on a UNIX datagram socket (given as a path) or
on a UDP ``host:port``. Each report is a single datagram of the form
``stat: {"<server port>":<bytes>}`` followed by a NUL byte.
"""

from __future__ import annotations

import logging
import os
import socket
import threading
from dataclasses import dataclass, field

__all__ = [
    "UPDATE_INTERVAL",
    "TrafficCounter",
    "format_stat",
    "parse_manager_address",
    "send_stat",
]

log = logging.getLogger(__name__)

UPDATE_INTERVAL = 30
_UNIX_CLIENT_TEMPLATE = "/tmp/shadowsocks.{port}"


@dataclass
class TrafficCounter:
    """Bytes received from clients (tx) and from destinations (rx)."""

    tx: int = 0
    rx: int = 0
    _lock: threading.Lock = field(
        default_factory=threading.Lock, init=False, repr=False, compare=False
    )

    def add_tx(self, count: int) -> None:
        """Count ``count`` bytes read from a client."""
        if count < 0:
            raise ValueError(f"negative byte count: {count}")
        with self._lock:
            self.tx += count

    def add_rx(self, count: int) -> None:
        """Count ``count`` bytes read from a destination."""
        if count < 0:
            raise ValueError(f"negative byte count: {count}")
        with self._lock:
            self.rx += count

    @property
    def total(self) -> int:
        return self.tx + self.rx


def format_stat(port: str | int, total: int) -> str:
    """Render one statistics report."""
    return f'stat: {{"{port}":{total}}}'


def parse_manager_address(address: str) -> tuple[str | None, str | None]:
    """Split a manager address into host and port.

    A plain path yields ``(None, None)``-style parts: whichever of host or
    port is missing comes back as None, which means a UNIX socket is used.
    """
    if not address:
        return None, None
    if address.startswith("["):
        end = address.find("]")
        if end == -1:
            return None, None
        host = address[1:end]
        rest = address[end + 1:]
        port = rest[1:] if rest.startswith(":") else ""
        return (host or None), (port or None)
    colon = address.rfind(":")
    if colon == -1:
        return address, None
    host = address[:colon]
    port = address[colon + 1:]
    return (host or None), (port or None)


def _message(port: str | int, total: int) -> bytes:
    return format_stat(port, total).encode("utf-8") + b"\0"


def _send_unix(manager_path: str, port: str | int, message: bytes) -> None:
    client_path = _UNIX_CLIENT_TEMPLATE.format(port=port)
    with socket.socket(socket.AF_UNIX, socket.SOCK_DGRAM) as sock:
        try:
            os.unlink(client_path)
        except FileNotFoundError:
            pass
        sock.bind(client_path)
        try:
            sent = sock.sendto(message, manager_path)
        finally:
            try:
                os.unlink(client_path)
            except FileNotFoundError:
                pass
    if sent != len(message):
        raise OSError(f"stat_sendto: sent {sent} of {len(message)} bytes")


def _send_udp(host: str, service: str, message: bytes) -> None:
    try:
        infos = socket.getaddrinfo(host, service, 0, socket.SOCK_DGRAM)
    except socket.gaierror as exc:
        raise OSError(f"failed to parse the manager addr: {exc}") from exc
    if not infos:
        raise OSError("failed to parse the manager addr")
    family, socktype, proto, _name, sockaddr = infos[0]
    with socket.socket(family, socktype, proto) as sock:
        sent = sock.sendto(message, sockaddr)
    if sent != len(message):
        raise OSError(f"stat_sendto: sent {sent} of {len(message)} bytes")


def send_stat(manager_address: str, port: str | int, total: int) -> bytes:
    """Send one report to the manager and return the datagram sent.

    Raises OSError when the address cannot be used or sending fails.
    """
    message = _message(port, total)
    host, service = parse_manager_address(manager_address)
    if host is None or service is None:
        _send_unix(manager_address, port, message)
    else:
        _send_udp(host, service, message)
    log.debug("sent traffic stat %r to %s", message, manager_address)
    return message