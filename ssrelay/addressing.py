"""Shadowsocks relay address header: ATYP | DST.ADDR | DST.PORT [| HMAC].

The header that opens every relayed stream names the destination. ATYP's low
nibble selects the address kind; bit 0x10 marks a trailing one-time-auth tag.
"""

from __future__ import annotations

import enum
import ipaddress
import re
import socket
from dataclasses import dataclass

__all__ = [
    "ADDRTYPE_MASK",
    "ONETIMEAUTH_FLAG",
    "ONETIMEAUTH_BYTES",
    "AddressType",
    "HeaderStatus",
    "AddressHeader",
    "HeaderError",
    "parse_header_len",
    "header_status",
    "parse_address_header",
    "build_address_header",
    "format_address",
]

ADDRTYPE_MASK = 0x0F
ONETIMEAUTH_FLAG = 0x10
ONETIMEAUTH_BYTES = 10

_IPV4_LEN = 4
_IPV6_LEN = 16
_PORT_LEN = 2

_LABEL = r"[A-Za-z0-9_](?:[A-Za-z0-9_-]{0,61}[A-Za-z0-9_])?"
_HOSTNAME_RE = re.compile(rf"^{_LABEL}(?:\.{_LABEL})*\.?$")


class HeaderError(ValueError):
    """The address header is malformed."""


class AddressType(enum.IntEnum):
    IPV4 = 1
    DOMAIN = 3
    IPV6 = 4


class HeaderStatus(enum.Enum):
    COMPLETE = "complete"
    INCOMPLETE = "incomplete"


@dataclass(frozen=True)
class AddressHeader:
    """A parsed destination header.

    ``length`` is the number of bytes the header occupies in the stream,
    including the one-time-auth tag when one is present.
    """

    atyp: AddressType
    host: str
    port: int
    length: int
    one_time_auth: bool = False
    auth_tag: bytes = b""

    @property
    def family(self) -> int | None:
        """Socket family of the host, or None if it must be resolved."""
        try:
            ip = ipaddress.ip_address(self.host)
        except ValueError:
            return None
        return socket.AF_INET if ip.version == 4 else socket.AF_INET6

    @property
    def needs_resolve(self) -> bool:
        return self.family is None

    def __str__(self) -> str:
        return format_address(self.host, self.port)


def _address_type(atyp: int) -> AddressType:
    try:
        return AddressType(atyp & ADDRTYPE_MASK)
    except ValueError:
        raise HeaderError(f"invalid header with addr type {atyp}") from None


def parse_header_len(atyp: int, data: bytes, offset: int) -> int:
    """Length of the address and port that start at ``offset`` in ``data``.

    The ATYP byte itself is not counted.
    """
    kind = _address_type(atyp)
    if kind is AddressType.IPV4:
        length = _IPV4_LEN
    elif kind is AddressType.IPV6:
        length = _IPV6_LEN
    else:
        if offset >= len(data):
            raise HeaderError("missing domain name length")
        length = data[offset] + 1
    return length + _PORT_LEN


def header_status(data: bytes, auth: bool = False) -> HeaderStatus:
    """Tell whether ``data`` holds a whole address header yet.

    Raises HeaderError when the address type is unknown.
    """
    if not data:
        return HeaderStatus.INCOMPLETE
    atyp = data[0]
    kind = _address_type(atyp)
    header_len = 1
    if kind is AddressType.IPV4:
        header_len += _IPV4_LEN
    elif kind is AddressType.IPV6:
        header_len += _IPV6_LEN
    else:
        if len(data) < header_len + 1:
            return HeaderStatus.INCOMPLETE
        header_len += data[header_len] + 1
    header_len += _PORT_LEN
    if auth or atyp & ONETIMEAUTH_FLAG:
        header_len += ONETIMEAUTH_BYTES
    return HeaderStatus.COMPLETE if len(data) >= header_len else HeaderStatus.INCOMPLETE


def _valid_hostname(name: str) -> bool:
    return 0 < len(name) <= 255 and _HOSTNAME_RE.match(name) is not None


def parse_address_header(data: bytes) -> AddressHeader:
    """Parse the destination header at the start of ``data``."""
    data = bytes(data)
    if not data:
        raise HeaderError("empty header")
    atyp = data[0]
    kind = _address_type(atyp)
    offset = 1

    if kind is AddressType.IPV4:
        if len(data) < _IPV4_LEN + 3:
            raise HeaderError(f"invalid header with addr type {atyp}")
        host = socket.inet_ntop(socket.AF_INET, data[offset:offset + _IPV4_LEN])
        offset += _IPV4_LEN
    elif kind is AddressType.IPV6:
        if len(data) < _IPV6_LEN + 3:
            raise HeaderError(f"invalid header with addr type {atyp}")
        host = socket.inet_ntop(socket.AF_INET6, data[offset:offset + _IPV6_LEN])
        offset += _IPV6_LEN
    else:
        if len(data) < 2:
            raise HeaderError("missing domain name length")
        name_len = data[offset]
        if name_len + 4 > len(data):
            raise HeaderError(f"invalid name length: {name_len}")
        raw = data[offset + 1:offset + 1 + name_len]
        offset += name_len + 1
        try:
            host = raw.decode("ascii")
        except UnicodeDecodeError:
            raise HeaderError("invalid host name") from None
        try:
            ipaddress.ip_address(host)
        except ValueError:
            if not _valid_hostname(host):
                raise HeaderError("invalid host name") from None

    port = int.from_bytes(data[offset:offset + _PORT_LEN], "big")
    offset += _PORT_LEN

    one_time_auth = bool(atyp & ONETIMEAUTH_FLAG)
    tag = b""
    if one_time_auth:
        tag = data[offset:offset + ONETIMEAUTH_BYTES]
        offset += ONETIMEAUTH_BYTES

    if len(data) < offset:
        raise HeaderError("header is truncated")

    return AddressHeader(
        atyp=kind,
        host=host,
        port=port,
        length=offset,
        one_time_auth=one_time_auth,
        auth_tag=tag,
    )


def build_address_header(host: str, port: int) -> bytes:
    """Encode ``host`` and ``port`` as an address header.

    IP literals are sent as IPv4 or IPv6 addresses, anything else as a
    domain name.
    """
    if not 0 <= port <= 0xFFFF:
        raise HeaderError(f"port out of range: {port}")
    port_bytes = port.to_bytes(_PORT_LEN, "big")
    try:
        ip = ipaddress.ip_address(host)
    except ValueError:
        name = host.encode("idna") if host else b""
        if not name or len(name) > 255:
            raise HeaderError(f"invalid host name length: {len(name)}") from None
        return bytes([AddressType.DOMAIN, len(name)]) + name + port_bytes
    kind = AddressType.IPV4 if ip.version == 4 else AddressType.IPV6
    return bytes([kind]) + ip.packed + port_bytes


def format_address(host: str, port: int) -> str:
    """Render host and port, bracketing IPv6 addresses."""
    if ":" in host:
        return f"[{host}]:{port}"
    return f"{host}:{port}"