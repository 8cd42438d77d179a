"""Extract the Server Name Indication from a TLS ClientHello.

Only as much of the handshake is read as is needed to find the first
``host_name`` entry of the server name extension.
"""

from __future__ import annotations

import logging

__all__ = [
    "DEFAULT_PORT",
    "SniError",
    "IncompleteRequestError",
    "NoHostnameError",
    "InvalidClientHelloError",
    "parse_tls_header",
]

log = logging.getLogger(__name__)

DEFAULT_PORT = 443

TLS_HEADER_LEN = 5
TLS_HANDSHAKE_CONTENT_TYPE = 0x16
TLS_HANDSHAKE_TYPE_CLIENT_HELLO = 0x01
SERVER_NAME_EXTENSION = 0x0000
HOST_NAME_TYPE = 0x00


class SniError(ValueError):
    """Base class for failures to obtain a server name."""


class IncompleteRequestError(SniError):
    """More data is needed before the record can be parsed."""


class NoHostnameError(SniError):
    """The handshake is valid but carries no usable server name."""


class InvalidClientHelloError(SniError):
    """The data is not a well-formed TLS ClientHello."""


def _u16(data: bytes, pos: int) -> int:
    return int.from_bytes(data[pos:pos + 2], "big")


def _signed(byte: int) -> int:
    return byte - 256 if byte >= 0x80 else byte


def parse_tls_header(data: bytes | bytearray | memoryview) -> str:
    """Return the first host name found in a TLS ClientHello.

    Raises IncompleteRequestError when the record is not yet complete,
    NoHostnameError when the handshake cannot or does not carry a server
    name, and InvalidClientHelloError for malformed input.
    """
    data = bytes(data)
    if len(data) < TLS_HEADER_LEN:
        raise IncompleteRequestError("shorter than a TLS record header")

    # SSL 2.0 compatible ClientHello: high bit of the length, type 1.
    if data[0] & 0x80 and data[2] == 1:
        log.debug("Received SSL 2.0 Client Hello which can not support SNI.")
        raise NoHostnameError("SSL 2.0 ClientHello cannot carry SNI")

    if data[0] != TLS_HANDSHAKE_CONTENT_TYPE:
        log.debug("Request did not begin with TLS handshake.")
        raise InvalidClientHelloError("not a TLS handshake record")

    version_major = _signed(data[1])
    version_minor = _signed(data[2])
    if version_major < 3:
        log.debug(
            "Received SSL %d.%d handshake which can not support SNI.",
            version_major,
            version_minor,
        )
        raise NoHostnameError("SSL version without SNI support")

    record_len = _u16(data, 3) + TLS_HEADER_LEN
    if len(data) < record_len:
        raise IncompleteRequestError("TLS record not fully received")
    data = data[:record_len]
    data_len = record_len

    pos = TLS_HEADER_LEN
    if pos + 1 > data_len:
        raise InvalidClientHelloError("missing handshake type")
    if data[pos] != TLS_HANDSHAKE_TYPE_CLIENT_HELLO:
        log.debug("Not a client hello")
        raise InvalidClientHelloError("not a ClientHello")

    # Handshake type (1), length (3), version (2), random (32).
    pos += 38

    # Session ID
    if pos + 1 > data_len:
        raise InvalidClientHelloError("truncated session id")
    pos += 1 + data[pos]

    # Cipher suites
    if pos + 2 > data_len:
        raise InvalidClientHelloError("truncated cipher suites")
    pos += 2 + _u16(data, pos)

    # Compression methods
    if pos + 1 > data_len:
        raise InvalidClientHelloError("truncated compression methods")
    pos += 1 + data[pos]

    if pos == data_len and version_major == 3 and version_minor == 0:
        log.debug("Received SSL 3.0 handshake without extensions")
        raise NoHostnameError("SSL 3.0 handshake without extensions")

    # Extensions
    if pos + 2 > data_len:
        raise InvalidClientHelloError("truncated extensions length")
    ext_len = _u16(data, pos)
    pos += 2
    if pos + ext_len > data_len:
        raise InvalidClientHelloError("extensions overrun the record")
    return _parse_extensions(data[pos:pos + ext_len])


def _parse_extensions(data: bytes) -> str:
    pos = 0
    data_len = len(data)
    while pos + 4 <= data_len:
        length = _u16(data, pos + 2)
        if _u16(data, pos) == SERVER_NAME_EXTENSION:
            if pos + 4 + length > data_len:
                raise InvalidClientHelloError("server name extension overrun")
            return _parse_server_name_extension(data[pos + 4:pos + 4 + length])
        pos += 4 + length
    if pos != data_len:
        raise InvalidClientHelloError("extensions do not end where expected")
    raise NoHostnameError("no server name extension")


def _parse_server_name_extension(data: bytes) -> str:
    pos = 2  # skip the server name list length
    data_len = len(data)
    while pos + 3 < data_len:
        length = _u16(data, pos + 1)
        if pos + 3 + length > data_len:
            raise InvalidClientHelloError("server name entry overrun")
        name_type = data[pos]
        if name_type == HOST_NAME_TYPE:
            raw = data[pos + 3:pos + 3 + length]
            return raw.split(b"\x00", 1)[0].decode("latin-1")
        log.debug("Unknown server name extension name type: %d", name_type)
        pos += 3 + length
    if pos != data_len:
        raise InvalidClientHelloError("server name list does not end where expected")
    raise NoHostnameError("no host_name entry in server name extension")