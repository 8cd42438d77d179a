"""The ``tls1.2_ticket_auth`` obfuscation: traffic dressed as TLS 1.2.

The client opens with a ClientHello whose random and session id carry an
HMAC-authenticated timestamp; the server answers with a ServerHello,
ChangeCipherSpec and Finished. After that every payload travels inside
TLS application-data records.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import os
import random
import re
import time
from collections import deque
from dataclasses import dataclass

__all__ = [
    "HMAC_LEN",
    "ObfsError",
    "ServerInfo",
    "TicketAuthGlobal",
    "TicketAuth",
]

log = logging.getLogger(__name__)

HMAC_LEN = 10
CLIENT_ID_LEN = 32
DEFAULT_REPLAY_CAPACITY = 22

_APPLICATION_DATA = b"\x17\x03\x03"
_CHANGE_CIPHER_SPEC = b"\x14\x03\x03\x00\x01\x01"
_FINISHED_HEADER = b"\x16\x03\x03\x00\x20"

_CIPHER_SUITES = (
    b"\x00\x1c\xc0\x2b\xc0\x2f\xcc\xa9\xcc\xa8\xcc\x14\xcc\x13\xc0\x0a\xc0\x14"
    b"\xc0\x09\xc0\x13\x00\x9c\x00\x35\x00\x2f\x00\x0a\x01\x00"
)
_EXT_RENEGOTIATION = b"\xff\x01\x00\x01\x00"
_EXT_TICKET_HEADER = b"\x00\x17\x00\x00\x00\x23\x00\xd0"
_TICKET_LEN = 208
_EXT_TAIL = (
    b"\x00\x0d\x00\x16\x00\x14\x06\x01\x06\x03\x05\x01\x05\x03\x04\x01\x04\x03"
    b"\x03\x01\x03\x03\x02\x01\x02\x03\x00\x05\x00\x05\x01\x00\x00\x00\x00\x00"
    b"\x12\x00\x00\x75\x50\x00\x00\x00\x0b\x00\x02\x01\x00\x00\x0a\x00\x06\x00"
    b"\x04\x00\x17\x00\x18"
)
_SERVER_HELLO_TAIL = b"\xc0\x2f\x00\x00\x05\xff\x01\x00\x01\x00"

_SMALL_RECORD = 1024
_SPLIT_THRESHOLD = 2048


class ObfsError(ValueError):
    """The peer's data does not follow the obfuscation protocol."""


@dataclass
class ServerInfo:
    """What an obfuscator knows about the server it talks to or runs as."""

    key: bytes = b""
    host: str = ""
    port: int = 0
    param: str | None = None


class TicketAuthGlobal:
    """State shared by all connections of one server or client."""

    def __init__(self, replay_capacity: int = DEFAULT_REPLAY_CAPACITY) -> None:
        self.local_client_id = os.urandom(CLIENT_ID_LEN)
        self.startup_time = int(time.time())
        self.replay_capacity = replay_capacity
        self._recent: deque[bytes] = deque()

    def seen(self, verify_id: bytes) -> bool:
        """Return True if ``verify_id`` was seen before; otherwise remember it."""
        verify_id = bytes(verify_id)
        if verify_id in self._recent:
            return True
        self._recent.append(verify_id)
        while len(self._recent) > self.replay_capacity:
            self._recent.popleft()
        return False


def _u16(value: int) -> bytes:
    return (value & 0xFFFF).to_bytes(2, "big")


def _hmac(key: bytes, data: bytes) -> bytes:
    return hmac.new(key, data, hashlib.sha1).digest()[:HMAC_LEN]


def _atoi(text: str) -> int:
    match = re.match(r"\s*([+-]?\d+)", text)
    return int(match.group(1)) if match else 0


def _frame(chunk: bytes) -> bytes:
    return _APPLICATION_DATA + _u16(len(chunk)) + chunk


def _pack_records(data: bytes) -> bytes:
    if len(data) < _SMALL_RECORD:
        return _frame(data)
    parts = []
    start = 0
    while len(data) - start > _SPLIT_THRESHOLD:
        size = min(random.randrange(4096) + 100, len(data) - start)
        parts.append(_frame(data[start:start + size]))
        start += size
    if start < len(data):
        parts.append(_frame(data[start:]))
    return b"".join(parts)


class TicketAuth:
    """One connection's end of the ``tls1.2_ticket_auth`` obfuscation.

    The decode methods return ``(payload, send_back)``; when ``send_back`` is
    true the caller must answer by encoding empty data.
    """

    def __init__(self, server_info: ServerInfo, global_data: TicketAuthGlobal) -> None:
        self.server = server_info
        self.global_data = global_data
        self.handshake_status = 0
        self._send_buffer = bytearray()
        self._recv_buffer = bytearray()

    def _param(self) -> str | None:
        if self.server.param is not None and self.server.param == "":
            self.server.param = None
        return self.server.param

    def _pack_auth_data(self) -> bytes:
        stamp = (int(time.time()) & 0xFFFFFFFF).to_bytes(4, "big")
        head = stamp + os.urandom(18)
        key = self.server.key + self.global_data.local_client_id[:CLIENT_ID_LEN]
        return head + _hmac(key, head)

    def _client_hello(self) -> bytes:
        hosts = self._param() or self.server.host
        sni = random.choice(hosts.split(",")).encode("utf-8")[:255]
        if sni and sni[-1:].isdigit():
            sni = b""
        ext_sni = (
            b"\x00\x00" + _u16(len(sni) + 5) + _u16(len(sni) + 3)
            + b"\x00" + _u16(len(sni)) + sni
        )
        extensions = (
            _EXT_RENEGOTIATION + ext_sni + _EXT_TICKET_HEADER
            + os.urandom(_TICKET_LEN) + _EXT_TAIL
        )
        body = (
            b"\x03\x03" + self._pack_auth_data() + b"\x20"
            + self.global_data.local_client_id[:CLIENT_ID_LEN]
            + _CIPHER_SUITES + _u16(len(extensions)) + extensions
        )
        handshake = b"\x01\x00" + _u16(len(body)) + body
        return b"\x16\x03\x01" + _u16(len(handshake)) + handshake

    def client_encode(self, data: bytes) -> bytes:
        """Wrap outgoing client data, driving the handshake as needed."""
        data = bytes(data)
        if self.handshake_status == 8:
            return _pack_records(data)
        self._send_buffer += _frame(data)
        if self.handshake_status == 0:
            self.handshake_status = 1
            return self._client_hello()
        if not data:
            prefix = _CHANGE_CIPHER_SPEC + _FINISHED_HEADER + os.urandom(22)
            key = self.server.key + self.global_data.local_client_id[:CLIENT_ID_LEN]
            out = prefix + _hmac(key, prefix) + bytes(self._send_buffer)
            self._send_buffer = bytearray()
            self.handshake_status = 8
            return out
        return b""

    def server_encode(self, data: bytes) -> bytes:
        """Wrap outgoing server data, or produce the handshake reply."""
        data = bytes(data)
        if self.handshake_status == 8:
            return _pack_records(data)
        self.handshake_status = 3
        client_id = self.global_data.local_client_id[:CLIENT_ID_LEN]
        body = (
            b"\x03\x03" + self._pack_auth_data() + b"\x20" + client_id
            + _SERVER_HELLO_TAIL
        )
        handshake = b"\x02\x00" + _u16(len(body)) + body
        out = b"\x16\x03\x03" + _u16(len(handshake)) + handshake
        out += _CHANGE_CIPHER_SPEC + _FINISHED_HEADER + os.urandom(22)
        return out + _hmac(self.server.key + client_id, out)

    def _drain_records(self, strict: bool) -> bytes:
        payload = bytearray()
        buf = self._recv_buffer
        while len(buf) > 5:
            if strict:
                if buf[:3] != _APPLICATION_DATA:
                    raise ObfsError("server_decode data error, wrong tls version 3")
            elif buf[0] != 0x17:
                raise ObfsError("not an application data record")
            size = int.from_bytes(buf[3:5], "big")
            if size + 5 > len(buf):
                break
            payload += buf[5:5 + size]
            del buf[:5 + size]
        return bytes(payload)

    def client_decode(self, data: bytes) -> tuple[bytes, bool]:
        """Unwrap data the server sent; verify its handshake reply."""
        data = bytes(data)
        if self.handshake_status == 8:
            self._recv_buffer += data
            return self._drain_records(strict=False), False
        if len(data) < 11 + 32 + 1 + 32:
            raise ObfsError("server hello too short")
        key = self.server.key + self.global_data.local_client_id[:CLIENT_ID_LEN]
        if not hmac.compare_digest(data[33:33 + HMAC_LEN], _hmac(key, data[11:33])):
            raise ObfsError("server hello hash mismatch")
        return b"", True

    def server_decode(self, data: bytes) -> tuple[bytes, bool]:
        """Unwrap data the client sent; check its hello and finished messages."""
        data = bytes(data)
        if self.handshake_status == 8:
            self._recv_buffer += data
            return self._drain_records(strict=True), False
        if self.handshake_status == 3:
            return self._decode_finished(data)
        self.handshake_status = 2
        return self._decode_client_hello(data)

    def _decode_finished(self, data: bytes) -> tuple[bytes, bool]:
        if len(data) < 43:
            raise ObfsError(f"server_decode data error, too short:{len(data)}")
        if data[:6] != _CHANGE_CIPHER_SPEC:
            raise ObfsError("server_decode data error, wrong tls version")
        if data[6:11] != _FINISHED_HEADER:
            raise ObfsError("server_decode data error, wrong tls version 2")
        key = self.server.key + self.global_data.local_client_id[:CLIENT_ID_LEN]
        if not hmac.compare_digest(data[33:43], _hmac(key, data[:33])):
            raise ObfsError("server_decode data error, hash mismatch")
        self._recv_buffer = bytearray(data[43:])
        self.handshake_status = 8
        return self.server_decode(b"")

    def _decode_client_hello(self, data: bytes) -> tuple[bytes, bool]:
        if len(data) < 44:
            raise ObfsError("client hello too short")
        if data[:3] != b"\x16\x03\x01":
            raise ObfsError("tls_auth not a tls handshake")
        if int.from_bytes(data[3:5], "big") != len(data) - 5:
            raise ObfsError("tls_auth wrong tls head size")
        if data[5:7] != b"\x01\x00":
            raise ObfsError("tls_auth not client hello message")
        if int.from_bytes(data[7:9], "big") != len(data) - 9:
            raise ObfsError("tls_auth wrong message size")
        if data[9:11] != b"\x03\x03":
            raise ObfsError("tls_auth wrong tls version")
        verify_id = data[11:43]
        session_len = data[43]
        if session_len >= 0x80 or session_len < CLIENT_ID_LEN:
            raise ObfsError("tls_auth wrong sessionid_len")
        session_id = data[44:44 + session_len]
        if len(session_id) < session_len:
            raise ObfsError("tls_auth truncated session id")
        self.global_data.local_client_id = session_id
        expected = _hmac(self.server.key + session_id, verify_id[:22])

        utc_time = int.from_bytes(verify_id[:4], "big")
        now = int(time.time())
        param = self._param()
        max_time_dif = _atoi(param) if param else 0
        time_dif = utc_time - now
        if max_time_dif > 0 and (
            time_dif < -max_time_dif
            or time_dif > max_time_dif
            or utc_time - self.global_data.startup_time < -(max_time_dif // 2)
        ):
            raise ObfsError("tls_auth wrong time")

        if not hmac.compare_digest(verify_id[22:32], expected):
            raise ObfsError("tls_auth wrong sha1")
        if self.global_data.seen(verify_id):
            log.error("replay attack detect!")
            raise ObfsError("replay attack detected")
        return b"", True