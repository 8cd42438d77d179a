import socket

import pytest

from ssrelay.addressing import (
    ONETIMEAUTH_BYTES,
    ONETIMEAUTH_FLAG,
    AddressHeader,
    AddressType,
    HeaderError,
    HeaderStatus,
    build_address_header,
    format_address,
    header_status,
    parse_address_header,
    parse_header_len,
)


def test_build_ipv4_wire_bytes():
    assert build_address_header("127.0.0.1", 80) == b"\x01\x7f\x00\x00\x01\x00\x50"


def test_build_domain_wire_layout():
    data = build_address_header("example.com", 443)
    assert data[0] == AddressType.DOMAIN
    assert data[1] == len("example.com")
    assert data[2:13] == b"example.com"
    assert int.from_bytes(data[13:], "big") == 443


def test_build_ipv6_layout():
    data = build_address_header("::1", 8080)
    assert data[0] == AddressType.IPV6
    assert len(data) == 1 + 16 + 2
    assert data[1:17] == socket.inet_pton(socket.AF_INET6, "::1")


@pytest.mark.parametrize(
    "host,port,atyp",
    [
        ("10.1.2.3", 1, AddressType.IPV4),
        ("2001:db8::5", 65535, AddressType.IPV6),
        ("example.com", 8388, AddressType.DOMAIN),
        ("a-b_c.example.com", 0, AddressType.DOMAIN),
    ],
)
def test_round_trip(host, port, atyp):
    encoded = build_address_header(host, port)
    header = parse_address_header(encoded + b"payload")
    assert header.atyp is atyp
    assert header.host == host
    assert header.port == port
    assert header.length == len(encoded)
    assert header.one_time_auth is False


def test_domain_with_ip_literal_has_family():
    name = b"192.168.0.1"
    data = bytes([3, len(name)]) + name + b"\x00\x35"
    header = parse_address_header(data)
    assert header.host == "192.168.0.1"
    assert header.family == socket.AF_INET
    assert header.needs_resolve is False


def test_domain_needs_resolve():
    header = parse_address_header(build_address_header("example.com", 80))
    assert header.family is None
    assert header.needs_resolve is True


def test_one_time_auth_tag_is_consumed():
    base = build_address_header("1.2.3.4", 80)
    tag = bytes(range(ONETIMEAUTH_BYTES))
    data = bytes([base[0] | ONETIMEAUTH_FLAG]) + base[1:] + tag + b"rest"
    header = parse_address_header(data)
    assert header.one_time_auth is True
    assert header.auth_tag == tag
    assert data[header.length:] == b"rest"


def test_one_time_auth_truncated_tag_rejected():
    base = build_address_header("1.2.3.4", 80)
    data = bytes([base[0] | ONETIMEAUTH_FLAG]) + base[1:] + b"\x00" * 3
    with pytest.raises(HeaderError):
        parse_address_header(data)


@pytest.mark.parametrize(
    "data",
    [
        b"",
        b"\x02abcdef",
        b"\x01\x7f\x00\x00",
        b"\x04" + b"\x00" * 10,
        b"\x03\x20short",
        b"\x03\x03a b\x00\x50",
        b"\x03\x03\xff\xfe\xfd\x00\x50",
    ],
)
def test_malformed_headers(data):
    with pytest.raises(HeaderError):
        parse_address_header(data)


def test_header_status_complete_and_incomplete():
    full = build_address_header("8.8.8.8", 53)
    assert header_status(full) is HeaderStatus.COMPLETE
    assert header_status(full[:-1]) is HeaderStatus.INCOMPLETE
    assert header_status(b"") is HeaderStatus.INCOMPLETE


def test_header_status_domain_without_length_byte():
    assert header_status(b"\x03") is HeaderStatus.INCOMPLETE


def test_header_status_auth_needs_tag():
    full = build_address_header("example.com", 80)
    assert header_status(full, auth=True) is HeaderStatus.INCOMPLETE
    padded = full + b"\x00" * ONETIMEAUTH_BYTES
    assert header_status(padded, auth=True) is HeaderStatus.COMPLETE


def test_header_status_flag_implies_auth():
    full = build_address_header("8.8.8.8", 53)
    flagged = bytes([full[0] | ONETIMEAUTH_FLAG]) + full[1:]
    assert header_status(flagged) is HeaderStatus.INCOMPLETE


def test_header_status_invalid_type():
    with pytest.raises(HeaderError):
        header_status(b"\x05\x00\x00")


def test_parse_header_len_matches_build():
    for host in ("1.1.1.1", "::2", "example.com"):
        encoded = build_address_header(host, 1)
        assert parse_header_len(encoded[0], encoded, 1) == len(encoded) - 1


def test_parse_header_len_ignores_flag_bits():
    encoded = build_address_header("1.1.1.1", 1)
    assert parse_header_len(encoded[0] | ONETIMEAUTH_FLAG, encoded, 1) == len(encoded) - 1


def test_parse_header_len_invalid_type():
    with pytest.raises(HeaderError):
        parse_header_len(2, b"\x02\x00", 1)


@pytest.mark.parametrize("port", [-1, 65536])
def test_build_rejects_bad_port(port):
    with pytest.raises(HeaderError):
        build_address_header("1.2.3.4", port)


def test_format_address():
    assert format_address("example.com", 80) == "example.com:80"
    assert format_address("::1", 443) == "[::1]:443"


def test_header_str_uses_format():
    header = AddressHeader(AddressType.IPV6, "::1", 22, 19)
    assert str(header) == format_address("::1", 22)