import pytest

from ssrelay.options import (
    DEFAULT_METHOD,
    DEFAULT_TIMEOUT,
    MAX_DNS_NUM,
    MAX_REMOTE_NUM,
    Mode,
    UsageError,
    parse_args,
    strip_compatible,
)

PASSWORD = "password"
BASE = ["-p", "8388", "-k", PASSWORD]


def test_minimal_defaults():
    opts = parse_args(BASE)
    assert opts.port == "8388"
    assert opts.password == PASSWORD
    assert opts.method == DEFAULT_METHOD == "rc4-md5"
    assert opts.timeout == DEFAULT_TIMEOUT == 60
    assert opts.hosts == [None]
    assert opts.mode is Mode.TCP_ONLY
    assert opts.auth is False


def test_missing_password_is_usage_error():
    with pytest.raises(UsageError):
        parse_args(["-p", "8388"])


def test_missing_port_is_usage_error():
    with pytest.raises(UsageError):
        parse_args(["-k", PASSWORD])


def test_empty_argv_is_usage_error():
    with pytest.raises(UsageError):
        parse_args([])


def test_conf_path_defers_requirements():
    opts = parse_args(["-c", "/tmp/config.json"])
    assert opts.conf_path == "/tmp/config.json"
    assert opts.port is None


def test_unknown_option():
    with pytest.raises(UsageError):
        parse_args(BASE + ["-Z"])


def test_missing_argument():
    with pytest.raises(UsageError):
        parse_args(BASE + ["-m"])


def test_help_skips_validation():
    assert parse_args(["-h"]).help is True
    assert parse_args(["--help"]).help is True


@pytest.mark.parametrize("flag,mode", [("-u", Mode.TCP_AND_UDP), ("-U", Mode.UDP_ONLY)])
def test_mode_flags(flag, mode):
    opts = parse_args(BASE + [flag])
    assert opts.mode is mode
    assert opts.mode.udp


def test_ssr_options():
    opts = parse_args(
        BASE
        + ["-O", "auth_sha1_v4", "-G", "pp", "-o", "tls1.2_ticket_auth", "-g", "op",
           "-m", "aes-256-cfb", "-t", "300"]
    )
    assert opts.protocol == "auth_sha1_v4"
    assert opts.protocol_param == "pp"
    assert opts.obfs == "tls1.2_ticket_auth"
    assert opts.obfs_param == "op"
    assert opts.method == "aes-256-cfb"
    assert opts.timeout == 300


def test_long_options():
    opts = parse_args(
        BASE + ["--fast-open", "--mtu", "1492", "--manager-address", "/tmp/mgr",
                "--acl", "rules.acl", "--mptcp", "--firewall"]
    )
    assert opts.fast_open and opts.mptcp and opts.firewall
    assert opts.mtu == 1492
    assert opts.manager_address == "/tmp/mgr"
    assert opts.acl_path == "rules.acl"


def test_boolean_short_flags():
    opts = parse_args(BASE + ["-v", "-A", "-6"])
    assert opts.verbose and opts.auth and opts.ipv6_first


def test_hosts_capped():
    argv = list(BASE)
    for n in range(MAX_REMOTE_NUM + 3):
        argv += ["-s", f"10.0.0.{n}"]
    opts = parse_args(argv)
    assert len(opts.hosts) == MAX_REMOTE_NUM
    assert opts.hosts[0] == "10.0.0.0"


def test_nameservers_capped():
    argv = list(BASE)
    for n in range(MAX_DNS_NUM + 2):
        argv += ["-d", f"192.0.2.{n}"]
    assert len(parse_args(argv).nameservers) == MAX_DNS_NUM


def test_pid_path_sets_daemonize():
    opts = parse_args(BASE + ["-f", "/tmp/ss.pid"])
    assert opts.daemonize
    assert not parse_args(BASE).daemonize


def test_strip_compatible():
    assert strip_compatible("auth_sha1_v4_compatible") == ("auth_sha1_v4", True)
    assert strip_compatible("http_simple_compatible") == ("http_simple", True)
    assert strip_compatible("plain") == ("plain", False)
    assert strip_compatible("_compatible") == ("_compatible", False)
    assert strip_compatible(None) == (None, False)


def test_compatible_applied_by_parse_args():
    opts = parse_args(BASE + ["-O", "auth_sha1_v4_compatible", "-o", "http_simple_compatible"])
    assert opts.protocol == "auth_sha1_v4"
    assert opts.protocol_compatible
    assert opts.obfs == "http_simple"
    assert opts.obfs_compatible


def test_verify_sha1_enables_auth():
    opts = parse_args(BASE + ["-O", "verify_sha1"])
    assert opts.auth is True
    assert opts.protocol is None


def test_verify_sha1_compatible_enables_auth():
    opts = parse_args(BASE + ["-O", "verify_sha1_compatible"])
    assert opts.auth is True
    assert opts.protocol is None
    assert opts.protocol_compatible is True


def test_non_numeric_timeout_becomes_zero():
    assert parse_args(BASE + ["-t", "abc"]).timeout == 0