"""Command-line options of the relay server."""

from __future__ import annotations

import enum
import getopt
import re
from dataclasses import dataclass, field

__all__ = [
    "DEFAULT_METHOD",
    "DEFAULT_TIMEOUT",
    "MAX_REMOTE_NUM",
    "MAX_DNS_NUM",
    "Mode",
    "ServerOptions",
    "UsageError",
    "strip_compatible",
    "parse_args",
]

DEFAULT_METHOD = "rc4-md5"
DEFAULT_TIMEOUT = 60
MAX_REMOTE_NUM = 10
MAX_DNS_NUM = 4

_COMPATIBLE_SUFFIX = "_compatible"
_SHORT_OPTIONS = "f:s:p:l:k:t:m:b:c:i:d:a:n:O:o:G:g:huUvA6"
_LONG_OPTIONS = [
    "fast-open",
    "acl=",
    "manager-address=",
    "mtu=",
    "help",
    "mptcp",
    "firewall",
]


class UsageError(ValueError):
    """The command line is invalid or incomplete."""


class Mode(enum.Enum):
    TCP_ONLY = "tcp_only"
    TCP_AND_UDP = "tcp_and_udp"
    UDP_ONLY = "udp_only"

    @property
    def tcp(self) -> bool:
        return self is not Mode.UDP_ONLY

    @property
    def udp(self) -> bool:
        return self is not Mode.TCP_ONLY


@dataclass
class ServerOptions:
    """Settings gathered from the command line."""

    hosts: list[str | None] = field(default_factory=list)
    port: str | None = None
    password: str | None = None
    method: str = DEFAULT_METHOD
    timeout: int = DEFAULT_TIMEOUT
    protocol: str | None = None
    protocol_param: str | None = None
    obfs: str | None = None
    obfs_param: str | None = None
    protocol_compatible: bool = False
    obfs_compatible: bool = False
    bind_address: str | None = None
    pid_path: str | None = None
    conf_path: str | None = None
    iface: str | None = None
    nameservers: list[str] = field(default_factory=list)
    user: str | None = None
    nofile: int = 0
    mode: Mode = Mode.TCP_ONLY
    verbose: bool = False
    auth: bool = False
    ipv6_first: bool = False
    fast_open: bool = False
    acl_path: str | None = None
    manager_address: str | None = None
    mtu: int = 0
    mptcp: bool = False
    firewall: bool = False
    help: bool = False

    @property
    def daemonize(self) -> bool:
        return self.pid_path is not None


def _atoi(text: str) -> int:
    match = re.match(r"\s*([+-]?\d+)", text)
    return int(match.group(1)) if match else 0


def strip_compatible(name: str | None) -> tuple[str | None, bool]:
    """Remove a trailing ``_compatible`` from a plugin name.

    Returns the bare name and whether the suffix was present. A name that
    is nothing but the suffix is left alone.
    """
    if name is not None and len(name) > len(_COMPATIBLE_SUFFIX) and name.endswith(
        _COMPATIBLE_SUFFIX
    ):
        return name[: -len(_COMPATIBLE_SUFFIX)], True
    return name, False


def parse_args(argv: list[str] | None = None) -> ServerOptions:
    """Parse server arguments (without the program name).

    Raises UsageError on an unknown option, a missing option argument, or
    when the port or password is absent and no configuration file is given.
    """
    argv = list(argv or [])
    try:
        pairs, _rest = getopt.gnu_getopt(argv, _SHORT_OPTIONS, _LONG_OPTIONS)
    except getopt.GetoptError as exc:
        raise UsageError(f"Unrecognized option: {exc.opt}") from exc

    opts = ServerOptions()
    for name, value in pairs:
        if name == "--fast-open":
            opts.fast_open = True
        elif name == "--acl":
            opts.acl_path = value
        elif name == "--manager-address":
            opts.manager_address = value
        elif name == "--mtu":
            opts.mtu = _atoi(value)
        elif name in ("--help", "-h"):
            opts.help = True
        elif name == "--mptcp":
            opts.mptcp = True
        elif name == "--firewall":
            opts.firewall = True
        elif name == "-s":
            if len(opts.hosts) < MAX_REMOTE_NUM:
                opts.hosts.append(value)
        elif name == "-b":
            opts.bind_address = value
        elif name == "-p":
            opts.port = value
        elif name == "-k":
            opts.password = value
        elif name == "-f":
            opts.pid_path = value
        elif name == "-t":
            opts.timeout = _atoi(value)
        elif name == "-O":
            opts.protocol = value
        elif name == "-m":
            opts.method = value
        elif name == "-o":
            opts.obfs = value
        elif name == "-G":
            opts.protocol_param = value
        elif name == "-g":
            opts.obfs_param = value
        elif name == "-c":
            opts.conf_path = value
        elif name == "-i":
            opts.iface = value
        elif name == "-d":
            if len(opts.nameservers) < MAX_DNS_NUM:
                opts.nameservers.append(value)
        elif name == "-a":
            opts.user = value
        elif name == "-n":
            opts.nofile = _atoi(value)
        elif name == "-u":
            opts.mode = Mode.TCP_AND_UDP
        elif name == "-U":
            opts.mode = Mode.UDP_ONLY
        elif name == "-v":
            opts.verbose = True
        elif name == "-A":
            opts.auth = True
        elif name == "-6":
            opts.ipv6_first = True

    if opts.help:
        return opts

    opts.protocol, opts.protocol_compatible = strip_compatible(opts.protocol)
    opts.obfs, opts.obfs_compatible = strip_compatible(opts.obfs)

    if not opts.hosts:
        opts.hosts.append(None)

    if opts.conf_path is None and (opts.port is None or opts.password is None):
        raise UsageError("server port and password are required")

    if opts.protocol == "verify_sha1":
        opts.auth = True
        opts.protocol = None

    return opts