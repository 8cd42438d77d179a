# ssrelay

Building blocks for a Shadowsocks-style relay server, using only the
standard library:

- `ssrelay.sni`: finds the server name (SNI) in a TLS ClientHello.
- `ssrelay.addressing`: parses and builds the relay address header
  (`ATYP | DST.ADDR | DST.PORT`), including the one-time-auth variant.
- `ssrelay.tls_ticket`: the `tls1.2_ticket_auth` obfuscation, which dresses
  a relay stream up as a TLS 1.2 session.
- `ssrelay.options`: command-line option parsing for a relay server.
- `ssrelay.stats`: traffic counters and the `stat: {"port":bytes}` report
  sent to a manager over UDP or a Unix datagram socket.

## Reading the SNI of a ClientHello

```python
from ssrelay.sni import (
    parse_tls_header,
    IncompleteRequestError,
    NoHostnameError,
    InvalidClientHelloError,
)

try:
    hostname = parse_tls_header(data)
except IncompleteRequestError:
    ...  # the TLS record is not complete yet; read more bytes
except NoHostnameError:
    ...  # a valid handshake without a server name (or SSL 2.0 / 3.0)
except InvalidClientHelloError:
    ...  # not a TLS ClientHello
```

All three errors derive from `SniError`, itself a `ValueError`. The first
`host_name` entry of the server name extension is returned as a string.

## Address headers

```python
from ssrelay.addressing import (
    build_address_header,
    parse_address_header,
    header_status,
    HeaderStatus,
)

header = build_address_header("example.com", 443)
assert header_status(header) is HeaderStatus.COMPLETE
parsed = parse_address_header(header)
print(parsed.host, parsed.port, parsed.length, parsed.needs_resolve)
```

- `build_address_header(host, port)` encodes IP literals as IPv4 or IPv6
  addresses and anything else as a domain name.
- `parse_address_header(data)` returns an `AddressHeader` with `atyp`
  (an `AddressType`), `host`, `port`, `length` (bytes used, including any
  one-time-auth tag), `one_time_auth` and `auth_tag`; its `family` property
  gives the socket family of an IP host, or None when the host is a name
  that must be resolved.
- `header_status(data, auth=False)` tells whether a buffer already holds a
  whole header; with `auth` true, or when the type byte carries the
  `ONETIMEAUTH_FLAG` bit, room for the 10-byte tag is required too.
- `parse_header_len(atyp, data, offset)` gives the length of the address
  and port that follow the type byte.
- `format_address(host, port)` renders `host:port`, bracketing IPv6 hosts.

Malformed headers, unknown address types and invalid host names raise
`HeaderError`.

## TLS 1.2 ticket obfuscation

`TicketAuth` wraps one connection's end; `TicketAuthGlobal` is shared by all
connections of one side and remembers recent client handshakes (22 by
default) so that a replayed hello is refused. `ServerInfo` carries the
`key`, `host`, `port` and `param` the obfuscator uses: on the client,
`param` (or else `host`) is a comma-separated list of names to pick the
SNI from; on the server, a positive integer `param` is the largest clock
difference in seconds accepted from a client.

Encoding methods take bytes and return bytes. Decoding methods return
`(payload, send_back)`; when `send_back` is true the caller answers by
encoding empty data. Data that does not check out raises `ObfsError`.

```python
from ssrelay.tls_ticket import ServerInfo, TicketAuth, TicketAuthGlobal

client = TicketAuth(ServerInfo(key=b"secret", host="example.com"), TicketAuthGlobal())
server = TicketAuth(ServerInfo(key=b"secret"), TicketAuthGlobal())

hello = client.client_encode(b"payload")      # ClientHello; payload is held back
_, send_back = server.server_decode(hello)     # send_back is True
reply = server.server_encode(b"")              # ServerHello + Finished
_, send_back = client.client_decode(reply)     # send_back is True
finished = client.client_encode(b"")           # Finished + held-back data
payload, _ = server.server_decode(finished)    # b"payload"
```

After the handshake every payload travels in TLS application-data records;
payloads of 1024 bytes or more are split across several records.

## Options

`ssrelay.options.parse_args(argv)` reads server arguments (without the
program name) and returns a `ServerOptions`. It accepts the short options
`-s -p -k -m -t -O -o -G -g -b -c -i -d -a -n -f -u -U -v -A -6 -h` and the
long options `--fast-open`, `--acl`, `--manager-address`, `--mtu`,
`--mptcp`, `--firewall` and `--help`. It raises `UsageError` on an unknown
option, or when the port or password is missing and no configuration file
is named with `-c`. A protocol or obfs name ending in `_compatible` has the
suffix removed and the matching `*_compatible` flag set (see
`strip_compatible`); the protocol `verify_sha1` turns on `auth` instead.
`Mode` says whether TCP, UDP or both are relayed.

## Traffic statistics

`TrafficCounter` keeps thread-safe `tx` and `rx` byte counts.
`send_stat(manager_address, port, total)` sends one report and returns the
datagram sent: to a UDP `host:port` (IPv6 hosts in brackets), or, when the
address has no port, to a Unix datagram socket at that path, binding the
client end to `/tmp/shadowsocks.<port>`. It raises `OSError` on failure.
`format_stat` and `parse_manager_address` expose the formatting and
address splitting on their own.

## What the package does not do

The package has no relay server and no command to start one: it does not
accept connections, encrypt or decrypt the stream, resolve destinations or
pipe data. It also has no UDP relay, no reading of configuration files
named with `-c`, and no access-control or block lists. These pieces are
meant to be used by a program that provides those parts.

## Tests

The test suite uses pytest and pytest-asyncio, installed with the `test`
extra.