# © Copyright 2025 Stuart Parmenter
# SPDX-License-Identifier: MIT

"""SSDP-style discovery messages.

Three message kinds share one line-oriented, HTTP-like text format:

    M-SEARCH * HTTP/1.1        query, multicast by the Scanner
    HTTP/1.1 200 OK            response, unicast by a receiver to the querier
    NOTIFY * HTTP/1.1          announce, multicast periodically by a receiver

Parsing is tolerant: header names are case-insensitive, unknown headers are
kept but ignored, lines without a colon are skipped, and bare LF line endings
are accepted. Everything here is pure so it can be unit tested without sockets.
"""

import enum
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from urllib.parse import urlsplit

from ..exceptions import MalformedMessage


SSDP_ALL = "ssdp:all"
NTS_ALIVE = "ssdp:alive"
NTS_BYEBYE = "ssdp:byebye"


class MessageKind(enum.Enum):
    SEARCH = "search"
    RESPONSE = "response"
    NOTIFY = "notify"


@dataclass(frozen=True)
class SsdpMessage:
    """A parsed discovery datagram: start line plus an upper-cased header map."""

    kind: MessageKind
    start_line: str
    headers: Mapping[str, str] = field(default_factory=dict)

    def header(self, name: str) -> str | None:
        return self.headers.get(name.upper())

    @property
    def location(self) -> str | None:
        return self.header("LOCATION")

    @property
    def service_type(self) -> str | None:
        # Queries and responses carry ST, announces carry NT
        return self.header("ST") or self.header("NT")

    @property
    def usn(self) -> str | None:
        return self.header("USN")

    @property
    def nts(self) -> str | None:
        return self.header("NTS")

    @property
    def max_age(self) -> int | None:
        cache_control = self.header("CACHE-CONTROL")
        if not cache_control:
            return None
        for directive in cache_control.split(","):
            name, _, value = directive.strip().partition("=")
            if name.strip().lower() == "max-age":
                try:
                    return int(value.strip())
                except ValueError:
                    return None
        return None

    @property
    def mx(self) -> int | None:
        value = self.header("MX")
        if value is None:
            return None
        try:
            return int(value)
        except ValueError:
            return None


@dataclass(frozen=True)
class DiscoveredEndpoint:
    """A receiver found by one scan. Immutable; valid only for that scan."""

    address: str
    port: int
    service_id: str = ""

    def __str__(self) -> str:
        return f"{self.address}:{self.port}"


def _classify(start_line: str) -> MessageKind:
    parts = start_line.split()
    if len(parts) >= 2 and parts[0].upper().startswith("HTTP/"):
        if parts[1] == "200":
            return MessageKind.RESPONSE
        raise MalformedMessage(f"non-success status line: {start_line!r}")
    if len(parts) == 3 and parts[2].upper().startswith("HTTP/"):
        method = parts[0].upper()
        if method == "M-SEARCH":
            return MessageKind.SEARCH
        if method == "NOTIFY":
            return MessageKind.NOTIFY
    raise MalformedMessage(f"unknown start line: {start_line!r}")


def parse_message(data: bytes) -> SsdpMessage:
    """Parse one discovery datagram.

    Raises MalformedMessage for undecodable bytes or an unrecognized start line.
    """
    try:
        text = data.decode("ascii")
    except UnicodeDecodeError as e:
        raise MalformedMessage(f"non-ASCII datagram: {e}") from e

    lines = text.replace("\r\n", "\n").split("\n")
    start_line = lines[0].strip() if lines else ""
    if not start_line:
        raise MalformedMessage("empty datagram")

    kind = _classify(start_line)

    headers: dict[str, str] = {}
    for line in lines[1:]:
        if not line.strip():
            # Blank line terminates the header block
            break
        name, sep, value = line.partition(":")
        if not sep or not name.strip():
            continue
        # First occurrence wins
        headers.setdefault(name.strip().upper(), value.strip())

    return SsdpMessage(kind=kind, start_line=start_line, headers=headers)


def parse_location(url: str | None, default_port: int) -> tuple[str, int] | None:
    """Extract ``(host, port)`` from a LOCATION value like ``http://10.0.0.5:8081/``.

    The trailing path and the explicit port are both optional; ``default_port``
    applies when the port is omitted. Returns None when the value is unusable.
    """
    if not url:
        return None
    url = url.strip()
    if "://" not in url:
        return None

    try:
        parts = urlsplit(url)
        host = parts.hostname
        port = parts.port
    except ValueError:
        return None

    if not host:
        return None
    if port is None:
        port = default_port
    if not 0 < port < 65536:
        return None
    return host, port


def endpoint_from_message(message: SsdpMessage, default_port: int) -> DiscoveredEndpoint | None:
    """Project a response/announce onto a DiscoveredEndpoint, or None if it lacks a usable LOCATION."""
    loc = parse_location(message.location, default_port)
    if loc is None:
        return None
    host, port = loc
    return DiscoveredEndpoint(address=host, port=port, service_id=message.usn or "")


def format_location(host: str, port: int, scheme: str = "http") -> str:
    return f"{scheme}://{host}:{port}/"


def make_usn(instance_id: str, service_type: str) -> str:
    return f"uuid:{instance_id}::{service_type}"


def _render(start_line: str, headers: Iterable[tuple[str, str | int]]) -> bytes:
    lines = [start_line]
    lines.extend(f"{name}: {value}" for name, value in headers)
    return ("\r\n".join(lines) + "\r\n\r\n").encode("ascii")


def build_search(service_type: str, group: str, port: int, mx: int = 3) -> bytes:
    return _render(
        "M-SEARCH * HTTP/1.1",
        [
            ("HOST", f"{group}:{port}"),
            ("MAN", '"ssdp:discover"'),
            ("MX", mx),
            ("ST", service_type),
        ],
    )


def build_response(location: str, service_type: str, usn: str, max_age: int = 1800) -> bytes:
    return _render(
        "HTTP/1.1 200 OK",
        [
            ("CACHE-CONTROL", f"max-age={max_age}"),
            ("EXT", ""),
            ("LOCATION", location),
            ("ST", service_type),
            ("USN", usn),
        ],
    )


def build_notify(
    location: str,
    service_type: str,
    usn: str,
    group: str,
    port: int,
    max_age: int = 1800,
    nts: str = NTS_ALIVE,
) -> bytes:
    return _render(
        "NOTIFY * HTTP/1.1",
        [
            ("HOST", f"{group}:{port}"),
            ("CACHE-CONTROL", f"max-age={max_age}"),
            ("LOCATION", location),
            ("NT", service_type),
            ("NTS", nts),
            ("USN", usn),
        ],
    )


def format_endpoint_list(endpoints: list[DiscoveredEndpoint]) -> str:
    """Numbered listing for user selection, e.g. ``[0] 192.168.1.100:8081``."""
    return "\n".join(f"[{i}] {ep}" for i, ep in enumerate(endpoints))
