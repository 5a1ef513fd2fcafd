# © Copyright 2025 Stuart Parmenter
# SPDX-License-Identifier: MIT

import contextlib
import socket


def local_address_for(peer_ip: str | None = None) -> str:
    """Return the local IPv4 address the OS would use to reach ``peer_ip``.

    Connecting a UDP socket sends nothing; it only asks the routing table which
    interface to use. Falls back to the hostname lookup, then loopback.
    """
    target = peer_ip or "10.255.255.255"
    s = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    try:
        s.connect((target, 1))
        ip = s.getsockname()[0]
        if ip and ip != "0.0.0.0":
            return ip
    except OSError:
        pass
    finally:
        s.close()

    with contextlib.suppress(OSError):
        return socket.gethostbyname(socket.gethostname())
    return "127.0.0.1"


def split_host_port(value: str, default_port: int) -> tuple[str, int]:
    """Split ``host`` or ``host:port`` into a tuple, applying ``default_port``."""
    host, sep, port_s = value.rpartition(":")
    if not sep:
        return value, default_port
    try:
        port = int(port_s)
    except ValueError:
        raise ValueError(f"Invalid port in {value!r}")
    if not 0 < port < 65536:
        raise ValueError(f"Port out of range in {value!r}")
    return host, port
