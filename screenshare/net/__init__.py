# © Copyright 2025 Stuart Parmenter
# SPDX-License-Identifier: MIT

"""Transport primitives: multicast datagrams and reliable byte streams."""

from .multicast import MulticastEndpoint
from .stream import Connection, Listener, connect_stream, is_benign_disconnect, probe


__all__ = [
    # Streams
    "Connection",
    "Listener",
    "connect_stream",
    "is_benign_disconnect",
    "probe",
    # Datagrams
    "MulticastEndpoint",
]
