# © Copyright 2025 Stuart Parmenter
# SPDX-License-Identifier: MIT

"""Error taxonomy shared by the transport, discovery and streaming layers.

These exceptions hide raw ``OSError`` / ``asyncio`` failures from upper layers so
callers can tell "cannot search" apart from "found nothing" and "peer went away"
apart from "peer broke the protocol".

Design Pattern:
    Diagnostic details are logged where the error is detected. The attributes
    carry structured data for the caller to decide what to do next (end the
    session, re-scan, re-accept), not for logging.
"""


class ScreenShareError(Exception):
    """Base exception for screen share errors.

    Attributes:
        address: Remote or local host involved, if known
        port: Port involved, if known
    """

    def __init__(self, message: str, address: str | None = None, port: int | None = None):
        super().__init__(message)
        self.address = address
        self.port = port


class NetworkError(ScreenShareError):
    """Socket create/bind/join failure.

    Raised for:
    - multicast group cannot be joined
    - discovery or streaming port cannot be bound

    Fatal to the activity that hit it. For the Scanner this is the
    "cannot search" outcome, distinct from an empty result.
    """


class ConnectError(NetworkError):
    """Stream connect was refused, unreachable or timed out."""


class ConnectionLost(ScreenShareError):
    """The peer closed or a send/receive failed in the middle of a session.

    Terminates the current session only.

    Attributes:
        received: Bytes of the pending record that had arrived
        expected: Size of the pending record
    """

    def __init__(
        self,
        message: str,
        address: str | None = None,
        port: int | None = None,
        received: int = 0,
        expected: int = 0,
    ):
        super().__init__(message, address, port)
        self.received = received
        self.expected = expected


class PeerClosed(ConnectionLost):
    """Orderly close: a zero-byte read before any byte of the record arrived."""


class TransportTimeout(ScreenShareError):
    """A bounded wait expired. Expected during polling, never an error on its own."""


class ShutdownRequested(ScreenShareError):
    """A bounded wait observed that the cancellation token was set."""


class ProtocolViolation(ScreenShareError):
    """Malformed handshake, frame size mismatch or otherwise invalid peer data.

    Ends the session as a closed-with-error session.
    """


class MalformedMessage(ProtocolViolation):
    """A discovery datagram that cannot be decoded. Always skipped, never fatal."""
