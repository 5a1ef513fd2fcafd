# © Copyright 2025 Stuart Parmenter
# SPDX-License-Identifier: MIT

"""Streaming session protocol.

This module handles:
- Handshake and frame message framing on the byte stream
- Wall-clock pacing with bounded frame skipping on the sender
- Sender and receiver session state machines and teardown
"""

from .pacing import FramePacer
from .session import (
    ReceiverSession,
    SenderSession,
    SessionOutcome,
    SessionResult,
    SessionState,
    StreamingSession,
)
from .wire import BYTES_PER_PIXEL, SessionHandshake, pack_frame_header, unpack_frame_header


__all__ = [
    "BYTES_PER_PIXEL",
    "FramePacer",
    "ReceiverSession",
    "SenderSession",
    "SessionHandshake",
    "SessionOutcome",
    "SessionResult",
    "SessionState",
    "StreamingSession",
    "pack_frame_header",
    "unpack_frame_header",
]
