# © Copyright 2025 Stuart Parmenter
# SPDX-License-Identifier: MIT

import struct
from dataclasses import dataclass

from ..exceptions import ProtocolViolation


# RGB888, no alpha
BYTES_PER_PIXEL = 3

# Session handshake, first bytes on the stream (network byte order):
#   width:  frame width in pixels
#   height: frame height in pixels
#   fps:    sender's target frame rate
HANDSHAKE = struct.Struct("!III")

# Frame message header: payload length, then exactly that many raw bytes
FRAME_HEADER = struct.Struct("!I")

UINT32_MAX = 0xFFFFFFFF


@dataclass(frozen=True)
class SessionHandshake:
    """Frame geometry and rate, sent once by the sender at session start."""

    width: int
    height: int
    fps: int

    @property
    def frame_size(self) -> int:
        """Byte length every frame of the session must have."""
        return self.width * self.height * BYTES_PER_PIXEL

    @property
    def size(self) -> tuple[int, int]:
        return (self.width, self.height)

    def validate(self, max_frame_bytes: int | None = None) -> "SessionHandshake":
        """Raise ProtocolViolation unless every field is usable."""
        for name in ("width", "height", "fps"):
            value = getattr(self, name)
            if not 0 < value <= UINT32_MAX:
                raise ProtocolViolation(f"handshake {name}={value} out of range")
        if self.frame_size > UINT32_MAX:
            raise ProtocolViolation(f"frame size {self.frame_size} does not fit a length prefix")
        if max_frame_bytes is not None and self.frame_size > max_frame_bytes:
            raise ProtocolViolation(
                f"frame size {self.width}x{self.height} ({self.frame_size} bytes) exceeds limit {max_frame_bytes}"
            )
        return self

    def pack(self) -> bytes:
        self.validate()
        return HANDSHAKE.pack(self.width, self.height, self.fps)

    @classmethod
    def unpack(cls, raw: bytes) -> "SessionHandshake":
        if len(raw) != HANDSHAKE.size:
            raise ProtocolViolation(f"handshake must be {HANDSHAKE.size} bytes, got {len(raw)}")
        width, height, fps = HANDSHAKE.unpack(raw)
        return cls(width=width, height=height, fps=fps)

    def __str__(self) -> str:
        return f"{self.width}x{self.height}@{self.fps}"


def pack_frame_header(length: int) -> bytes:
    if not 0 <= length <= UINT32_MAX:
        raise ProtocolViolation(f"frame length {length} does not fit a length prefix")
    return FRAME_HEADER.pack(length)


def unpack_frame_header(raw: bytes) -> int:
    if len(raw) != FRAME_HEADER.size:
        raise ProtocolViolation(f"frame header must be {FRAME_HEADER.size} bytes, got {len(raw)}")
    return FRAME_HEADER.unpack(raw)[0]
