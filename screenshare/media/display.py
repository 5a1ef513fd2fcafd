# © Copyright 2025 Stuart Parmenter
# SPDX-License-Identifier: MIT

import logging
from collections.abc import Callable
from pathlib import Path

from .processing import rgb_bytes_to_image
from .protocol import FrameSink


class NullDisplay(FrameSink):
    """Discards frames, keeping only a count. Useful for headless receivers."""

    def __init__(self, **_options):
        self.frames = 0
        self.size: tuple[int, int] | None = None

    def open(self, handshake) -> None:
        self.frames = 0
        self.size = handshake.size

    def render_frame(self, data: bytes, width: int, height: int) -> None:
        self.frames += 1


class SnapshotDisplay(FrameSink):
    """Writes every Nth frame to ``<dir>/frame_<session>_<n>.png``."""

    def __init__(self, snapshot_dir: str = "snapshots", snapshot_every: int = 30, **_options):
        self.dir = Path(snapshot_dir)
        self.every = max(1, int(snapshot_every))
        self.frames = 0
        self.written = 0
        self.session = 0

    def open(self, handshake) -> None:
        self.dir.mkdir(parents=True, exist_ok=True)
        self.session += 1
        self.frames = 0
        logging.getLogger("display").info(f"writing every {self.every}th frame of {handshake} to {self.dir}")

    def render_frame(self, data: bytes, width: int, height: int) -> None:
        n = self.frames
        self.frames += 1
        if n % self.every:
            return
        path = self.dir / f"frame_{self.session:03d}_{n:06d}.png"
        try:
            rgb_bytes_to_image(data, width, height).save(path)
            self.written += 1
        except OSError as e:
            logging.getLogger("display").warning(f"cannot write {path}: {e}")

    def close(self) -> None:
        logging.getLogger("display").info(f"session {self.session}: {self.frames} frames, {self.written} snapshots total")


class CallbackDisplay(FrameSink):
    """Adapts a plain ``callback(data, width, height)`` to the FrameSink interface."""

    def __init__(self, callback: Callable[[bytes, int, int], None]):
        self.callback = callback

    def render_frame(self, data: bytes, width: int, height: int) -> None:
        self.callback(data, width, height)
