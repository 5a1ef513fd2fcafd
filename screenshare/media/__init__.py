# © Copyright 2025 Stuart Parmenter
# SPDX-License-Identifier: MIT

"""Capture and display collaborators for the streaming sessions."""

from .capture import ImageCapture, PatternCapture, ScreenCapture
from .display import CallbackDisplay, NullDisplay, SnapshotDisplay
from .processing import fit_to_rgb_bytes, make_test_pattern, rgb_bytes_to_image
from .protocol import CaptureFactory, CaptureSource, DisplayFactory, FrameSink


__all__ = [
    "CallbackDisplay",
    "CaptureFactory",
    "CaptureSource",
    "DisplayFactory",
    "FrameSink",
    "ImageCapture",
    "NullDisplay",
    "PatternCapture",
    "ScreenCapture",
    "SnapshotDisplay",
    "fit_to_rgb_bytes",
    "make_test_pattern",
    "rgb_bytes_to_image",
]
