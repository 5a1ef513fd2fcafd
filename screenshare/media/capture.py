# © Copyright 2025 Stuart Parmenter
# SPDX-License-Identifier: MIT

import logging
from pathlib import Path

from PIL import Image, ImageGrab, UnidentifiedImageError

from ..exceptions import ScreenShareError
from .processing import fit_to_rgb_bytes, make_test_pattern
from .protocol import CaptureSource


class ScreenCapture(CaptureSource):
    """Grabs the primary screen with Pillow and scales it to the session geometry.

    A failed grab returns the previous frame (black before the first success),
    so a capture hiccup never stalls the sender.
    """

    def __init__(self, width: int, height: int, fit: str = "pad", all_screens: bool = False):
        super().__init__(width, height)
        self.fit = fit
        self.all_screens = all_screens
        self._last = bytes(self.frame_size)
        self._failures = 0

    def capture_frame(self) -> bytes:
        try:
            img = ImageGrab.grab(all_screens=self.all_screens)
        except OSError as e:
            self._failures += 1
            # Log the first failure and then every 100th
            if self._failures == 1 or self._failures % 100 == 0:
                logging.getLogger("capture").warning(f"screen grab failed ({self._failures}x): {e}")
            return self._last

        self._last = fit_to_rgb_bytes(img, (self.width, self.height), self.fit)
        return self._last


class ImageCapture(CaptureSource):
    """Streams a still image file; decoded and scaled once."""

    def __init__(self, width: int, height: int, path: str, fit: str = "pad"):
        super().__init__(width, height)
        self.path = path
        try:
            with Image.open(Path(path)) as img:
                self._frame = fit_to_rgb_bytes(img, (width, height), fit)
        except (OSError, UnidentifiedImageError) as e:
            raise ScreenShareError(f"cannot open capture image {path}: {e}") from e
        logging.getLogger("capture").info(f"loaded {path} as {width}x{height} fit={fit}")

    def capture_frame(self) -> bytes:
        return self._frame


class PatternCapture(CaptureSource):
    """Synthetic moving test pattern; needs no display server."""

    def __init__(self, width: int, height: int, step: int = 4, **_options):
        super().__init__(width, height)
        self.step = step
        self.phase = 0

    def capture_frame(self) -> bytes:
        frame = make_test_pattern(self.width, self.height, self.phase)
        self.phase = (self.phase + self.step) % max(self.width, 1)
        return frame
