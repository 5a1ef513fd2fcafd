# © Copyright 2025 Stuart Parmenter
# SPDX-License-Identifier: MIT

import numpy as np
from PIL import Image, ImageOps


FIT_MODES = ("pad", "cover", "stretch")


def _pick_resample(src_size: tuple[int, int], dst_size: tuple[int, int]) -> Image.Resampling:
    """Box filter for downscaling (avoids aliasing on screen text), bilinear otherwise."""
    src_w, src_h = src_size
    dst_w, dst_h = dst_size
    scale = min(dst_w / src_w, dst_h / src_h)
    return Image.Resampling.BOX if scale < 1.0 else Image.Resampling.BILINEAR


def fit_to_rgb_bytes(img: Image.Image, size: tuple[int, int], fit: str = "pad") -> bytes:
    """Resize ``img`` to ``size`` and return RGB888 bytes.

    Args:
        img: Source image, any mode
        size: Target (width, height)
        fit: "pad" letterboxes in black, "cover" crops to fill, "stretch" ignores aspect
    """
    w, h = size
    if img.mode != "RGB":
        img = img.convert("RGB")

    src_w, src_h = img.size
    if src_w == 0 or src_h == 0:
        return bytes(w * h * 3)

    if img.size == (w, h):
        return img.tobytes()

    resample = _pick_resample(img.size, (w, h))
    if fit == "cover":
        out = ImageOps.fit(img, (w, h), method=resample)
    elif fit == "stretch":
        out = img.resize((w, h), resample=resample)
    else:
        out = ImageOps.pad(img, (w, h), method=resample, color=(0, 0, 0))

    return out.tobytes()


def rgb_bytes_to_image(data: bytes, width: int, height: int) -> Image.Image:
    return Image.frombytes("RGB", (width, height), data)


def make_test_pattern(width: int, height: int, phase: int) -> bytes:
    """Color bars with a diagonal gradient that scrolls by ``phase`` pixels.

    Motion makes dropped, duplicated or reordered frames visible on the receiver.
    """
    x = (np.arange(width, dtype=np.uint32) + phase) % max(width, 1)
    y = np.arange(height, dtype=np.uint32)

    frame = np.empty((height, width, 3), dtype=np.uint8)
    bars = np.array(
        [[255, 255, 255], [255, 255, 0], [0, 255, 255], [0, 255, 0], [255, 0, 255], [255, 0, 0], [0, 0, 255], [0, 0, 0]],
        dtype=np.uint8,
    )
    bar_idx = (x * len(bars)) // max(width, 1)
    frame[:] = bars[bar_idx][np.newaxis, :, :]

    # Lower quarter: moving gradient
    start = (height * 3) // 4
    grad = ((x[np.newaxis, :] + y[start:, np.newaxis]) % 256).astype(np.uint8)
    frame[start:, :, 0] = grad
    frame[start:, :, 1] = grad
    frame[start:, :, 2] = 255 - grad

    return frame.tobytes()
