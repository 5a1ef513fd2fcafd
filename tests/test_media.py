# © Copyright 2025 Stuart Parmenter
# SPDX-License-Identifier: MIT

import pytest
from PIL import Image

from screenshare.exceptions import ScreenShareError
from screenshare.media.capture import ImageCapture, PatternCapture
from screenshare.media.display import NullDisplay, SnapshotDisplay
from screenshare.media.processing import fit_to_rgb_bytes, make_test_pattern, rgb_bytes_to_image
from screenshare.media.protocol import CaptureFactory, DisplayFactory
from screenshare.streaming.wire import SessionHandshake


def test_pattern_moves_between_frames():
    capture = PatternCapture(64, 32)
    first = capture.capture_frame()
    second = capture.capture_frame()
    assert len(first) == len(second) == 64 * 32 * 3
    assert first != second


def test_test_pattern_is_deterministic():
    assert make_test_pattern(16, 8, 3) == make_test_pattern(16, 8, 3)


@pytest.mark.parametrize("fit", ["pad", "cover", "stretch"])
def test_fit_produces_exact_geometry(fit):
    img = Image.new("RGBA", (300, 100), (255, 0, 0, 255))
    data = fit_to_rgb_bytes(img, (64, 48), fit)
    assert len(data) == 64 * 48 * 3


def test_pad_letterboxes_in_black():
    img = Image.new("RGB", (200, 50), (255, 255, 255))
    out = rgb_bytes_to_image(fit_to_rgb_bytes(img, (40, 40), "pad"), 40, 40)
    assert out.getpixel((20, 0)) == (0, 0, 0)
    assert out.getpixel((20, 20)) == (255, 255, 255)


def test_image_capture_from_file(tmp_path):
    path = tmp_path / "still.png"
    Image.new("RGB", (10, 10), (0, 128, 255)).save(path)

    capture = CaptureFactory.create(str(path), 10, 10)
    assert isinstance(capture, ImageCapture)
    assert capture.capture_frame() == bytes([0, 128, 255]) * 100


def test_image_capture_rejects_missing_file(tmp_path):
    with pytest.raises(ScreenShareError):
        CaptureFactory.create(str(tmp_path / "nope.png"), 10, 10)


def test_factories_know_builtin_collaborators():
    assert {"screen", "pattern", "image"} <= set(CaptureFactory.list_sources())
    assert {"null", "snapshot"} <= set(DisplayFactory.list_displays())
    assert isinstance(CaptureFactory.create("pattern", 8, 8), PatternCapture)
    assert isinstance(DisplayFactory.create("null"), NullDisplay)
    with pytest.raises(ValueError):
        DisplayFactory.create("hologram")


def test_snapshot_display_writes_every_nth_frame(tmp_path):
    display = SnapshotDisplay(snapshot_dir=str(tmp_path / "shots"), snapshot_every=2)
    display.open(SessionHandshake(8, 4, 30))
    frame = make_test_pattern(8, 4, 0)
    for _ in range(5):
        display.render_frame(frame, 8, 4)
    display.close()

    files = sorted(p.name for p in (tmp_path / "shots").iterdir())
    assert files == ["frame_001_000000.png", "frame_001_000002.png", "frame_001_000004.png"]
    with Image.open(tmp_path / "shots" / files[0]) as img:
        assert img.size == (8, 4)
        assert img.tobytes() == frame


def test_null_display_counts_frames():
    display = NullDisplay()
    display.open(SessionHandshake(2, 2, 30))
    display.render_frame(bytes(12), 2, 2)
    assert display.frames == 1
    assert display.size == (2, 2)
