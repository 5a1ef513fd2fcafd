# © Copyright 2025 Stuart Parmenter
# SPDX-License-Identifier: MIT

import asyncio

import pytest

from fakes import FakeClock, connection_from_bytes
from screenshare.media.protocol import CaptureSource
from screenshare.streaming.pacing import FramePacer
from screenshare.streaming.session import SenderSession


class SlowCapture(CaptureSource):
    """Advances a fake clock by ``cost_s`` per capture instead of sleeping."""

    def __init__(self, width, height, clock, cost_s):
        super().__init__(width, height)
        self.clock = clock
        self.cost_s = cost_s
        self.calls = 0

    def capture_frame(self):
        self.calls += 1
        self.clock.advance(self.cost_s)
        return bytes(self.frame_size)


def test_on_time_sender_waits_for_next_tick():
    clock = FakeClock()
    pacer = FramePacer(fps=10, clock=clock)
    pacer.start()
    assert pacer.delay() == 0.0

    clock.advance(0.02)
    pacer.advance()
    assert pacer.delay() == pytest.approx(0.08)
    assert not pacer.should_skip()


def test_overrun_sends_next_frame_immediately():
    clock = FakeClock()
    pacer = FramePacer(fps=10, max_lag_ticks=3, clock=clock)
    pacer.start()
    clock.advance(0.15)
    pacer.advance()
    assert pacer.delay() == 0.0
    assert pacer.lag() == pytest.approx(0.05)
    assert not pacer.should_skip()


def test_slow_capture_skips_and_bounds_lag():
    clock = FakeClock()
    pacer = FramePacer(fps=10, max_lag_ticks=2, clock=clock)
    pacer.start()

    worst_lag = 0.0
    for _ in range(200):
        if pacer.should_skip():
            pacer.skip()
            continue
        # Capture+send costs three intervals
        clock.advance(3 * pacer.interval)
        pacer.advance()
        worst_lag = max(worst_lag, pacer.lag())

    assert pacer.skipped > 0
    assert pacer.sent > 0
    assert worst_lag <= (2 + 3) * pacer.interval + 1e-9


def test_pacer_rejects_non_positive_fps():
    with pytest.raises(ValueError):
        FramePacer(fps=0)


def test_sender_session_skips_under_sustained_overload():
    clock = FakeClock()
    capture = SlowCapture(4, 2, clock, cost_s=0.3)

    async def main():
        conn, _ = connection_from_bytes(b"", eof=False)
        pacer = FramePacer(fps=10, max_lag_ticks=2, clock=clock)
        session = SenderSession(conn, capture, fps=10, max_frames=10, pacer=pacer)
        return await session.run(), pacer

    result, pacer = asyncio.run(main())
    assert result.ok
    assert result.frames == 10
    assert capture.calls == 10
    assert result.skipped > 0
    assert result.skipped == pacer.skipped
    assert pacer.lag() <= (2 + 3) * pacer.interval + 1e-9
