# © Copyright 2025 Stuart Parmenter
# SPDX-License-Identifier: MIT

import math
import time
from collections import deque


class RateMeter:
    """Rolling rate/jitter meter over a short timestamp window."""

    def __init__(self, window_s: float = 2.5):
        self.window_s = float(window_s)
        self.ts: deque[float] = deque()

    def tick(self, t: float) -> None:
        """Record a timestamp and evict the ones older than the window."""
        self.ts.append(t)
        cut = t - self.window_s
        while self.ts and self.ts[0] < cut:
            self.ts.popleft()

    def rate_hz(self) -> float:
        n = len(self.ts)
        if n < 2:
            return 0.0
        duration = self.ts[-1] - self.ts[0]
        return (n - 1) / duration if duration > 0 else 0.0

    def jitter_ms(self) -> float:
        """Standard deviation of the inter-arrival gaps, in milliseconds."""
        n = len(self.ts)
        if n < 3:
            return 0.0
        diffs = [self.ts[i] - self.ts[i - 1] for i in range(1, n)]
        mean = sum(diffs) / len(diffs)
        var = sum((d - mean) ** 2 for d in diffs) / (len(diffs) - 1)
        return math.sqrt(var) * 1000.0


class SessionTracker:
    """Per-session frame counters with periodic log gating."""

    def __init__(self, log_interval_s: float = 5.0):
        self.log_interval_s = log_interval_s
        self.started = time.perf_counter()
        self.last_log = self.started

        self.frame_meter = RateMeter()

        # Totals for the whole session
        self.frames = 0
        self.bytes = 0
        self.skipped = 0

        # Since the last log line
        self._interval_bytes = 0
        self._interval_skipped = 0

    def record_frame(self, byte_count: int) -> None:
        self.frame_meter.tick(time.perf_counter())
        self.frames += 1
        self.bytes += byte_count
        self._interval_bytes += byte_count

    def record_skip(self) -> None:
        self.skipped += 1
        self._interval_skipped += 1

    def should_log(self) -> bool:
        return (time.perf_counter() - self.last_log) >= self.log_interval_s

    def get_metrics_and_reset(self) -> dict:
        """Snapshot the interval metrics and start a new interval."""
        now = time.perf_counter()
        elapsed = max(now - self.last_log, 1e-6)

        metrics = {
            "fps": self.frame_meter.rate_hz(),
            "frame_jitter_ms": self.frame_meter.jitter_ms(),
            "mbps": (self._interval_bytes * 8 / 1_000_000) / elapsed,
            "skipped": self._interval_skipped,
            "frames_total": self.frames,
        }

        self._interval_bytes = 0
        self._interval_skipped = 0
        self.last_log = now

        return metrics

    @property
    def duration_s(self) -> float:
        return time.perf_counter() - self.started
