# © Copyright 2025 Stuart Parmenter
# SPDX-License-Identifier: MIT

import time
from collections.abc import Callable


class FramePacer:
    """Wall-clock tick schedule for the sender, with a bounded frame-skip policy.

    Ticks are scheduled at ``start + k * interval`` on the sender's own clock.
    When capture+send overruns a tick the next frame goes out immediately. When
    the sender falls more than ``max_lag_ticks`` ticks behind, whole ticks are
    skipped without capturing until it is back within the bound, so lag never
    grows without limit under sustained overload.
    """

    def __init__(self, fps: float, max_lag_ticks: int = 3, clock: Callable[[], float] = time.monotonic):
        if fps <= 0:
            raise ValueError(f"fps must be positive, got {fps}")
        self.interval = 1.0 / fps
        self.max_lag_ticks = max(1, int(max_lag_ticks))
        self.clock = clock
        self.next_tick: float | None = None
        self.skipped = 0
        self.sent = 0

    def start(self) -> None:
        self.next_tick = self.clock()

    def _require_started(self) -> float:
        if self.next_tick is None:
            self.start()
        assert self.next_tick is not None
        return self.next_tick

    def delay(self) -> float:
        """Seconds to sleep before the next tick; zero when already late."""
        return max(0.0, self._require_started() - self.clock())

    def lag(self) -> float:
        """Seconds the current tick is overdue (negative when early)."""
        return self.clock() - self._require_started()

    @property
    def lag_ticks(self) -> float:
        return self.lag() / self.interval

    def should_skip(self) -> bool:
        return self.lag() > self.max_lag_ticks * self.interval

    def skip(self) -> None:
        """Give up the current tick without capturing."""
        self.next_tick = self._require_started() + self.interval
        self.skipped += 1

    def advance(self) -> None:
        """Mark the current tick as sent."""
        self.next_tick = self._require_started() + self.interval
        self.sent += 1
