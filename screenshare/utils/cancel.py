# © Copyright 2025 Stuart Parmenter
# SPDX-License-Identifier: MIT

import asyncio


class CancellationToken:
    """Cooperative shutdown flag shared by background activities.

    Set once by whoever requests shutdown, read by every polling loop after
    each bounded wait. Setting it never interrupts an I/O call in progress.
    Must be used from the event loop thread.
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self.reason: str | None = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str = "shutdown") -> None:
        if not self._event.is_set():
            self.reason = reason
            self._event.set()

    async def wait(self, timeout: float | None = None) -> bool:
        """Wait up to ``timeout`` seconds for cancellation.

        Returns True if the token is cancelled, False if the wait timed out.
        Doubles as an interruptible sleep for periodic loops.
        """
        if self._event.is_set():
            return True
        if timeout is not None and timeout <= 0:
            return False
        try:
            await asyncio.wait_for(self._event.wait(), timeout)
        except asyncio.TimeoutError:
            return False
        return True

    def __repr__(self) -> str:
        state = f"cancelled ({self.reason})" if self.cancelled else "active"
        return f"CancellationToken({state})"
