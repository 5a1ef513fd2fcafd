# © Copyright 2025 Stuart Parmenter
# SPDX-License-Identifier: MIT

import asyncio
import enum
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass

from ..config import Config
from ..exceptions import (
    ConnectionLost,
    PeerClosed,
    ProtocolViolation,
    ShutdownRequested,
    TransportTimeout,
)
from ..media.protocol import CaptureSource, FrameSink
from ..net.stream import Connection, is_benign_disconnect
from ..utils.cancel import CancellationToken
from ..utils.metrics import SessionTracker
from .pacing import FramePacer
from .wire import FRAME_HEADER, HANDSHAKE, SessionHandshake, pack_frame_header, unpack_frame_header


class SessionState(enum.Enum):
    CONNECTED = "connected"
    HANDSHAKE_SENT = "handshake_sent"
    HANDSHAKE_RECEIVED = "handshake_received"
    STREAMING = "streaming"
    CLOSED = "closed"


class SessionOutcome(enum.Enum):
    NORMAL = "normal"
    ERROR = "error"


@dataclass
class SessionResult:
    """How a session ended and what it moved."""

    outcome: SessionOutcome
    reason: str
    frames: int = 0
    bytes: int = 0
    skipped: int = 0
    handshake: SessionHandshake | None = None
    duration_s: float = 0.0

    @property
    def ok(self) -> bool:
        return self.outcome is SessionOutcome.NORMAL


class StreamingSession(ABC):
    """One sender-to-receiver conversation from handshake to teardown.

    The session exclusively owns its connection and closes it on every exit
    path. ``run()`` never raises for transport or protocol failures; they end
    the session and are reported in the returned SessionResult.
    """

    role = "session"

    def __init__(self, conn: Connection, token: CancellationToken | None = None):
        self.conn = conn
        self.token = token or CancellationToken()
        self.state = SessionState.CONNECTED
        self.handshake: SessionHandshake | None = None

        app_config = Config()
        self.log_metrics = bool(app_config.get("log.metrics"))
        self.tracker = SessionTracker(log_interval_s=app_config.get("log.rate_ms") / 1000.0)

    @property
    def peer_str(self) -> str:
        return f"{self.conn.peer[0]}:{self.conn.peer[1]}"

    def _transition(self, state: SessionState) -> None:
        logging.getLogger(self.role).debug(f"{self.peer_str} {self.state.value} -> {state.value}")
        self.state = state

    async def run(self) -> SessionResult:
        logger = logging.getLogger(self.role)
        outcome = SessionOutcome.ERROR
        try:
            reason = await self._run()
            outcome = SessionOutcome.NORMAL
        except ShutdownRequested:
            reason = "shutdown"
            outcome = SessionOutcome.NORMAL
        except ProtocolViolation as e:
            reason = f"protocol violation: {e}"
            logger.warning(f"{self.peer_str} {reason}")
        except ConnectionLost as e:
            reason = f"connection lost: {e}"
            if isinstance(e.__cause__, BaseException) and is_benign_disconnect(e.__cause__):
                logger.info(f"{self.peer_str} {reason}")
            else:
                logger.warning(f"{self.peer_str} {reason}")
        except TransportTimeout as e:
            reason = f"timeout: {e}"
            logger.warning(f"{self.peer_str} {reason}")
        except Exception as e:
            # Capture/display collaborator failures end this session only
            reason = f"error: {e!r}"
            logger.error(f"{self.peer_str} session error: {e!r}")
        finally:
            await self.conn.close()
            self._transition(SessionState.CLOSED)
            self._on_closed()

        result = SessionResult(
            outcome=outcome,
            reason=reason,
            frames=self.tracker.frames,
            bytes=self.tracker.bytes,
            skipped=self.tracker.skipped,
            handshake=self.handshake,
            duration_s=self.tracker.duration_s,
        )
        logger.info(
            f"{self.peer_str} closed ({outcome.value}: {reason}) frames={result.frames} "
            f"bytes={result.bytes} skipped={result.skipped} secs={result.duration_s:.1f}"
        )
        return result

    @abstractmethod
    async def _run(self) -> str:
        """Drive the session. Returns the reason for a normal close."""
        pass

    def _on_closed(self) -> None:
        """Release collaborators. Called once, after the connection is closed."""
        pass

    def _maybe_log_metrics(self) -> None:
        if not self.log_metrics or not self.tracker.should_log():
            return
        m = self.tracker.get_metrics_and_reset()
        logging.getLogger(self.role).info(
            f"{self.peer_str} {self.handshake} fps={m['fps']:.2f} frm_jit={m['frame_jitter_ms']:.1f}ms "
            f"mbps={m['mbps']:.1f} skipped={m['skipped']} total={m['frames_total']}"
        )


class SenderSession(StreamingSession):
    """Capturing side: send the handshake, then one paced frame per tick."""

    role = "sender"

    def __init__(
        self,
        conn: Connection,
        capture: CaptureSource,
        fps: int,
        token: CancellationToken | None = None,
        *,
        max_frames: int | None = None,
        max_lag_ticks: int = 3,
        pacer: FramePacer | None = None,
    ):
        super().__init__(conn, token)
        self.capture = capture
        self.fps = fps
        self.max_frames = max_frames
        self.pacer = pacer or FramePacer(fps, max_lag_ticks)

    async def _run(self) -> str:
        handshake = SessionHandshake(self.capture.width, self.capture.height, self.fps).validate()
        self.handshake = handshake

        await self.conn.send_all(handshake.pack())
        self._transition(SessionState.HANDSHAKE_SENT)
        logging.getLogger(self.role).info(f"{self.peer_str} streaming {handshake}")

        self._transition(SessionState.STREAMING)
        pacer = self.pacer
        pacer.start()

        while self.max_frames is None or self.tracker.frames < self.max_frames:
            if await self.token.wait(pacer.delay()):
                return "shutdown"

            if pacer.should_skip():
                pacer.skip()
                self.tracker.record_skip()
                logging.getLogger("pacing").debug(f"{self.peer_str} behind by {pacer.lag_ticks:.1f} ticks, skipping")
                continue

            frame = await asyncio.to_thread(self.capture.capture_frame)
            if len(frame) != handshake.frame_size:
                raise ProtocolViolation(
                    f"captured {len(frame)} bytes, handshake declared {handshake.frame_size}"
                )

            await self.conn.send_all(pack_frame_header(len(frame)))
            await self.conn.send_all(frame)

            pacer.advance()
            self.tracker.record_frame(len(frame))
            self._maybe_log_metrics()

        return "completed"


class ReceiverSession(StreamingSession):
    """Displaying side: read the handshake, then validate and render every frame."""

    role = "receiver"

    def __init__(
        self,
        conn: Connection,
        display: FrameSink,
        token: CancellationToken | None = None,
        *,
        handshake_timeout_s: float | None = 5.0,
        frame_timeout_s: float | None = 10.0,
        idle_timeout_s: float | None = None,
        max_frame_bytes: int | None = None,
        poll_s: float = 0.5,
    ):
        super().__init__(conn, token)
        self.display = display
        self.handshake_timeout_s = handshake_timeout_s
        self.frame_timeout_s = frame_timeout_s
        self.idle_timeout_s = idle_timeout_s
        self.max_frame_bytes = max_frame_bytes
        self.poll_s = poll_s
        self._display_open = False

    async def _receive(self, n: int, timeout: float | None) -> bytes:
        return await self.conn.receive_exact(n, timeout=timeout, token=self.token, poll_s=self.poll_s)

    async def _run(self) -> str:
        try:
            raw = await self._receive(HANDSHAKE.size, self.handshake_timeout_s)
        except PeerClosed:
            # Reachability probes connect and close without a handshake
            return "closed before handshake"

        handshake = SessionHandshake.unpack(raw).validate(self.max_frame_bytes)
        self.handshake = handshake
        self._transition(SessionState.HANDSHAKE_RECEIVED)
        logging.getLogger(self.role).info(f"{self.peer_str} handshake {handshake}")

        self.display.open(handshake)
        self._display_open = True

        self._transition(SessionState.STREAMING)
        expected = handshake.frame_size

        while True:
            try:
                header = await self._receive(FRAME_HEADER.size, self.idle_timeout_s)
            except PeerClosed:
                return "peer closed"

            length = unpack_frame_header(header)
            if length != expected:
                raise ProtocolViolation(f"frame length {length} != {handshake.width}x{handshake.height}x3 ({expected})")

            frame = await self._receive(length, self.frame_timeout_s)
            self.tracker.record_frame(length)
            self.display.render_frame(frame, handshake.width, handshake.height)
            self._maybe_log_metrics()

    def _on_closed(self) -> None:
        if self._display_open:
            self._display_open = False
            try:
                self.display.close()
            except Exception as e:
                logging.getLogger(self.role).error(f"display close error: {e!r}")
