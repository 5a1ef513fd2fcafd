# © Copyright 2025 Stuart Parmenter
# SPDX-License-Identifier: MIT

"""Glue between discovery and streaming.

Receiver side: ``ReceiverService`` runs the Advertiser and a single-session
acceptor under one cancellation token. Sender side: scan, pick an endpoint,
open a SenderSession.
"""

import asyncio
import logging
from collections.abc import Callable

from .config import Config
from .discovery.advertiser import Advertiser
from .discovery.protocol import DiscoveredEndpoint
from .discovery.scanner import Scanner
from .exceptions import NetworkError, TransportTimeout
from .media.protocol import CaptureSource, FrameSink
from .net.stream import Listener, connect_stream
from .streaming.pacing import FramePacer
from .streaming.session import ReceiverSession, SenderSession, SessionResult
from .utils.cancel import CancellationToken
from .utils.helpers import split_host_port


class ReceiverService:
    """Advertises this receiver and serves one streaming session at a time.

    A sender that connects while a session is running waits in the listen
    backlog until the current session ends.
    """

    def __init__(
        self,
        display_factory: Callable[[], FrameSink],
        *,
        host: str = "0.0.0.0",
        port: int = 8081,
        advertiser: Advertiser | None = None,
        advertise: bool = True,
        accept_poll_s: float = 1.0,
        handshake_timeout_s: float | None = 5.0,
        frame_timeout_s: float | None = 10.0,
        max_frame_bytes: int | None = None,
        token: CancellationToken | None = None,
    ):
        self.display_factory = display_factory
        self.host = host
        self.port = port
        self.advertiser = advertiser
        self.advertise = advertise
        self.accept_poll_s = accept_poll_s
        self.handshake_timeout_s = handshake_timeout_s
        self.frame_timeout_s = frame_timeout_s
        self.max_frame_bytes = max_frame_bytes
        self.token = token or CancellationToken()

        self.listener: Listener | None = None
        self._acceptor: asyncio.Task | None = None
        self.results: list[SessionResult] = []

    @classmethod
    def from_config(cls, display_factory: Callable[[], FrameSink], **overrides) -> "ReceiverService":
        cfg = Config().get("stream")
        kwargs = {
            "port": cfg["port"],
            "accept_poll_s": cfg["accept_poll_s"],
            "handshake_timeout_s": cfg["handshake_timeout_s"],
            "frame_timeout_s": cfg["frame_timeout_s"],
            "max_frame_bytes": cfg["max_frame_bytes"],
        }
        kwargs.update(overrides)
        return cls(display_factory, **kwargs)

    @property
    def bound_port(self) -> int:
        return self.listener.port if self.listener else self.port

    async def start(self) -> None:
        """Open the listener, start advertising, launch the acceptor.

        Raises NetworkError if the stream port cannot be bound or the
        discovery group cannot be joined.
        """
        self.listener = Listener.open(self.host, self.port)
        logging.getLogger("receiver").info(f"listening for senders on {self.host}:{self.listener.port}")

        if self.advertise:
            if self.advertiser is None:
                self.advertiser = Advertiser.from_config(self.listener.port)
            try:
                await self.advertiser.start(self.token)
            except NetworkError:
                self.listener.close()
                self.listener = None
                raise

        self._acceptor = asyncio.create_task(self._accept_loop(), name="receiver-acceptor")

    async def stop(self) -> None:
        """Cancel the shared token and wait for every activity to exit."""
        self.token.cancel("receiver stop")

        if self._acceptor is not None:
            try:
                await self._acceptor
            except Exception as e:
                logging.getLogger("receiver").error(f"acceptor exited with error: {e!r}")
            self._acceptor = None

        if self.advertiser is not None:
            await self.advertiser.stop()

        if self.listener is not None:
            self.listener.close()
            self.listener = None
        logging.getLogger("receiver").info("receiver stopped")

    async def serve(self) -> None:
        """Run until the token is cancelled (signal, caller, or fatal accept error)."""
        if self._acceptor is None:
            await self.start()
        try:
            await self.token.wait()
        finally:
            await self.stop()

    async def __aenter__(self) -> "ReceiverService":
        await self.start()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.stop()

    async def _accept_loop(self) -> None:
        assert self.listener is not None
        token = self.token

        while not token.cancelled:
            try:
                conn = await self.listener.accept(self.accept_poll_s)
            except TransportTimeout:
                continue
            except NetworkError as e:
                logging.getLogger("receiver").error(f"accept failed, stopping: {e}")
                token.cancel("accept failed")
                break

            logging.getLogger("receiver").info(f"sender connected from {conn.peer[0]}:{conn.peer[1]}")
            try:
                display = self.display_factory()
            except Exception as e:
                # Refuse this sender only; the next one gets a fresh attempt
                logging.getLogger("receiver").error(f"cannot create display for {conn.peer[0]}:{conn.peer[1]}: {e!r}")
                await conn.close()
                continue

            session = ReceiverSession(
                conn,
                display,
                token,
                handshake_timeout_s=self.handshake_timeout_s,
                frame_timeout_s=self.frame_timeout_s,
                max_frame_bytes=self.max_frame_bytes,
                poll_s=self.accept_poll_s,
            )
            # Served inline: no second accept until this session ends
            self.results.append(await session.run())

        logging.getLogger("receiver").debug("acceptor exited")


def select_endpoint(endpoints: list[DiscoveredEndpoint], choice: int | str | None = None) -> DiscoveredEndpoint:
    """Pick a discovered endpoint by index, by ``ip`` or ``ip:port``, or the first one.

    Raises LookupError when nothing matches.
    """
    if not endpoints:
        raise LookupError("no receivers found")
    if choice is None:
        return endpoints[0]

    if isinstance(choice, int) or (isinstance(choice, str) and choice.isdigit()):
        index = int(choice)
        if not 0 <= index < len(endpoints):
            raise LookupError(f"receiver index {index} out of range (found {len(endpoints)})")
        return endpoints[index]

    for ep in endpoints:
        if choice in (ep.address, str(ep)):
            return ep
    raise LookupError(f"receiver {choice} not among discovered receivers")


async def stream_to(
    address: str,
    port: int,
    capture: CaptureSource,
    *,
    fps: int,
    token: CancellationToken | None = None,
    max_frames: int | None = None,
    max_lag_ticks: int = 3,
    connect_timeout_s: float | None = 5.0,
) -> SessionResult:
    """Connect to a receiver and run one sender session.

    Raises ValueError for a non-positive ``fps`` before connecting, and
    ConnectError if the connection cannot be opened; every later failure is
    reported in the returned SessionResult.
    """
    pacer = FramePacer(fps, max_lag_ticks)

    conn = await connect_stream(address, port, connect_timeout_s)
    logging.getLogger("sender").info(f"connected to {address}:{port}")
    try:
        session = SenderSession(conn, capture, fps, token, max_frames=max_frames, pacer=pacer)
    except Exception:
        await conn.close()
        raise
    return await session.run()


async def scan_and_stream(
    capture: CaptureSource,
    *,
    fps: int,
    target: str | None = None,
    index: int | None = None,
    scanner: Scanner | None = None,
    window_s: float | None = None,
    probe: bool | None = None,
    token: CancellationToken | None = None,
    max_frames: int | None = None,
    max_lag_ticks: int = 3,
    connect_timeout_s: float | None = 5.0,
) -> SessionResult | None:
    """Stream to ``target`` (``ip[:port]``), or discover receivers and pick one.

    Returns None when discovery found no receivers.
    """
    # An explicit ip:port skips discovery; a bare ip selects among discovered receivers
    if target is not None and ":" in target:
        host, port = split_host_port(target, Config().get("stream.port"))
        return await stream_to(
            host, port, capture, fps=fps, token=token, max_frames=max_frames,
            max_lag_ticks=max_lag_ticks, connect_timeout_s=connect_timeout_s,
        )

    scanner = scanner or Scanner.from_config()
    endpoints = await scanner.scan(window_s, probe)
    if not endpoints:
        logging.getLogger("sender").warning("no receivers found")
        return None

    endpoint = select_endpoint(endpoints, index if index is not None else target)
    logging.getLogger("sender").info(f"selected receiver {endpoint}")
    return await stream_to(
        endpoint.address, endpoint.port, capture, fps=fps, token=token, max_frames=max_frames,
        max_lag_ticks=max_lag_ticks, connect_timeout_s=connect_timeout_s,
    )
