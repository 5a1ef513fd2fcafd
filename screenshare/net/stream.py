# © Copyright 2025 Stuart Parmenter
# SPDX-License-Identifier: MIT

import asyncio
import contextlib
import logging
import socket
from typing import TYPE_CHECKING

from ..exceptions import (
    ConnectError,
    ConnectionLost,
    NetworkError,
    PeerClosed,
    ShutdownRequested,
    TransportTimeout,
)


if TYPE_CHECKING:
    from ..utils.cancel import CancellationToken


# Upper bound on any single wait inside receive_exact when a token is given,
# so a cancelled token is noticed even while the peer is silent.
DEFAULT_POLL_S = 0.5


def is_benign_disconnect(exc: BaseException) -> bool:
    """Check if an exception represents a peer going away rather than a local fault."""
    if isinstance(exc, OSError) and getattr(exc, "winerror", None) in (64, 121):
        return True
    return isinstance(exc, (ConnectionResetError, ConnectionAbortedError, BrokenPipeError))


class Connection:
    """Reliable byte stream to one peer.

    Wraps an asyncio reader/writer pair. Only the session that owns the
    connection may read or write it.
    """

    def __init__(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter, peer: tuple[str, int] | None = None):
        self._reader = reader
        self._writer = writer
        if peer is None:
            peer = writer.get_extra_info("peername") or ("?", 0)
        self.peer: tuple[str, int] = (peer[0], peer[1])
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def __repr__(self) -> str:
        return f"Connection(peer={self.peer[0]}:{self.peer[1]}, closed={self._closed})"

    async def send_all(self, data: bytes) -> None:
        """Hand every byte to the transport and wait for the buffer to drain.

        Any failure is fatal for the connection: raises ConnectionLost, no retry.
        """
        if self._closed or self._writer.is_closing():
            raise ConnectionLost("connection already closed", *self.peer)
        try:
            self._writer.write(data)
            await self._writer.drain()
        except (ConnectionError, OSError) as e:
            raise ConnectionLost(f"send failed: {e!r}", *self.peer) from e

    async def receive_exact(
        self,
        n: int,
        timeout: float | None = None,
        token: "CancellationToken | None" = None,
        poll_s: float = DEFAULT_POLL_S,
    ) -> bytes:
        """Read exactly ``n`` bytes, looping over partial reads.

        Raises:
            PeerClosed: zero-byte read before any of the ``n`` bytes arrived
            ConnectionLost: the stream ended or failed part way through
            TransportTimeout: ``timeout`` seconds passed without completing
            ShutdownRequested: ``token`` was cancelled while waiting
        """
        if n <= 0:
            return b""

        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout if timeout is not None else None

        buf = bytearray(n)
        received = 0

        while received < n:
            if token is not None and token.cancelled:
                raise ShutdownRequested("shutdown requested during receive", *self.peer)

            wait_s = poll_s if token is not None else None
            if deadline is not None:
                remaining = deadline - loop.time()
                if remaining <= 0:
                    raise TransportTimeout(f"timed out after {received}/{n} bytes", *self.peer)
                wait_s = remaining if wait_s is None else min(wait_s, remaining)

            try:
                if wait_s is None:
                    chunk = await self._reader.read(n - received)
                else:
                    chunk = await asyncio.wait_for(self._reader.read(n - received), wait_s)
            except asyncio.TimeoutError:
                # Loop back to re-check the token and the deadline
                continue
            except (ConnectionError, OSError) as e:
                raise ConnectionLost(f"receive failed: {e!r}", *self.peer, received=received, expected=n) from e

            if not chunk:
                if received == 0:
                    raise PeerClosed("peer closed the connection", *self.peer, expected=n)
                raise ConnectionLost(
                    f"peer closed after {received}/{n} bytes", *self.peer, received=received, expected=n
                )

            size = len(chunk)
            buf[received : received + size] = chunk
            received += size

        return bytes(buf)

    async def close(self) -> None:
        """Close the stream. Safe to call more than once."""
        if self._closed:
            return
        self._closed = True
        self._writer.close()
        with contextlib.suppress(Exception):
            await self._writer.wait_closed()


class Listener:
    """Listening stream socket that accepts one connection at a time.

    The backlog is tiny: while a session runs, further connects
    wait in the kernel queue (or are refused once it is full) until the
    acceptor comes back.
    """

    def __init__(self, sock: socket.socket):
        self.sock = sock
        self._closed = False

    @classmethod
    def open(cls, host: str, port: int, backlog: int = 1) -> "Listener":
        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        try:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            sock.bind((host, port))
            sock.listen(backlog)
            sock.setblocking(False)
        except OSError as e:
            sock.close()
            logging.getLogger("transport").error(f"cannot listen on {host}:{port}: {e}")
            raise NetworkError(f"cannot listen on {host}:{port}: {e}", host, port) from e
        return cls(sock)

    @property
    def port(self) -> int:
        return self.sock.getsockname()[1]

    async def accept(self, poll_timeout: float | None) -> Connection:
        """Wait up to ``poll_timeout`` seconds for a connection.

        Raises TransportTimeout if none arrived, so the caller can re-check its token.
        """
        loop = asyncio.get_running_loop()
        try:
            conn_sock, addr = await asyncio.wait_for(loop.sock_accept(self.sock), poll_timeout)
        except asyncio.TimeoutError:
            raise TransportTimeout("no connection") from None
        except OSError as e:
            raise NetworkError(f"accept failed: {e}") from e

        with contextlib.suppress(OSError):
            conn_sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)
        reader, writer = await asyncio.open_connection(sock=conn_sock)
        return Connection(reader, writer, peer=(addr[0], addr[1]))

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        with contextlib.suppress(Exception):
            self.sock.close()


async def connect_stream(address: str, port: int, timeout: float | None) -> Connection:
    """Open a stream connection, raising ConnectError on refusal or timeout."""
    try:
        reader, writer = await asyncio.wait_for(asyncio.open_connection(address, port), timeout)
    except asyncio.TimeoutError:
        raise ConnectError(f"connect to {address}:{port} timed out", address, port) from None
    except OSError as e:
        raise ConnectError(f"connect to {address}:{port} failed: {e}", address, port) from e

    sock = writer.get_extra_info("socket")
    if sock is not None:
        with contextlib.suppress(OSError):
            sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)
    return Connection(reader, writer, peer=(address, port))


async def probe(address: str, port: int, timeout: float) -> bool:
    """True if a stream connection to address:port can be opened within ``timeout``."""
    try:
        conn = await connect_stream(address, port, timeout)
    except ConnectError as e:
        logging.getLogger("transport").debug(f"probe {address}:{port} failed: {e}")
        return False
    await conn.close()
    return True
