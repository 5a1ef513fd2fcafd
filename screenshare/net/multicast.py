# © Copyright 2025 Stuart Parmenter
# SPDX-License-Identifier: MIT

import asyncio
import contextlib
import logging
import socket
import struct

from ..exceptions import NetworkError, TransportTimeout


# Received datagrams waiting for a reader. Discovery traffic is tiny; if a reader
# falls this far behind the oldest datagrams are the least useful ones.
RECV_QUEUE_MAX = 256
RECV_BUFSIZE = 65535

Address = tuple[str, int]


class _DatagramQueueProtocol(asyncio.DatagramProtocol):
    """UDP protocol that hands received datagrams to an asyncio queue."""

    def __init__(self, queue: asyncio.Queue) -> None:
        self.transport: asyncio.DatagramTransport | None = None
        self.queue = queue
        self.dropped = 0

    def connection_made(self, transport: asyncio.BaseTransport) -> None:
        self.transport = transport  # type: ignore[assignment]  # always a DatagramTransport here

    def datagram_received(self, data: bytes, addr) -> None:
        if self.queue.full():
            # Drop oldest datagram to make room
            with contextlib.suppress(asyncio.QueueEmpty):
                self.queue.get_nowait()
                self.dropped += 1
        self.queue.put_nowait((data, (addr[0], addr[1])))

    def error_received(self, exc: BaseException) -> None:
        # ICMP errors from earlier sends surface here; they never end the endpoint
        logging.getLogger("transport").debug(f"datagram error_received: {exc!r}")

    def connection_lost(self, exc: BaseException | None) -> None:
        if exc:
            logging.getLogger("transport").warning(f"datagram connection_lost: {exc!r}")


class MulticastEndpoint:
    """UDP endpoint able to send to and (optionally) listen on a multicast group."""

    def __init__(self, sock: socket.socket, transport: asyncio.DatagramTransport, protocol: _DatagramQueueProtocol):
        self.sock = sock
        self.transport = transport
        self.protocol = protocol
        self._closed = False

    @classmethod
    async def open_group(cls, group: str, port: int, ttl: int = 2) -> "MulticastEndpoint":
        """Bind ``port`` with address reuse and join ``group``.

        Several local processes may hold the same group/port at once.
        Raises NetworkError if the socket cannot be bound or the group joined.
        """
        sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM, socket.IPPROTO_UDP)
        try:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            if hasattr(socket, "SO_REUSEPORT"):
                with contextlib.suppress(OSError):
                    sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEPORT, 1)
            sock.bind(("", port))
            mreq = struct.pack("4s4s", socket.inet_aton(group), socket.inet_aton("0.0.0.0"))
            sock.setsockopt(socket.IPPROTO_IP, socket.IP_ADD_MEMBERSHIP, mreq)
            sock.setsockopt(socket.IPPROTO_IP, socket.IP_MULTICAST_TTL, ttl)
        except OSError as e:
            sock.close()
            logging.getLogger("transport").error(f"cannot join multicast {group}:{port}: {e}")
            raise NetworkError(f"cannot join multicast group {group}:{port}: {e}", group, port) from e

        return await cls._wrap(sock)

    @classmethod
    async def open_sender(cls, ttl: int = 2) -> "MulticastEndpoint":
        """Ephemeral-port endpoint for sending queries and receiving unicast replies."""
        sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM, socket.IPPROTO_UDP)
        try:
            sock.setsockopt(socket.IPPROTO_IP, socket.IP_MULTICAST_TTL, ttl)
            sock.bind(("0.0.0.0", 0))
        except OSError as e:
            sock.close()
            logging.getLogger("transport").error(f"cannot open discovery socket: {e}")
            raise NetworkError(f"cannot open discovery socket: {e}") from e

        return await cls._wrap(sock)

    @classmethod
    async def _wrap(cls, sock: socket.socket) -> "MulticastEndpoint":
        loop = asyncio.get_running_loop()
        sock.setblocking(False)
        queue: asyncio.Queue = asyncio.Queue(maxsize=RECV_QUEUE_MAX)
        protocol = _DatagramQueueProtocol(queue)
        try:
            transport, _ = await loop.create_datagram_endpoint(lambda: protocol, sock=sock)
        except OSError as e:
            sock.close()
            raise NetworkError(f"cannot start datagram endpoint: {e}") from e
        return cls(sock, transport, protocol)  # type: ignore[arg-type]  # create_datagram_endpoint returns a DatagramTransport

    @property
    def local_address(self) -> Address:
        host, port = self.sock.getsockname()[:2]
        return host, port

    def send(self, data: bytes, addr: Address) -> bool:
        """Best-effort send. Returns False on a local send failure, never raises."""
        if self._closed:
            return False
        try:
            self.transport.sendto(data, addr)
            return True
        except OSError as e:
            logging.getLogger("transport").warning(f"sendto {addr[0]}:{addr[1]} failed: {e}")
            return False

    async def receive(self, timeout: float | None) -> tuple[bytes, Address]:
        """Wait up to ``timeout`` seconds for one datagram.

        Raises TransportTimeout when nothing arrived in time.
        """
        try:
            return await asyncio.wait_for(self.protocol.queue.get(), timeout)
        except asyncio.TimeoutError:
            raise TransportTimeout("no datagram received") from None

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self.transport.close()
        with contextlib.suppress(Exception):
            self.sock.close()
