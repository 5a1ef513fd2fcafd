# © Copyright 2025 Stuart Parmenter
# SPDX-License-Identifier: MIT

import asyncio
import logging
import uuid
from collections.abc import Awaitable, Callable

from ..config import Config
from ..exceptions import MalformedMessage, TransportTimeout
from ..net.multicast import MulticastEndpoint
from ..utils.cancel import CancellationToken
from ..utils.helpers import local_address_for
from .protocol import (
    NTS_BYEBYE,
    SSDP_ALL,
    MessageKind,
    build_notify,
    build_response,
    format_location,
    make_usn,
    parse_message,
)


EndpointFactory = Callable[[], Awaitable[MulticastEndpoint]]


class Advertiser:
    """Receiver-side discovery: answers queries and periodically announces itself.

    Two tasks share one cancellation token:
      - responder: waits for queries with a short timeout and replies unicast
      - announcer: multicasts an announce every ``announce_interval_s``

    ``stop()`` returns only after both tasks have exited and the endpoint is closed.
    """

    def __init__(
        self,
        service_port: int,
        *,
        group: str = "239.255.255.250",
        port: int = 1900,
        ttl: int = 2,
        service_type: str = "urn:screen-share:receiver",
        scheme: str = "http",
        poll_s: float = 1.0,
        announce_interval_s: float = 30.0,
        max_age_s: int = 1800,
        advertise_host: str | None = None,
        instance_id: str | None = None,
        endpoint_factory: EndpointFactory | None = None,
    ):
        self.service_port = service_port
        self.group = group
        self.port = port
        self.ttl = ttl
        self.service_type = service_type
        self.scheme = scheme
        self.poll_s = poll_s
        self.announce_interval_s = announce_interval_s
        self.max_age_s = max_age_s
        self.advertise_host = advertise_host
        self.usn = make_usn(instance_id or str(uuid.uuid4()), service_type)

        self._endpoint_factory = endpoint_factory or (lambda: MulticastEndpoint.open_group(group, port, ttl))
        self.endpoint: MulticastEndpoint | None = None
        self.token: CancellationToken | None = None
        self._tasks: list[asyncio.Task] = []

        self.queries_answered = 0
        self.announces_sent = 0

    @classmethod
    def from_config(cls, service_port: int, **overrides) -> "Advertiser":
        cfg = Config().get("discovery")
        kwargs = {
            "group": cfg["group"],
            "port": cfg["port"],
            "ttl": cfg["ttl"],
            "service_type": cfg["service_type"],
            "scheme": cfg["scheme"],
            "poll_s": cfg["poll_s"],
            "announce_interval_s": cfg["announce_interval_s"],
            "max_age_s": cfg["max_age_s"],
            "advertise_host": cfg["advertise_host"],
            "instance_id": cfg["instance_id"],
        }
        kwargs.update(overrides)
        return cls(service_port, **kwargs)

    @property
    def running(self) -> bool:
        return any(not t.done() for t in self._tasks)

    def location_for(self, peer_ip: str | None) -> str:
        """LOCATION value as seen from ``peer_ip``."""
        host = self.advertise_host or local_address_for(peer_ip)
        return format_location(host, self.service_port, self.scheme)

    async def start(self, token: CancellationToken | None = None) -> None:
        """Open the multicast endpoint and launch the responder and announcer.

        Raises NetworkError if the group cannot be joined.
        """
        if self.running:
            raise RuntimeError("advertiser already running")

        self.token = token or CancellationToken()
        self.endpoint = await self._endpoint_factory()

        logging.getLogger("advertiser").info(
            f"advertising {self.service_type} port={self.service_port} on {self.group}:{self.port} usn={self.usn}"
        )

        self._tasks = [
            asyncio.create_task(self._responder_loop(), name="advertiser-responder"),
            asyncio.create_task(self._announcer_loop(), name="advertiser-announcer"),
        ]

    async def stop(self) -> None:
        """Request shutdown and wait for both activities to finish."""
        if self.token is not None:
            self.token.cancel("advertiser stop")

        for task in self._tasks:
            try:
                await task
            except Exception as e:
                logging.getLogger("advertiser").error(f"{task.get_name()} exited with error: {e!r}")
        self._tasks = []

        if self.endpoint is not None:
            self._send_byebye()
            self.endpoint.close()
            self.endpoint = None
            logging.getLogger("advertiser").info("advertiser stopped")

    async def __aenter__(self) -> "Advertiser":
        await self.start()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.stop()

    # --- activities -----------------------------------------------------

    async def _responder_loop(self) -> None:
        assert self.endpoint is not None and self.token is not None
        endpoint, token = self.endpoint, self.token

        while not token.cancelled:
            try:
                data, addr = await endpoint.receive(self.poll_s)
            except TransportTimeout:
                continue

            try:
                self._handle_datagram(data, addr)
            except Exception as e:
                # One bad datagram never ends the loop
                logging.getLogger("advertiser").warning(f"error handling datagram from {addr[0]}:{addr[1]}: {e!r}")

        logging.getLogger("advertiser").debug("responder exited")

    def _handle_datagram(self, data: bytes, addr: tuple[str, int]) -> None:
        try:
            message = parse_message(data)
        except MalformedMessage as e:
            logging.getLogger("advertiser").debug(f"ignoring datagram from {addr[0]}:{addr[1]}: {e}")
            return

        if message.kind is not MessageKind.SEARCH:
            return

        st = message.service_type
        if st not in (self.service_type, SSDP_ALL):
            return

        location = self.location_for(addr[0])
        response = build_response(location, self.service_type, self.usn, self.max_age_s)
        if self.endpoint is not None and self.endpoint.send(response, addr):
            self.queries_answered += 1
            logging.getLogger("advertiser").debug(f"answered query from {addr[0]}:{addr[1]} with {location}")

    async def _announcer_loop(self) -> None:
        assert self.endpoint is not None and self.token is not None
        token = self.token

        while not token.cancelled:
            self._send_announce()
            # Interruptible sleep: returns as soon as the token is cancelled
            if await token.wait(self.announce_interval_s):
                break

        logging.getLogger("advertiser").debug("announcer exited")

    def _send_announce(self) -> None:
        if self.endpoint is None:
            return
        location = self.location_for(None)
        notify = build_notify(location, self.service_type, self.usn, self.group, self.port, self.max_age_s)
        if self.endpoint.send(notify, (self.group, self.port)):
            self.announces_sent += 1

    def _send_byebye(self) -> None:
        if self.endpoint is None:
            return
        location = self.location_for(None)
        byebye = build_notify(
            location, self.service_type, self.usn, self.group, self.port, self.max_age_s, nts=NTS_BYEBYE
        )
        self.endpoint.send(byebye, (self.group, self.port))
