# © Copyright 2025 Stuart Parmenter
# SPDX-License-Identifier: MIT

import asyncio
import logging
from collections.abc import Awaitable, Callable

from ..config import Config
from ..exceptions import MalformedMessage, TransportTimeout
from ..net.multicast import MulticastEndpoint
from ..net.stream import probe as probe_stream
from .protocol import DiscoveredEndpoint, MessageKind, SSDP_ALL, build_search, endpoint_from_message, parse_message


EndpointFactory = Callable[[], Awaitable[MulticastEndpoint]]
Prober = Callable[[str, int, float], Awaitable[bool]]


class Scanner:
    """Sender-side discovery: multicast a query and collect the responses.

    A scan that finds nothing returns an empty list. Only failing to open the
    discovery endpoint raises (NetworkError), so "not found" and "cannot
    search" stay distinguishable.
    """

    def __init__(
        self,
        *,
        group: str = "239.255.255.250",
        port: int = 1900,
        ttl: int = 2,
        service_type: str = "urn:screen-share:receiver",
        default_port: int = 8081,
        window_s: float = 3.0,
        query_repeats: int = 3,
        query_spacing_s: float = 0.1,
        mx: int = 3,
        probe: bool = True,
        probe_timeout_s: float = 0.5,
        endpoint_factory: EndpointFactory | None = None,
        prober: Prober | None = None,
    ):
        self.group = group
        self.port = port
        self.ttl = ttl
        self.service_type = service_type
        self.default_port = default_port
        self.window_s = window_s
        self.query_repeats = max(1, query_repeats)
        self.query_spacing_s = query_spacing_s
        self.mx = mx
        self.probe = probe
        self.probe_timeout_s = probe_timeout_s

        self._endpoint_factory = endpoint_factory or (lambda: MulticastEndpoint.open_sender(ttl))
        self._prober = prober or probe_stream

    @classmethod
    def from_config(cls, **overrides) -> "Scanner":
        config = Config()
        cfg = config.get("discovery")
        kwargs = {
            "group": cfg["group"],
            "port": cfg["port"],
            "ttl": cfg["ttl"],
            "service_type": cfg["service_type"],
            "default_port": config.get("stream.port"),
            "window_s": cfg["window_s"],
            "query_repeats": cfg["query_repeats"],
            "query_spacing_s": cfg["query_spacing_ms"] / 1000.0,
            "mx": cfg["mx"],
            "probe": cfg["probe"],
            "probe_timeout_s": cfg["probe_timeout_s"],
        }
        kwargs.update(overrides)
        return cls(**kwargs)

    async def scan(self, window_s: float | None = None, probe: bool | None = None) -> list[DiscoveredEndpoint]:
        """Run one discovery scan.

        Args:
            window_s: How long to collect responses (defaults to the configured window)
            probe: Whether to confirm each candidate's stream port accepts connections

        Returns:
            Endpoints in arrival order, at most one per address.
        """
        window_s = self.window_s if window_s is None else window_s
        probe = self.probe if probe is None else probe

        endpoint = await self._endpoint_factory()
        try:
            logging.getLogger("scanner").info(
                f"scanning {self.group}:{self.port} for {self.service_type} ({window_s:.1f}s)"
            )
            found = await self._collect(endpoint, window_s)
        finally:
            endpoint.close()

        if probe and found:
            found = await self._probe_all(found)

        if found:
            logging.getLogger("scanner").info(f"discovery complete: {len(found)} receiver(s) found")
        else:
            logging.getLogger("scanner").info("discovery complete: no receivers found")
        return found

    async def has_receivers(self, window_s: float | None = None) -> bool:
        return bool(await self.scan(window_s))

    async def _collect(self, endpoint: MulticastEndpoint, window_s: float) -> list[DiscoveredEndpoint]:
        loop = asyncio.get_running_loop()
        query = build_search(self.service_type, self.group, self.port, self.mx)
        dest = (self.group, self.port)

        deadline = loop.time() + window_s
        found: list[DiscoveredEndpoint] = []
        seen: set[str] = set()

        # Queries go out while responses are already being collected
        async def send_queries() -> None:
            for i in range(self.query_repeats):
                endpoint.send(query, dest)
                if i < self.query_repeats - 1:
                    await asyncio.sleep(self.query_spacing_s)

        sender = asyncio.create_task(send_queries())
        try:
            while True:
                remaining = deadline - loop.time()
                if remaining <= 0:
                    break
                try:
                    data, addr = await endpoint.receive(remaining)
                except TransportTimeout:
                    break

                ep = self._endpoint_from_datagram(data, addr)
                if ep is None or ep.address in seen:
                    continue
                seen.add(ep.address)
                found.append(ep)
                logging.getLogger("scanner").info(f"discovered receiver: {ep}")
        finally:
            if not sender.done():
                sender.cancel()
            await asyncio.gather(sender, return_exceptions=True)

        return found

    def _endpoint_from_datagram(self, data: bytes, addr: tuple[str, int]) -> DiscoveredEndpoint | None:
        try:
            message = parse_message(data)
        except MalformedMessage as e:
            logging.getLogger("scanner").debug(f"skipping datagram from {addr[0]}:{addr[1]}: {e}")
            return None

        if message.kind is not MessageKind.RESPONSE:
            return None
        if message.service_type not in (self.service_type, SSDP_ALL):
            return None

        ep = endpoint_from_message(message, self.default_port)
        if ep is None:
            logging.getLogger("scanner").debug(f"response from {addr[0]}:{addr[1]} has no usable LOCATION")
        return ep

    async def _probe_all(self, candidates: list[DiscoveredEndpoint]) -> list[DiscoveredEndpoint]:
        results = await asyncio.gather(
            *(self._prober(ep.address, ep.port, self.probe_timeout_s) for ep in candidates)
        )
        reachable = []
        for ep, ok in zip(candidates, results):
            if ok:
                reachable.append(ep)
            else:
                logging.getLogger("scanner").info(f"dropping {ep}: stream port not reachable")
        return reachable
