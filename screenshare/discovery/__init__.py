# © Copyright 2025 Stuart Parmenter
# SPDX-License-Identifier: MIT

"""Zero-configuration receiver discovery over SSDP-style multicast."""

from .advertiser import Advertiser
from .protocol import (
    DiscoveredEndpoint,
    MessageKind,
    SsdpMessage,
    build_notify,
    build_response,
    build_search,
    endpoint_from_message,
    format_endpoint_list,
    format_location,
    parse_location,
    parse_message,
)
from .scanner import Scanner


__all__ = [
    "Advertiser",
    "DiscoveredEndpoint",
    "MessageKind",
    "Scanner",
    "SsdpMessage",
    "build_notify",
    "build_response",
    "build_search",
    "endpoint_from_message",
    "format_endpoint_list",
    "format_location",
    "parse_location",
    "parse_message",
]
