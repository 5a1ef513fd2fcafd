# © Copyright 2025 Stuart Parmenter
# SPDX-License-Identifier: MIT

"""Utility modules for cancellation, metrics, and host helpers."""

from .cancel import CancellationToken
from .helpers import local_address_for, split_host_port
from .metrics import RateMeter, SessionTracker


__all__ = [
    # Cancellation
    "CancellationToken",
    # Metrics
    "RateMeter",
    "SessionTracker",
    # Helpers
    "local_address_for",
    "split_host_port",
]
