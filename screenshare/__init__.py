# © Copyright 2025 Stuart Parmenter
# SPDX-License-Identifier: MIT

"""Zero-configuration LAN screen sharing.

Receivers announce themselves over SSDP-style multicast; senders discover them,
connect over TCP, and stream fixed-geometry RGB frames at a target rate.
"""

__version__ = "0.1.0"
