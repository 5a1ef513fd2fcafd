# © Copyright 2025 Stuart Parmenter
# SPDX-License-Identifier: MIT

import json
import logging
from pathlib import Path
from typing import Any, ClassVar

import tomllib
import yaml


DEFAULT_CONFIG: dict[str, Any] = {
    "discovery": {
        "group": "239.255.255.250",  # SSDP multicast group
        "port": 1900,  # SSDP port
        "ttl": 2,  # keep queries on the local network
        "service_type": "urn:screen-share:receiver",
        "scheme": "http",  # LOCATION scheme, informational only
        "window_s": 3.0,  # response collection window
        "query_repeats": 3,  # no acks, redundancy is the only loss defense
        "query_spacing_ms": 100,
        "mx": 3,  # response-wait hint carried in the query
        "probe": True,  # confirm the streaming port accepts connections
        "probe_timeout_s": 0.5,
        "poll_s": 1.0,  # responder receive timeout (shutdown latency)
        "announce_interval_s": 30.0,
        "max_age_s": 1800,
        "advertise_host": None,  # None = interface routed toward the querier
        "instance_id": None,  # None = random per process
    },
    "stream": {
        "port": 8081,  # also the default when LOCATION omits a port
        "width": 1280,
        "height": 720,
        "fps": 30,
        "max_lag_ticks": 3,  # beyond this many ticks behind, skip captures
        "connect_timeout_s": 5.0,
        "handshake_timeout_s": 5.0,
        "frame_timeout_s": 10.0,
        "accept_poll_s": 1.0,
        "max_frame_bytes": 7680 * 4320 * 3,  # reject absurd handshakes (8K RGB)
    },
    "capture": {
        "source": "screen",  # "screen" | "pattern" | path to an image file
        "fit": "pad",  # "pad" | "cover" | "stretch"
    },
    "display": {
        "kind": "null",  # "null" | "snapshot"
        "snapshot_dir": "snapshots",
        "snapshot_every": 30,
    },
    "log": {
        "level": "info",
        "metrics": True,
        "rate_ms": 5000,
    },
}


def load_config_file(path: str) -> dict[str, Any]:
    """Load configuration from a file (YAML, TOML, or JSON)."""
    logger = logging.getLogger("config")
    path_obj = Path(path)
    ext = path_obj.suffix.lower()

    if not path_obj.exists():
        logger.warning(f"Config file not found: {path}")
        return {}

    try:
        if ext in (".yaml", ".yml"):
            with path_obj.open(encoding="utf-8") as f:
                return yaml.safe_load(f) or {}

        elif ext == ".toml":
            with path_obj.open("rb") as f:
                return tomllib.load(f) or {}

        elif ext == ".json":
            with path_obj.open(encoding="utf-8") as f:
                return json.load(f) or {}

        else:
            logger.warning(f"Unknown config extension: {ext}")
            return {}

    except (OSError, ValueError, yaml.YAMLError) as e:
        logger.warning(f"Failed to load {path}: {e}")
        return {}


def deep_update(dst: dict[str, Any], src: dict[str, Any]) -> dict[str, Any]:
    """Deep merge configuration dictionaries."""
    for k, v in src.items():
        if isinstance(v, dict) and isinstance(dst.get(k), dict):
            deep_update(dst[k], v)
        else:
            dst[k] = v
    return dst


def load_config(path: str | None = None) -> dict[str, Any]:
    """Load configuration with defaults and optional file override."""
    cfg = json.loads(json.dumps(DEFAULT_CONFIG))  # Deep copy

    if path:
        deep_update(cfg, load_config_file(path))

    return cfg


class Config:
    """Configuration singleton."""

    _instance: ClassVar["Config | None"] = None
    _config: ClassVar[dict[str, Any]] = {}

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    @classmethod
    def load(cls, path: str | None = None) -> None:
        """Load configuration from file."""
        cls._config = load_config(path)

    @classmethod
    def get(cls, key: str | None = None) -> Any:
        """Get configuration value by key path (e.g., 'stream.port')."""
        if not cls._config:
            cls.load()

        if key is None:
            return cls._config

        value = cls._config
        for k in key.split("."):
            if isinstance(value, dict) and k in value:
                value = value[k]
            else:
                raise KeyError(f"Configuration key not found: {key}")

        return value

    def __getitem__(self, key: str) -> Any:
        return self.get(key)
