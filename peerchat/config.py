#!/usr/bin/env python3
# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Dict, Optional

from peerchat.presence import PRESENCE_TTL_SECONDS
from peerchat_utils import float_cfg, int_cfg


DEFAULT_PORT = 12345
KEEPALIVE_INTERVAL_SECONDS = 60.0
SOCKET_TIMEOUT_SECONDS = 1.0
PROBE_TIMEOUT_SECONDS = 3.0
HISTORY_TAIL_LINES = 50


@dataclass
class EngineConfig:
    local_name: str
    local_address: str
    local_port: int = DEFAULT_PORT
    # Port assumed for peers learned without one (Join/Active/PM). A guess
    # that every peer listens where we do, not a guarantee.
    default_port: Optional[int] = None
    presence_ttl: float = PRESENCE_TTL_SECONDS
    keepalive_interval: float = KEEPALIVE_INTERVAL_SECONDS
    socket_timeout: float = SOCKET_TIMEOUT_SECONDS
    probe_timeout: float = PROBE_TIMEOUT_SECONDS
    history_tail: int = HISTORY_TAIL_LINES

    def __post_init__(self) -> None:
        self.local_port = int_cfg(self.local_port, DEFAULT_PORT, 1, 65535)
        if self.default_port is None:
            self.default_port = self.local_port
        self.default_port = int_cfg(self.default_port, self.local_port, 1, 65535)
        self.presence_ttl = float_cfg(self.presence_ttl, PRESENCE_TTL_SECONDS, 1.0, 86400.0)
        self.keepalive_interval = float_cfg(self.keepalive_interval, KEEPALIVE_INTERVAL_SECONDS, 0.05, 3600.0)
        self.socket_timeout = float_cfg(self.socket_timeout, SOCKET_TIMEOUT_SECONDS, 0.05, 30.0)
        self.probe_timeout = float_cfg(self.probe_timeout, PROBE_TIMEOUT_SECONDS, 0.01, 60.0)
        self.history_tail = int_cfg(self.history_tail, HISTORY_TAIL_LINES, 1, 10000)

    @classmethod
    def from_settings(cls, settings: Dict[str, object], **overrides: object) -> "EngineConfig":
        """Build from a config.json dict; explicit overrides (CLI) win when not None."""
        merged: Dict[str, object] = {}
        for key in (
            "local_name",
            "local_address",
            "local_port",
            "default_port",
            "presence_ttl",
            "keepalive_interval",
            "socket_timeout",
            "probe_timeout",
            "history_tail",
        ):
            if key in settings:
                merged[key] = settings[key]
        if "name" in settings and "local_name" not in merged:
            merged["local_name"] = settings["name"]
        if "port" in settings and "local_port" not in merged:
            merged["local_port"] = settings["port"]
        for key, value in overrides.items():
            if value is not None:
                merged[key] = value
        return cls(**merged)  # type: ignore[arg-type]


class LocalIdentity:
    """Current display name plus the fixed address/port this process answers on."""

    def __init__(self, name: str, address: str, port: int) -> None:
        self._lock = threading.Lock()
        self._name = name
        self.address = address
        self.port = int(port)

    @property
    def name(self) -> str:
        with self._lock:
            return self._name

    def rename(self, new_name: str) -> str:
        """Set the new name and return the previous one."""
        with self._lock:
            old = self._name
            self._name = new_name
            return old
