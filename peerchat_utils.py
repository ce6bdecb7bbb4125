#!/usr/bin/env python3
# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

from __future__ import annotations

import base64
import re
import socket
import time
from typing import Optional, Tuple

HISTORY_TEXT_PREFIX = "b64:"
HISTORY_SEP = " | "

TS_PREFIX_RE = re.compile(r"^\d{4}-\d{2}-\d{2} \d{2}:\d{2}:\d{2}\b")
TS_DUP_RE = re.compile(
    r"^(\d{4}-\d{2}-\d{2} \d{2}:\d{2}:\d{2})"
    r"(?:(?:\s+)\1\b)+\s*"
)


def ts_local(now: Optional[float] = None) -> str:
    return time.strftime("%Y-%m-%d %H:%M:%S", time.localtime(now))


def normalize_log_text_line(text: object, fallback_ts: Optional[str] = None) -> Tuple[str, str]:
    """Return (line, body): line always carries exactly one leading timestamp."""
    line = str(text).lstrip()
    if not TS_PREFIX_RE.match(line):
        if fallback_ts is None:
            fallback_ts = ts_local()
        line = f"{fallback_ts} {line}"
    line = TS_DUP_RE.sub(r"\1 ", line)
    body = TS_PREFIX_RE.sub("", line, count=1).lstrip()
    return line, body


def int_cfg(value: object, default: int, min_v: int, max_v: int) -> int:
    try:
        v = int(value)  # type: ignore[arg-type]
    except Exception:
        v = int(default)
    if v < int(min_v):
        return int(min_v)
    if v > int(max_v):
        return int(max_v)
    return int(v)


def float_cfg(value: object, default: float, min_v: float, max_v: float) -> float:
    try:
        v = float(value)  # type: ignore[arg-type]
    except Exception:
        v = float(default)
    return max(float(min_v), min(float(max_v), v))


def parse_host_port(arg: str) -> Optional[Tuple[str, int]]:
    """Split 'host:port'. Returns None when either half is missing or the port is invalid."""
    if not isinstance(arg, str):
        return None
    host, sep, port_raw = arg.strip().rpartition(":")
    if not sep or not host or not port_raw:
        return None
    if ":" in host:
        return None
    try:
        port = int(port_raw)
    except ValueError:
        return None
    if not 1 <= port <= 65535:
        return None
    return host, port


def encode_history_text(text: str) -> str:
    raw = str(text).encode("utf-8")
    return HISTORY_TEXT_PREFIX + base64.b64encode(raw).decode("ascii")


def decode_history_text(value: str, strict: bool = False) -> Optional[str]:
    if not isinstance(value, str):
        return str(value)
    if not value.startswith(HISTORY_TEXT_PREFIX):
        return None if strict else value
    payload = value[len(HISTORY_TEXT_PREFIX):]
    try:
        out = base64.b64decode(payload.encode("ascii"), validate=True)
        return out.decode("utf-8", errors="replace")
    except Exception:
        return None if strict else value


def format_history_line(direction: str, peer: str, text: str, now: Optional[float] = None) -> str:
    return HISTORY_SEP.join([ts_local(now), direction, peer, encode_history_text(text)])


def parse_history_line(line: str, strict_encoded: bool = True) -> Optional[Tuple[str, str, str, str]]:
    """Parse 'ts | direction | peer | text' back into its parts."""
    if not isinstance(line, str):
        return None
    parts = line.rstrip("\n").split(HISTORY_SEP, 3)
    if len(parts) < 4:
        return None
    ts_part, direction, peer, text_wire = parts
    text = decode_history_text(text_wire, strict=strict_encoded)
    if text is None:
        return None
    return (ts_part, direction, peer, text)


def detect_local_ip(probe_host: str = "8.8.8.8") -> str:
    """Best-effort outward-facing IPv4 address; falls back to loopback."""
    try:
        s = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        try:
            # connect() on UDP sends nothing, it only selects a route.
            s.connect((probe_host, 80))
            return s.getsockname()[0]
        finally:
            s.close()
    except OSError:
        return "127.0.0.1"
