#!/usr/bin/env python3
# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

from __future__ import annotations

import json
import os
import sys
import threading
from collections import deque
from typing import Dict, Iterable, List, Optional, Tuple

from peerchat.errors import StorageError
from peerchat_utils import format_history_line, parse_history_line


PEERS_FILE_NAME = "peers.txt"
HISTORY_FILE_NAME = "history.log"
CONFIG_FILE_NAME = "config.json"
RUNTIME_LOG_FILE_NAME = "runtime.log"


def maybe_set_private_umask() -> None:
    # Best-effort: make newly created files private on POSIX.
    if sys.platform.startswith("win"):
        return
    try:
        os.umask(0o077)
    except Exception:
        pass


def harden_dir(path: str) -> None:
    if not path:
        return
    try:
        os.makedirs(path, exist_ok=True)
    except Exception:
        return
    if sys.platform.startswith("win"):
        return
    try:
        os.chmod(path, 0o700)
    except Exception:
        pass


def harden_file(path: str) -> None:
    if not path:
        return
    if sys.platform.startswith("win"):
        return
    try:
        os.chmod(path, 0o600)
    except Exception:
        pass


def parse_peer_line(line: str) -> Optional[Tuple[str, int]]:
    parts = line.split()
    if len(parts) < 2:
        return None
    try:
        port = int(parts[1])
    except ValueError:
        return None
    if not 1 <= port <= 65535:
        return None
    return parts[0], port


class Storage:
    """Files under one data directory: peers, history, config and runtime log."""

    def __init__(self, data_dir: str) -> None:
        self.set_data_dir(data_dir)
        self.runtime_log_enabled = False
        self._peers_lock = threading.Lock()
        self._history_lock = threading.Lock()
        self._runtime_log_lock = threading.Lock()

    def set_data_dir(self, data_dir: str) -> None:
        self.data_dir = data_dir
        self.peers_file = os.path.join(data_dir, PEERS_FILE_NAME)
        self.history_file = os.path.join(data_dir, HISTORY_FILE_NAME)
        self.config_file = os.path.join(data_dir, CONFIG_FILE_NAME)
        self.runtime_log_file = os.path.join(data_dir, RUNTIME_LOG_FILE_NAME)

    def ensure_data_dir(self) -> None:
        harden_dir(self.data_dir)

    def set_runtime_log_enabled(self, enabled: bool) -> None:
        self.runtime_log_enabled = bool(enabled)

    # ---------- peers ----------
    def load_peers(self) -> List[Tuple[str, int]]:
        """Read every 'address port' record. Unparseable lines are skipped."""
        if not os.path.isfile(self.peers_file):
            return []
        try:
            with self._peers_lock:
                with open(self.peers_file, "r", encoding="utf-8") as f:
                    lines = f.readlines()
        except OSError as e:
            raise StorageError(self.peers_file, "read", e) from e
        out: List[Tuple[str, int]] = []
        for line in lines:
            rec = parse_peer_line(line)
            if rec is not None:
                out.append(rec)
        return out

    def append_peer(self, address: str, port: int) -> None:
        try:
            harden_dir(self.data_dir)
            with self._peers_lock:
                with open(self.peers_file, "a", encoding="utf-8") as f:
                    f.write(f"{address} {int(port)}\n")
            harden_file(self.peers_file)
        except OSError as e:
            raise StorageError(self.peers_file, "append", e) from e

    def rewrite_peers(self, records: Iterable[Tuple[str, int]]) -> None:
        lines = [f"{address} {int(port)}\n" for address, port in records]
        tmp = self.peers_file + ".tmp"
        try:
            harden_dir(self.data_dir)
            with self._peers_lock:
                with open(tmp, "w", encoding="utf-8") as f:
                    f.writelines(lines)
                os.replace(tmp, self.peers_file)
            harden_file(self.peers_file)
        except OSError as e:
            raise StorageError(self.peers_file, "rewrite", e) from e

    # ---------- history ----------
    def append_history(self, direction: str, peer: str, text: str) -> None:
        line = format_history_line(direction, peer, text)
        try:
            harden_dir(self.data_dir)
            with self._history_lock:
                with open(self.history_file, "a", encoding="utf-8") as f:
                    f.write(line + "\n")
            harden_file(self.history_file)
        except OSError as e:
            raise StorageError(self.history_file, "append", e) from e

    def tail_history(self, limit: int = 50) -> List[Tuple[str, str, str, str]]:
        """Last `limit` decodable history records, oldest first."""
        if limit <= 0 or not os.path.isfile(self.history_file):
            return []
        try:
            with self._history_lock:
                with open(self.history_file, "r", encoding="utf-8", errors="replace") as f:
                    tail = deque(f, maxlen=int(limit))
        except OSError as e:
            raise StorageError(self.history_file, "read", e) from e
        out = []
        for line in tail:
            parsed = parse_history_line(line, strict_encoded=False)
            if parsed is not None:
                out.append(parsed)
        return out

    # ---------- runtime log ----------
    def append_runtime_log(self, line: str) -> None:
        if not line:
            return
        if not self.runtime_log_enabled:
            return
        try:
            harden_dir(self.data_dir)
            with self._runtime_log_lock:
                with open(self.runtime_log_file, "a", encoding="utf-8") as f:
                    f.write(line + "\n")
            harden_file(self.runtime_log_file)
        except Exception:
            pass

    # ---------- config ----------
    def load_config(self) -> Dict[str, object]:
        if not os.path.isfile(self.config_file):
            return {}
        try:
            with open(self.config_file, "r", encoding="utf-8") as f:
                data = json.loads(f.read())
        except Exception:
            return {}
        return data if isinstance(data, dict) else {}

    def save_config(self, cfg: Dict[str, object]) -> None:
        tmp = self.config_file + ".tmp"
        try:
            harden_dir(self.data_dir)
            with open(tmp, "w", encoding="utf-8") as f:
                json.dump(cfg, f, ensure_ascii=False)
            os.replace(tmp, self.config_file)
            harden_file(self.config_file)
        except OSError as e:
            raise StorageError(self.config_file, "write", e) from e
