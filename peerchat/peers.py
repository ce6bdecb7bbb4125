#!/usr/bin/env python3
# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Dict, List, Optional

from peerchat.storage import Storage


UPSERT_ADDED = "added"
UPSERT_UPDATED = "updated"
UPSERT_UNCHANGED = "unchanged"


@dataclass(frozen=True)
class PeerRecord:
    address: str
    port: int


class PeerDirectory:
    """address -> listening port for every known peer.

    Each call is atomic with respect to the other threads. Mutations are
    written through to storage while the lock is held, so the file order
    follows the in-memory order. A StorageError from the write propagates
    after the in-memory change has been applied.
    """

    def __init__(self, storage: Optional[Storage] = None) -> None:
        self._lock = threading.Lock()
        self._peers: Dict[str, int] = {}
        self._storage = storage

    def load(self) -> int:
        """Merge persisted records into memory. No liveness check."""
        if self._storage is None:
            return 0
        records = self._storage.load_peers()
        with self._lock:
            for address, port in records:
                self._peers[address] = int(port)
            return len(self._peers)

    def upsert(self, address: str, port: int) -> str:
        port = int(port)
        with self._lock:
            prev = self._peers.get(address)
            if prev == port:
                return UPSERT_UNCHANGED
            self._peers[address] = port
            if self._storage is not None:
                if prev is None:
                    self._storage.append_peer(address, port)
                else:
                    self._storage.rewrite_peers(self._peers.items())
            return UPSERT_ADDED if prev is None else UPSERT_UPDATED

    def add_if_absent(self, address: str, port: int) -> bool:
        """Silent auto-discovery: record `address` only if it is unknown."""
        with self._lock:
            if address in self._peers:
                return False
            self._peers[address] = int(port)
            if self._storage is not None:
                self._storage.append_peer(address, int(port))
            return True

    def remove(self, address: str) -> bool:
        with self._lock:
            if address not in self._peers:
                return False
            del self._peers[address]
            if self._storage is not None:
                self._storage.rewrite_peers(self._peers.items())
            return True

    def get_port(self, address: str) -> Optional[int]:
        with self._lock:
            return self._peers.get(address)

    def list(self) -> List[PeerRecord]:
        with self._lock:
            return [PeerRecord(address, port) for address, port in self._peers.items()]

    def __contains__(self, address: object) -> bool:
        with self._lock:
            return address in self._peers

    def __len__(self) -> int:
        with self._lock:
            return len(self._peers)
