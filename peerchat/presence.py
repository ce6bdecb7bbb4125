#!/usr/bin/env python3
# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Tuple


PRESENCE_TTL_SECONDS = 300.0


@dataclass(frozen=True)
class PresenceEntry:
    name: str
    address: str
    last_seen: float


class PresenceRegistry:
    """(display name, address) -> last-seen time, with lazy TTL expiry.

    An entry is live while ``now - last_seen < ttl``. Reads evict stale
    entries as they go; there is no sweeper thread. The same address may sit
    under several names at once until the old ones expire or are removed.
    """

    def __init__(
        self,
        ttl: float = PRESENCE_TTL_SECONDS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.ttl = float(ttl)
        self._clock = clock
        self._lock = threading.Lock()
        # Dict order doubles as refresh order: touch() re-inserts at the end.
        self._entries: Dict[Tuple[str, str], float] = {}

    def touch(self, name: str, address: str) -> None:
        now = float(self._clock())
        with self._lock:
            self._touch_locked((name, address), now)

    def remove(self, name: str, address: str) -> bool:
        with self._lock:
            return self._entries.pop((name, address), None) is not None

    def rename(self, old_name: str, new_name: str, address: str) -> None:
        """Drop the old key and refresh the new one as a single step."""
        now = float(self._clock())
        with self._lock:
            self._entries.pop((old_name, address), None)
            self._touch_locked((new_name, address), now)

    def remove_by_address(self, address: str) -> int:
        with self._lock:
            doomed = [key for key in self._entries if key[1] == address]
            for key in doomed:
                del self._entries[key]
            return len(doomed)

    def list(self) -> List[PresenceEntry]:
        now = float(self._clock())
        with self._lock:
            self._evict_locked(now)
            return [PresenceEntry(name, address, ts) for (name, address), ts in self._entries.items()]

    def resolve_address(self, name: str) -> Optional[str]:
        """Address of the most recently seen live entry called `name`."""
        now = float(self._clock())
        with self._lock:
            self._evict_locked(now)
            best: Optional[str] = None
            best_ts = float("-inf")
            # Later entries were refreshed later, so >= keeps the newest on ties.
            for (entry_name, address), ts in self._entries.items():
                if entry_name == name and ts >= best_ts:
                    best, best_ts = address, ts
            return best

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def _touch_locked(self, key: Tuple[str, str], now: float) -> None:
        self._entries.pop(key, None)
        self._entries[key] = now

    def _evict_locked(self, now: float) -> None:
        stale = [key for key, ts in self._entries.items() if now - ts >= self.ttl]
        for key in stale:
            del self._entries[key]
