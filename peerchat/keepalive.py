#!/usr/bin/env python3
# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

from __future__ import annotations

import threading
from typing import Callable, Optional

from peerchat.events import emit_log


class KeepaliveScheduler:
    """Calls `tick` every `interval` seconds until stopped.

    The tick is the only thing that keeps our presence alive at peers we
    are not chatting with; without it their entries for us expire after the
    TTL.
    """

    def __init__(self, tick: Callable[[], int], interval: float) -> None:
        self.tick = tick
        self.interval = max(0.01, float(interval))
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def start(self) -> None:
        if self._thread is not None:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self.run, daemon=True, name="Keepalive")
        self._thread.start()

    def run(self) -> None:
        # wait() returns True as soon as stop() is called, so shutdown
        # never sits out a full interval.
        while not self._stop.wait(self.interval):
            try:
                sent = self.tick()
            except Exception as e:
                emit_log(f"KEEPALIVE: tick failed: {type(e).__name__}: {e}", "error")
                continue
            emit_log(f"KEEPALIVE: ping -> {sent} peer(s)", "debug")

    def stop(self, timeout: Optional[float] = None) -> None:
        self._stop.set()
        t = self._thread
        if t is not None and t is not threading.current_thread():
            t.join(timeout)
        self._thread = None

    @property
    def running(self) -> bool:
        t = self._thread
        return t is not None and t.is_alive()
