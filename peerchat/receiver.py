#!/usr/bin/env python3
# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

from __future__ import annotations

import threading
from typing import Callable, Optional, Tuple

from peerchat.events import emit_log


ERROR_BACKOFF_SECONDS = 0.05


class ReceiverLoop:
    """Owns the inbound side of the socket.

    One datagram is fully handled before the next is read; there is no
    queue and no parallel dispatch.
    """

    def __init__(self, transport, handle: Callable[[bytes, Optional[str]], bool]) -> None:
        self.transport = transport
        self.handle = handle
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def start(self) -> None:
        if self._thread is not None:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self.run, daemon=True, name="Receiver")
        self._thread.start()

    def run(self) -> None:
        emit_log("RECV: listener started", "debug")
        while not self._stop.is_set():
            try:
                item: Optional[Tuple[bytes, Tuple[str, int]]] = self.transport.recv()
            except OSError as e:
                if self._stop.is_set() or not getattr(self.transport, "bound", True):
                    break
                # e.g. WSAECONNRESET after a send to a closed port; the socket is still usable.
                emit_log(f"RECV: socket error: {type(e).__name__}: {e}", "warn")
                self._stop.wait(ERROR_BACKOFF_SECONDS)
                continue
            if item is None:
                continue
            data, addr = item
            try:
                self.handle(data, addr[0])
            except Exception as e:
                emit_log(f"RECV: failed to handle datagram from {addr[0]}: {type(e).__name__}: {e}", "error")
        emit_log("RECV: listener stopped", "debug")

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
