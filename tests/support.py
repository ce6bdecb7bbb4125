#!/usr/bin/env python3
# -*- coding: utf-8 -*-

import threading
from typing import Callable, Dict, List, Optional, Tuple


def is_live(presence, name: str, address: str) -> bool:
    return any((e.name, e.address) == (name, address) for e in presence.list())


class LoopbackNetwork:
    """In-process stand-in for the LAN: (address, port) -> datagram handler.

    Delivery is synchronous, so a send returns only after the receiving
    side has handled the datagram (and any replies it sent in turn).
    Datagrams to an unregistered endpoint vanish, as they would on UDP.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._endpoints: Dict[Tuple[str, int], Callable[[bytes, Optional[str]], object]] = {}
        self.dropped: List[Tuple[str, int, bytes]] = []

    def register(self, address: str, port: int, handle: Callable[[bytes, Optional[str]], object]) -> None:
        with self._lock:
            self._endpoints[(address, int(port))] = handle

    def unregister(self, address: str, port: int) -> None:
        with self._lock:
            self._endpoints.pop((address, int(port)), None)

    def deliver(self, payload: bytes, source: str, address: str, port: int) -> None:
        with self._lock:
            handle = self._endpoints.get((address, int(port)))
            if handle is None:
                self.dropped.append((address, int(port), payload))
                return
        handle(payload, source)


class LoopbackTransport:
    """Same send/close surface as UdpTransport, bound to a LoopbackNetwork."""

    def __init__(self, network: LoopbackNetwork, address: str, port: int) -> None:
        self.network = network
        self.address = address
        self.port = int(port)
        self.sent: List[Tuple[str, int, bytes]] = []
        self.closed = False

    def attach(self, handle: Callable[[bytes, Optional[str]], object]) -> None:
        self.network.register(self.address, self.port, handle)

    def send(self, payload: bytes, address: str, port: int) -> bool:
        if self.closed:
            return False
        self.sent.append((address, int(port), payload))
        self.network.deliver(payload, self.address, address, port)
        return True

    def recv(self) -> Optional[Tuple[bytes, Tuple[str, int]]]:
        raise OSError("loopback transport delivers synchronously; there is nothing to poll")

    def close(self) -> None:
        self.closed = True
        self.network.unregister(self.address, self.port)
