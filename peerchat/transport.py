#!/usr/bin/env python3
# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

from __future__ import annotations

import errno
import socket
import threading
from typing import Optional, Tuple

from peerchat.events import emit_log
from peerchat.peers import PeerDirectory
from peerchat.protocol import MAX_DATAGRAM, Message, encode_bytes, tag_of
from peerchat.errors import PortInUseError


# Socket timeout: bounds each recv poll and each blocking sendto.
SOCKET_TIMEOUT_SECONDS = 1.0


class UdpTransport:
    """One UDP socket: bound for inbound datagrams, also used for sends."""

    def __init__(
        self,
        port: int,
        host: str = "",
        poll_interval: float = SOCKET_TIMEOUT_SECONDS,
    ) -> None:
        self.host = host
        self.port = int(port)
        self.poll_interval = float(poll_interval)
        self.sock: Optional[socket.socket] = None
        self._send_lock = threading.Lock()

    def bind(self) -> None:
        s = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        try:
            s.bind((self.host, self.port))
        except OSError as e:
            s.close()
            if e.errno == errno.EADDRINUSE:
                raise PortInUseError(self.port, e) from e
            raise
        s.settimeout(self.poll_interval)
        self.sock = s
        if self.port == 0:
            self.port = s.getsockname()[1]

    @property
    def bound(self) -> bool:
        return self.sock is not None

    def send(self, payload: bytes, address: str, port: int) -> bool:
        """Fire-and-forget. Failures are logged at debug and reported as False."""
        s = self.sock
        try:
            if s is None:
                # Not listening (yet): use a throwaway socket.
                with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as tmp:
                    tmp.settimeout(self.poll_interval)
                    tmp.sendto(payload, (address, int(port)))
                return True
            with self._send_lock:
                s.sendto(payload, (address, int(port)))
            return True
        except (OSError, ValueError) as e:
            emit_log(f"SEND: {address}:{port} failed: {type(e).__name__}: {e}", "debug")
            return False

    def recv(self) -> Optional[Tuple[bytes, Tuple[str, int]]]:
        """Next datagram, or None when the poll interval passes without one."""
        s = self.sock
        if s is None:
            raise OSError("transport is not bound")
        try:
            data, addr = s.recvfrom(MAX_DATAGRAM)
        except socket.timeout:
            return None
        return data, (addr[0], addr[1])

    def close(self) -> None:
        s = self.sock
        self.sock = None
        if s is not None:
            try:
                s.close()
            except OSError:
                pass


class Broadcaster:
    """Best-effort fan-out of one message to every peer in the directory."""

    def __init__(self, directory: PeerDirectory, transport) -> None:
        self.directory = directory
        self.transport = transport

    def broadcast(self, msg: Message) -> int:
        payload = encode_bytes(msg)
        sent = 0
        # Snapshot first: no directory lock is held while sending.
        for rec in self.directory.list():
            if self.transport.send(payload, rec.address, rec.port):
                sent += 1
        emit_log(f"SEND: {tag_of(msg)} broadcast -> {sent} peer(s)", "debug")
        return sent

    def unicast(self, msg: Message, address: str, port: int) -> bool:
        ok = self.transport.send(encode_bytes(msg), address, port)
        if ok:
            emit_log(f"SEND: {tag_of(msg)} -> {address}:{port}", "debug")
        return ok
