#!/usr/bin/env python3
# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
ChatEngine: the shared core behind the line front end.

It owns the Peer Directory and the Presence Registry and exposes the four
entry points the rest of the process drives: ``handle_inbound`` (Receiver
thread), ``tick`` (Keepalive thread), ``handle_command`` (input loop) and
``shutdown``.
"""

from __future__ import annotations

import threading
import time
from typing import Callable, Dict, Optional, Sequence, Union

from peerchat.commands import CommandExecutor, CommandResult, ConnectProbe, HISTORY_SENT
from peerchat.config import EngineConfig, LocalIdentity
from peerchat.dispatch import Dispatcher
from peerchat.errors import StorageError
from peerchat.events import emit_log, emit_system
from peerchat.keepalive import KeepaliveScheduler
from peerchat.peers import PeerDirectory
from peerchat.presence import PresenceRegistry
from peerchat.protocol import Chat, Join, Leave, Malformed, Ping, decode, tag_of
from peerchat.receiver import ReceiverLoop
from peerchat.storage import Storage
from peerchat.transport import Broadcaster


MALFORMED_PREVIEW_CHARS = 60
SHUTDOWN_JOIN_SECONDS = 2.0


class ChatEngine:
    def __init__(
        self,
        config: EngineConfig,
        transport,
        storage: Optional[Storage] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.config = config
        self.transport = transport
        self.storage = storage
        self.identity = LocalIdentity(config.local_name, config.local_address, config.local_port)
        self.directory = PeerDirectory(storage)
        self.presence = PresenceRegistry(config.presence_ttl, clock=clock)
        self.broadcaster = Broadcaster(self.directory, transport)
        self.probe = ConnectProbe()
        self.dispatcher = Dispatcher(
            self.identity,
            self.directory,
            self.presence,
            self.broadcaster,
            default_port=config.default_port,
            storage=storage,
            on_inbound=self.probe.notify,
        )
        self.commands = CommandExecutor(
            config,
            self.identity,
            self.directory,
            self.presence,
            self.broadcaster,
            self.probe,
            storage=storage,
            ping_all=self.tick,
            on_quit=self.shutdown,
        )
        self.receiver = ReceiverLoop(transport, self.handle_inbound)
        self.keepalive = KeepaliveScheduler(self.tick, config.keepalive_interval)
        self.stats: Dict[str, int] = {"received": 0, "malformed": 0}
        self._stats_lock = threading.Lock()
        self._shutdown_lock = threading.Lock()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def start(self, threads: bool = True) -> None:
        """Load peers, register ourselves and (optionally) start the worker threads."""
        try:
            count = self.directory.load()
        except StorageError as e:
            emit_log(f"STORE: {e}", "error")
            count = len(self.directory)
        emit_log(f"PEER: loaded {count} peer(s)")
        self.presence.touch(self.identity.name, self.identity.address)
        if threads:
            self.receiver.start()
            self.keepalive.start()
        emit_system(
            f"Listening on {self.identity.address}:{self.identity.port} as {self.identity.name}"
        )
        if count:
            self.broadcaster.broadcast(Join(self.identity.name, self.identity.address))

    # ---------- entry points ----------
    def handle_inbound(self, datagram: Union[bytes, str], source_ip: Optional[str] = None) -> bool:
        """Decode and apply one datagram. Returns False when it was dropped."""
        msg = decode(datagram)
        if isinstance(msg, Malformed):
            with self._stats_lock:
                self.stats["malformed"] += 1
                dropped = self.stats["malformed"]
            emit_log(
                f"DROP: malformed datagram from {source_ip or '?'}: {msg.reason}: "
                f"{msg.line[:MALFORMED_PREVIEW_CHARS]!r} ({dropped} dropped so far)",
                "warn",
            )
            return False
        with self._stats_lock:
            self.stats["received"] += 1
        emit_log(f"RECV: {tag_of(msg)} from {source_ip or msg.identity[1]}", "debug")
        self.dispatcher.dispatch(msg, source_ip)
        return True

    def handle_command(self, name: str, args: Union[str, Sequence[str], None] = None) -> CommandResult:
        return self.commands.execute(name, args)

    def tick(self) -> int:
        ping = Ping(self.identity.name, self.identity.address, reply_port=self.identity.port)
        return self.broadcaster.broadcast(ping)

    def send_chat(self, text: str) -> CommandResult:
        text = str(text or "").strip()
        if not text:
            return CommandResult(False, [])
        try:
            msg = Chat(self.identity.name, self.identity.address, text)
        except ValueError as e:
            return CommandResult(False, [f"Cannot send: {e}"])
        sent = self.broadcaster.broadcast(msg)
        lines = []
        if not len(self.directory):
            lines.append("No peers yet. Use connect <address:port>.")
        if self.storage is not None:
            try:
                self.storage.append_history(HISTORY_SENT, f"{self.identity.name}@{self.identity.address}", text)
            except StorageError as e:
                emit_log(f"STORE: {e}", "error")
        emit_log(f"SEND: chat -> {sent} peer(s)", "debug")
        return CommandResult(True, lines)

    def shutdown(self) -> None:
        """Best-effort Leave, then stop the threads and close the socket. Idempotent."""
        with self._shutdown_lock:
            if self._closed:
                return
            self._closed = True
        try:
            self.broadcaster.broadcast(Leave(self.identity.name, self.identity.address))
        except Exception as e:
            emit_log(f"SEND: leave broadcast failed: {type(e).__name__}: {e}", "warn")
        self.keepalive.stop(SHUTDOWN_JOIN_SECONDS)
        self.receiver.stop(SHUTDOWN_JOIN_SECONDS)
        close = getattr(self.transport, "close", None)
        if callable(close):
            close()
        with self._stats_lock:
            received, malformed = self.stats["received"], self.stats["malformed"]
        emit_log(f"Shutdown complete: {received} datagram(s) handled, {malformed} dropped.")
