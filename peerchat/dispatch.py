#!/usr/bin/env python3
# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

from __future__ import annotations

from typing import Callable, Dict, Optional, Type

from peerchat.config import LocalIdentity
from peerchat.errors import StorageError
from peerchat.events import emit_chat, emit_log, emit_private, emit_system
from peerchat.peers import PeerDirectory, UPSERT_UNCHANGED
from peerchat.presence import PresenceRegistry
from peerchat.protocol import Active, Chat, Join, Leave, Message, Ping, Private, Rename
from peerchat.storage import Storage
from peerchat.transport import Broadcaster


HISTORY_RECV = "recv"
HISTORY_RECV_PRIVATE = "recv_pm"


class Dispatcher:
    """Apply one decoded inbound message to the shared state.

    Every message first refreshes the sender's presence entry; the
    type-specific handler runs afterwards. Replies are unicast to the
    sender, never broadcast.
    """

    def __init__(
        self,
        identity: LocalIdentity,
        directory: PeerDirectory,
        presence: PresenceRegistry,
        broadcaster: Broadcaster,
        default_port: int,
        storage: Optional[Storage] = None,
        on_inbound: Optional[Callable[[str, Optional[str]], None]] = None,
    ) -> None:
        self.identity = identity
        self.directory = directory
        self.presence = presence
        self.broadcaster = broadcaster
        self.default_port = int(default_port)
        self.storage = storage
        # Called with (sender address, datagram source ip) before handling;
        # the connect probe listens here for its reply.
        self.on_inbound = on_inbound
        self._handlers: Dict[Type, Callable[[Message], None]] = {
            Chat: self._on_chat,
            Join: self._on_join,
            Leave: self._on_leave,
            Ping: self._on_ping,
            Active: self._on_active,
            Rename: self._on_rename,
            Private: self._on_private,
        }

    def dispatch(self, msg: Message, source_ip: Optional[str] = None) -> None:
        name, address = msg.identity
        self.presence.touch(name, address)
        if self.on_inbound is not None:
            self.on_inbound(address, source_ip)
        handler = self._handlers.get(type(msg))
        if handler is None:
            emit_log(f"DROP: no handler for {type(msg).__name__}", "warn")
            return
        handler(msg)

    # ---------- handlers ----------
    def _on_chat(self, msg: Chat) -> None:
        emit_chat(msg.sender, msg.address, msg.text)
        self._record(HISTORY_RECV, f"{msg.sender}@{msg.address}", msg.text)

    def _on_join(self, msg: Join) -> None:
        emit_system(f"{msg.name}@{msg.address} joined the chat")
        self._discover(msg.address)
        self._reply_active(msg.address)

    def _on_leave(self, msg: Leave) -> None:
        emit_system(f"{msg.name}@{msg.address} left the chat")
        # Only the presence entry goes; the peer record stays so the user
        # can still reach that address later.
        self.presence.remove(msg.name, msg.address)

    def _on_ping(self, msg: Ping) -> None:
        if msg.reply_port is not None:
            try:
                result = self.directory.upsert(msg.address, msg.reply_port)
                if result != UPSERT_UNCHANGED:
                    emit_log(f"PEER: {msg.address}:{msg.reply_port} {result} from ping")
            except StorageError as e:
                emit_log(f"STORE: {e}", "error")
        self._reply_active(msg.address)

    def _on_active(self, msg: Active) -> None:
        self._discover(msg.address)

    def _on_rename(self, msg: Rename) -> None:
        emit_system(f"{msg.old_name}@{msg.address} is now known as {msg.new_name}")
        self.presence.rename(msg.old_name, msg.new_name, msg.address)

    def _on_private(self, msg: Private) -> None:
        if msg.target_name != self.identity.name:
            emit_log(f"DROP: private message for {msg.target_name!r} from {msg.sender}@{msg.address}", "debug")
            return
        emit_private(msg.sender, msg.address, msg.text)
        self._record(HISTORY_RECV_PRIVATE, f"{msg.sender}@{msg.address}", msg.text)
        self._discover(msg.address)

    # ---------- helpers ----------
    def _reply_active(self, address: str) -> None:
        port = self.directory.get_port(address) or self.default_port
        reply = Active(self.identity.name, self.identity.address)
        self.broadcaster.unicast(reply, address, port)

    def _discover(self, address: str) -> None:
        try:
            if self.directory.add_if_absent(address, self.default_port):
                emit_log(f"PEER: discovered {address}:{self.default_port}")
        except StorageError as e:
            emit_log(f"STORE: {e}", "error")

    def _record(self, direction: str, peer: str, text: str) -> None:
        if self.storage is None:
            return
        try:
            self.storage.append_history(direction, peer, text)
        except StorageError as e:
            emit_log(f"STORE: {e}", "error")
