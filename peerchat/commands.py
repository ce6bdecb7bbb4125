#!/usr/bin/env python3
# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Sequence, Union

from peerchat.config import EngineConfig, LocalIdentity
from peerchat.dispatch import HISTORY_RECV_PRIVATE
from peerchat.errors import ConnectTimeout, StorageError
from peerchat.events import emit_log
from peerchat.peers import PeerDirectory
from peerchat.presence import PresenceRegistry
from peerchat.protocol import Join, Ping, Private, Rename
from peerchat.storage import Storage
from peerchat.transport import Broadcaster
from peerchat_utils import parse_host_port


STATE_UNCONNECTED = "unconnected"
STATE_PROBING = "probing"
STATE_CONNECTED = "connected"

HISTORY_SENT = "sent"
HISTORY_SENT_PRIVATE = "sent_pm"

HELP_LINES = [
    "quit                      leave the chat",
    "users                     list active users",
    "name <new name>           change your display name",
    "history                   show recent messages",
    "clear                     clear the screen",
    "whisper <name> <text>     send a private message",
    "connect <address:port>    connect to a remote peer",
    "disconnect <address>      forget a remote peer",
    "peers                     list known peers",
    "help                      show this list",
]


@dataclass
class CommandResult:
    ok: bool
    lines: List[str] = field(default_factory=list)
    quit: bool = False
    clear: bool = False


class ConnectProbe:
    """Per-address connect state plus the event a probe reply sets."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._waiters: Dict[str, threading.Event] = {}
        self._states: Dict[str, str] = {}

    def state(self, address: str) -> str:
        with self._lock:
            return self._states.get(address, STATE_UNCONNECTED)

    def begin(self, address: str) -> threading.Event:
        with self._lock:
            ev = threading.Event()
            self._waiters[address] = ev
            self._states[address] = STATE_PROBING
            return ev

    def finish(self, address: str, ok: bool) -> None:
        with self._lock:
            self._waiters.pop(address, None)
            if ok:
                self._states[address] = STATE_CONNECTED
            else:
                # Failed falls straight back to Unconnected.
                self._states.pop(address, None)

    def forget(self, address: str) -> None:
        with self._lock:
            self._states.pop(address, None)

    def notify(self, address: str, source_ip: Optional[str] = None) -> None:
        """Any inbound message from `address` (or datagram from `source_ip`) answers the probe."""
        with self._lock:
            for key in (address, source_ip):
                if key is None:
                    continue
                ev = self._waiters.get(key)
                if ev is not None:
                    ev.set()


class CommandExecutor:
    def __init__(
        self,
        config: EngineConfig,
        identity: LocalIdentity,
        directory: PeerDirectory,
        presence: PresenceRegistry,
        broadcaster: Broadcaster,
        probe: ConnectProbe,
        storage: Optional[Storage] = None,
        ping_all: Optional[Callable[[], int]] = None,
        on_quit: Optional[Callable[[], None]] = None,
    ) -> None:
        self.config = config
        self.identity = identity
        self.directory = directory
        self.presence = presence
        self.broadcaster = broadcaster
        self.probe = probe
        self.storage = storage
        self.ping_all = ping_all
        self.on_quit = on_quit
        self._commands: Dict[str, Callable[[str], CommandResult]] = {
            "quit": self.quit,
            "users": self.list_users,
            "name": self.rename,
            "history": self.history,
            "clear": self.clear,
            "whisper": self.whisper,
            "connect": self.connect,
            "disconnect": self.disconnect,
            "peers": self.list_peers,
            "help": self.help,
        }

    def execute(self, name: str, args: Union[str, Sequence[str], None] = None) -> CommandResult:
        cmd = str(name or "").strip().lstrip("/").lower()
        if args is None:
            rest = ""
        elif isinstance(args, str):
            rest = args.strip()
        else:
            rest = " ".join(str(a) for a in args).strip()
        fn = self._commands.get(cmd)
        if fn is None:
            return CommandResult(False, [f"Unknown command: {name}", "Type help to list the commands."])
        return fn(rest)

    # ---------- commands ----------
    def quit(self, _rest: str = "") -> CommandResult:
        if self.on_quit is not None:
            self.on_quit()
        return CommandResult(True, ["Closing chat..."], quit=True)

    def help(self, _rest: str = "") -> CommandResult:
        return CommandResult(True, list(HELP_LINES))

    def clear(self, _rest: str = "") -> CommandResult:
        return CommandResult(True, [], clear=True)

    def list_users(self, _rest: str = "") -> CommandResult:
        me = (self.identity.name, self.identity.address)
        lines = []
        for entry in self.presence.list():
            suffix = " (you)" if (entry.name, entry.address) == me else ""
            lines.append(f"{entry.name}{suffix} @ {entry.address}")
        if not lines:
            lines.append("No active users.")
        # Ask everyone to answer so the next listing is fresher.
        if self.ping_all is not None:
            self.ping_all()
        return CommandResult(True, lines)

    def list_peers(self, _rest: str = "") -> CommandResult:
        records = self.directory.list()
        if not records:
            return CommandResult(True, ["No known peers."])
        return CommandResult(True, [f"{rec.address}:{rec.port}" for rec in records])

    def rename(self, rest: str) -> CommandResult:
        new_name = rest.strip()
        if not new_name:
            return CommandResult(False, ["Usage: name <new name>"])
        old_name = self.identity.name
        if new_name == old_name:
            return CommandResult(True, [f"You are already called {new_name}."])
        try:
            msg = Rename(old_name, new_name, self.identity.address)
        except ValueError as e:
            return CommandResult(False, [f"Invalid name: {e}"])
        self.identity.rename(new_name)
        self.presence.rename(old_name, new_name, self.identity.address)
        self.broadcaster.broadcast(msg)
        lines = [f"Your name changed from {old_name} to {new_name}."]
        if self.storage is not None:
            try:
                cfg = self.storage.load_config()
                cfg["name"] = new_name
                self.storage.save_config(cfg)
            except StorageError as e:
                emit_log(f"STORE: {e}", "error")
                lines.append(f"Warning: name not saved: {e}")
        return CommandResult(True, lines)

    def history(self, _rest: str = "") -> CommandResult:
        if self.storage is None:
            return CommandResult(True, ["No history."])
        try:
            records = self.storage.tail_history(self.config.history_tail)
        except StorageError as e:
            return CommandResult(False, [f"Cannot read history: {e}"])
        if not records:
            return CommandResult(True, ["No history."])
        return CommandResult(True, [_format_history(*rec) for rec in records])

    def whisper(self, rest: str) -> CommandResult:
        target, _, text = rest.partition(" ")
        text = text.strip()
        if not target or not text:
            return CommandResult(False, ["Usage: whisper <name> <text>"])
        address = self.presence.resolve_address(target)
        if address is None:
            return CommandResult(False, [f"User not found: {target}"])
        port = self.directory.get_port(address)
        if port is None:
            return CommandResult(False, [f"No route to {target}@{address}: not a known peer."])
        try:
            msg = Private(self.identity.name, self.identity.address, target, text)
        except ValueError as e:
            return CommandResult(False, [f"Cannot send: {e}"])
        if not self.broadcaster.unicast(msg, address, port):
            return CommandResult(False, [f"Could not send to {target}@{address}:{port}."])
        lines = [f"[private to {target}] {text}"]
        if self.storage is not None:
            try:
                self.storage.append_history(HISTORY_SENT_PRIVATE, f"{target}@{address}", text)
            except StorageError as e:
                emit_log(f"STORE: {e}", "error")
        return CommandResult(True, lines)

    def connect(self, rest: str) -> CommandResult:
        target = parse_host_port(rest)
        if target is None:
            return CommandResult(False, ["Usage: connect <address:port>"])
        address, port = target
        if self.directory.get_port(address) == port:
            return CommandResult(True, [f"Already connected to {address}:{port}."])
        try:
            self._probe(address, port)
        except ConnectTimeout as e:
            emit_log(f"CONNECT: {e}", "warn")
            return CommandResult(False, [f"Could not connect to {address}:{port}."])
        lines = [f"Connected to {address}:{port}."]
        try:
            self.directory.upsert(address, port)
        except StorageError as e:
            emit_log(f"STORE: {e}", "error")
            lines.append(f"Warning: peer not saved: {e}")
        self.broadcaster.broadcast(Join(self.identity.name, self.identity.address))
        return CommandResult(True, lines)

    def disconnect(self, rest: str) -> CommandResult:
        address = rest.strip()
        if not address:
            return CommandResult(False, ["Usage: disconnect <address>"])
        lines = []
        try:
            found = self.directory.remove(address)
        except StorageError as e:
            emit_log(f"STORE: {e}", "error")
            found = True
            lines.append(f"Warning: peer list not saved: {e}")
        if not found:
            return CommandResult(False, [f"Peer {address} not found."])
        dropped = self.presence.remove_by_address(address)
        self.probe.forget(address)
        emit_log(f"PEER: removed {address} ({dropped} presence entr{'y' if dropped == 1 else 'ies'})")
        return CommandResult(True, [f"Peer {address} removed."] + lines)

    # ---------- helpers ----------
    def _probe(self, address: str, port: int) -> None:
        """Unconnected -> Probing -> Connected, or ConnectTimeout back to Unconnected."""
        ev = self.probe.begin(address)
        ping = Ping(self.identity.name, self.identity.address, reply_port=self.identity.port)
        emit_log(f"CONNECT: probing {address}:{port}")
        ok = self.broadcaster.unicast(ping, address, port) and ev.wait(self.config.probe_timeout)
        self.probe.finish(address, bool(ok))
        if not ok:
            raise ConnectTimeout(address, port, self.config.probe_timeout)


def _format_history(ts: str, direction: str, peer: str, text: str) -> str:
    if direction == HISTORY_SENT:
        return f"{ts} - me: {text}"
    if direction == HISTORY_SENT_PRIVATE:
        return f"{ts} - [private to {peer}] {text}"
    if direction == HISTORY_RECV_PRIVATE:
        return f"{ts} - [private from {peer}] {text}"
    return f"{ts} - {peer}: {text}"
