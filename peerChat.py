#!/usr/bin/env python3
# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Serverless LAN chat over UDP datagrams.
Type text to talk to every known peer; lines starting with '/' are commands.
"""

from __future__ import annotations

import argparse
import getpass
import os
import signal
import sys
from typing import Dict, Optional

from pubsub import pub

from peerchat import VERSION
from peerchat.config import DEFAULT_PORT, EngineConfig
from peerchat.engine import ChatEngine
from peerchat.errors import PortInUseError, StorageError
from peerchat.events import TOPIC_CHAT, TOPIC_LOG, TOPIC_PRIVATE, TOPIC_SYSTEM
from peerchat.protocol import Join
from peerchat.storage import Storage, maybe_set_private_umask
from peerchat.transport import UdpTransport
from peerchat_utils import detect_local_ip, normalize_log_text_line, ts_local


DEFAULT_DATA_DIR = os.path.join(os.path.expanduser("~"), ".peerchat")
COMMAND_PREFIX = "/"


def default_name() -> str:
    try:
        name = getpass.getuser()
    except Exception:
        name = ""
    name = "".join(ch for ch in str(name) if ch not in ":\r\n").strip()
    return name or "user"


def handle_stop_signal(signum, _frame) -> None:
    # Only unwinds the main thread. main() runs shutdown in its finally block,
    # after the interrupted code has left its lock scopes.
    raise SystemExit(0)


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        prog="peerChat.py",
        formatter_class=argparse.RawTextHelpFormatter,
        add_help=False,
    )
    ap.add_argument("-h", "--help", action="store_true", help="show this help message and exit.")
    ap.add_argument("--version", action="store_true", help="print version and exit.")
    ap.add_argument("--port", type=int, default=None, help=f"UDP port to listen on (default: {DEFAULT_PORT}).")
    ap.add_argument("--name", default=None, help="display name (default: saved name or login name).")
    ap.add_argument("--address", default=None, help="address announced to peers (default: auto-detected IPv4).")
    ap.add_argument("--data-dir", default=DEFAULT_DATA_DIR, help="directory for peers, history and config (default: ~/.peerchat).")
    ap.add_argument("--runtime-log", action="store_true", help="append every log line to runtime.log in the data dir.")
    ap.add_argument("--debug", action="store_true", help="print debug log lines too.")
    return ap


def main() -> int:
    maybe_set_private_umask()
    ap = build_parser()
    args = ap.parse_args()
    if args.help:
        ap.print_help()
        return 0
    if args.version:
        print(VERSION)
        return 0

    storage = Storage(os.path.abspath(os.path.expanduser(args.data_dir)))
    storage.ensure_data_dir()
    storage.set_runtime_log_enabled(bool(args.runtime_log))
    settings: Dict[str, object] = storage.load_config()

    address = args.address or detect_local_ip()
    try:
        config = EngineConfig.from_settings(
            settings,
            local_name=args.name or settings.get("name") or default_name(),
            local_address=address,
            local_port=args.port,
        )
        # Rejects names and addresses that cannot go on the wire.
        Join(config.local_name, config.local_address)
    except (TypeError, ValueError) as e:
        print(f"Invalid configuration: {e}", file=sys.stderr)
        return 2

    transport = UdpTransport(config.local_port, poll_interval=config.socket_timeout)
    try:
        transport.bind()
    except PortInUseError as e:
        print(f"Cannot start: {e}", file=sys.stderr)
        return 1
    except OSError as e:
        print(f"Cannot bind port {config.local_port}: {e}", file=sys.stderr)
        return 1

    def log_line(text: str, level: str = "info") -> None:
        line, _body = normalize_log_text_line(text, fallback_ts=ts_local())
        storage.append_runtime_log(f"{line} [{level}]" if level != "info" else line)
        if level in ("warn", "error") or args.debug:
            print(line, file=sys.stderr, flush=True)

    def on_chat(sender: str, address: str, text: str) -> None:
        print(f"{ts_local()} {sender}@{address}: {text}", flush=True)

    def on_private(sender: str, address: str, text: str) -> None:
        print(f"{ts_local()} [private from {sender}@{address}] {text}", flush=True)

    def on_system(text: str) -> None:
        print(f"{ts_local()} * {text}", flush=True)

    # pubsub holds weak references: the locals above stay alive until main returns.
    pub.subscribe(log_line, TOPIC_LOG)
    pub.subscribe(on_chat, TOPIC_CHAT)
    pub.subscribe(on_private, TOPIC_PRIVATE)
    pub.subscribe(on_system, TOPIC_SYSTEM)

    engine = ChatEngine(config, transport, storage=storage)

    signal.signal(signal.SIGINT, handle_stop_signal)
    try:
        signal.signal(signal.SIGTERM, handle_stop_signal)
    except (AttributeError, ValueError):
        pass

    if not settings.get("name"):
        settings["name"] = config.local_name
        settings["port"] = config.local_port
        try:
            storage.save_config(settings)
        except StorageError as e:
            log_line(f"STORE: {e}", "error")

    try:
        engine.start()
        print("Type /help for commands.", flush=True)
        run_input_loop(engine)
    except (KeyboardInterrupt, SystemExit):
        log_line("SIGNAL: stop requested, shutting down")
    finally:
        engine.shutdown()
    return 0


def run_input_loop(engine: ChatEngine, prompt: Optional[str] = None) -> None:
    while not engine.closed:
        try:
            line = input(prompt or "")
        except EOFError:
            return
        line = line.strip()
        if not line:
            continue
        if not line.startswith(COMMAND_PREFIX):
            result = engine.send_chat(line)
        else:
            name, _, rest = line[len(COMMAND_PREFIX):].partition(" ")
            result = engine.handle_command(name, rest)
        if result.clear:
            # ANSI clear screen + home.
            print("\033[2J\033[H", end="", flush=True)
        for out in result.lines:
            print(out, flush=True)
        if result.quit:
            return


if __name__ == "__main__":
    sys.exit(main())
