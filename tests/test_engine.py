#!/usr/bin/env python3
# -*- coding: utf-8 -*-

import tempfile
import time
import unittest

from pubsub import pub

from peerchat.config import EngineConfig
from peerchat.engine import ChatEngine
from peerchat.errors import PortInUseError
from peerchat.events import TOPIC_LOG
from peerchat.protocol import Join, Ping, decode
from peerchat.storage import Storage
from peerchat.transport import UdpTransport

from support import LoopbackNetwork, LoopbackTransport, is_live


class _Logs:
    def __init__(self) -> None:
        self.lines = []

    def on_log(self, text, level) -> None:
        self.lines.append((level, text))


def _wait_until(predicate, timeout: float = 3.0) -> bool:
    deadline = time.time() + timeout
    while time.time() < deadline:
        if predicate():
            return True
        time.sleep(0.02)
    return predicate()


class ChatEngineTests(unittest.TestCase):
    def setUp(self) -> None:
        self.network = LoopbackNetwork()
        self.transport = LoopbackTransport(self.network, "10.0.0.1", 9)
        config = EngineConfig(local_name="alice", local_address="10.0.0.1", local_port=9)
        self.engine = ChatEngine(config, self.transport)
        self.logs = _Logs()
        pub.subscribe(self.logs.on_log, TOPIC_LOG)

    def tearDown(self) -> None:
        pub.unsubscribe(self.logs.on_log, TOPIC_LOG)

    def test_malformed_datagram_is_counted_and_logged(self) -> None:
        self.assertFalse(self.engine.handle_inbound(b"NOT A MESSAGE", "10.0.0.7"))
        self.assertEqual(self.engine.stats["malformed"], 1)
        self.assertEqual(self.engine.stats["received"], 0)
        warns = [text for level, text in self.logs.lines if level == "warn"]
        self.assertTrue(any(text.startswith("DROP:") and "10.0.0.7" in text for text in warns))
        self.engine.handle_inbound(b"STILL NOT A MESSAGE", "10.0.0.7")
        self.assertEqual(self.engine.stats["malformed"], 2)
        self.assertIn("(2 dropped so far)", self.logs.lines[-1][1])
        self.assertEqual(len(self.engine.presence), 0)

    def test_valid_datagram_is_dispatched(self) -> None:
        self.assertTrue(self.engine.handle_inbound(b"SYS:ACTIVE:bob:10.0.0.2\n", "10.0.0.2"))
        self.assertEqual(self.engine.stats["received"], 1)
        self.assertTrue(is_live(self.engine.presence, "bob", "10.0.0.2"))
        self.assertEqual(self.engine.directory.get_port("10.0.0.2"), 9)

    def test_tick_pings_every_peer_with_reply_port(self) -> None:
        self.engine.directory.upsert("10.0.0.2", 9)
        self.engine.directory.upsert("10.0.0.3", 4000)
        self.assertEqual(self.engine.tick(), 2)
        sent = sorted((a, p, decode(payload)) for a, p, payload in self.transport.sent)
        self.assertEqual(
            sent,
            [
                ("10.0.0.2", 9, Ping("alice", "10.0.0.1", 9)),
                ("10.0.0.3", 4000, Ping("alice", "10.0.0.1", 9)),
            ],
        )

    def test_tick_with_no_peers_sends_nothing(self) -> None:
        self.assertEqual(self.engine.tick(), 0)
        self.assertEqual(self.transport.sent, [])

    def test_start_registers_self_and_announces_to_loaded_peers(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            storage = Storage(td)
            storage.append_peer("10.0.0.2", 9)
            storage.append_peer("10.0.0.3", 9)
            transport = LoopbackTransport(self.network, "10.0.0.1", 9)
            config = EngineConfig(local_name="alice", local_address="10.0.0.1", local_port=9)
            engine = ChatEngine(config, transport, storage=storage)
            engine.start(threads=False)
            self.assertTrue(is_live(engine.presence, "alice", "10.0.0.1"))
            self.assertEqual(len(engine.directory), 2)
            joins = [(a, decode(p)) for a, _port, p in transport.sent]
            self.assertEqual(
                sorted(joins),
                [("10.0.0.2", Join("alice", "10.0.0.1")), ("10.0.0.3", Join("alice", "10.0.0.1"))],
            )

    def test_start_without_peers_stays_quiet(self) -> None:
        self.engine.start(threads=False)
        self.assertEqual(self.transport.sent, [])
        self.assertTrue(is_live(self.engine.presence, "alice", "10.0.0.1"))

    def test_shutdown_is_idempotent(self) -> None:
        self.engine.directory.upsert("10.0.0.2", 9)
        self.engine.shutdown()
        self.engine.shutdown()
        self.assertTrue(self.engine.closed)
        self.assertEqual(len(self.transport.sent), 1)
        self.assertTrue(self.transport.closed)
        done = [text for _level, text in self.logs.lines if text.startswith("Shutdown complete")]
        self.assertEqual(done, ["Shutdown complete: 0 datagram(s) handled, 0 dropped."])

    def test_send_chat_without_peers_hints_connect(self) -> None:
        result = self.engine.send_chat("anyone?")
        self.assertTrue(result.ok)
        self.assertTrue(result.lines)
        self.assertFalse(self.engine.send_chat("   ").ok)


class UdpEngineTests(unittest.TestCase):
    def _engine(self, name: str) -> ChatEngine:
        transport = UdpTransport(0, host="127.0.0.1", poll_interval=0.1)
        transport.bind()
        config = EngineConfig(
            local_name=name,
            local_address="127.0.0.1",
            local_port=transport.port,
            keepalive_interval=3600.0,
            probe_timeout=3.0,
        )
        engine = ChatEngine(config, transport)
        engine.start()
        self.addCleanup(engine.shutdown)
        return engine

    def test_second_bind_on_same_port_fails(self) -> None:
        first = UdpTransport(0, host="127.0.0.1")
        first.bind()
        self.addCleanup(first.close)
        second = UdpTransport(first.port, host="127.0.0.1")
        with self.assertRaises(PortInUseError):
            second.bind()
        self.assertFalse(second.bound)

    def test_socket_timeout_applies_to_bound_socket(self) -> None:
        config = EngineConfig(local_name="alice", local_address="127.0.0.1", socket_timeout=0.3)
        transport = UdpTransport(0, host="127.0.0.1", poll_interval=config.socket_timeout)
        transport.bind()
        self.addCleanup(transport.close)
        self.assertEqual(transport.sock.gettimeout(), 0.3)
        started = time.time()
        self.assertIsNone(transport.recv())
        self.assertLess(time.time() - started, 2.0)

    def test_socket_timeout_is_clamped(self) -> None:
        self.assertEqual(EngineConfig(local_name="a", local_address="127.0.0.1", socket_timeout=0).socket_timeout, 0.05)
        self.assertEqual(EngineConfig(local_name="a", local_address="127.0.0.1", socket_timeout=999).socket_timeout, 30.0)

    def test_connect_over_real_sockets(self) -> None:
        alice = self._engine("alice")
        bob = self._engine("bob")
        result = alice.handle_command("connect", f"127.0.0.1:{bob.identity.port}")
        self.assertTrue(result.ok, result.lines)
        self.assertEqual(alice.directory.get_port("127.0.0.1"), bob.identity.port)
        self.assertTrue(_wait_until(lambda: bob.directory.get_port("127.0.0.1") == alice.identity.port))
        self.assertTrue(_wait_until(lambda: is_live(bob.presence, "alice", "127.0.0.1")))

    def test_shutdown_stops_threads(self) -> None:
        alice = self._engine("alice")
        self.assertTrue(alice.receiver.running)
        self.assertTrue(alice.keepalive.running)
        alice.shutdown()
        self.assertFalse(alice.receiver.running)
        self.assertFalse(alice.keepalive.running)
        self.assertFalse(alice.transport.bound)


if __name__ == "__main__":
    unittest.main()
