#!/usr/bin/env python3
# -*- coding: utf-8 -*-

import threading
import unittest

from peerchat.presence import PRESENCE_TTL_SECONDS, PresenceRegistry

from support import is_live


class _Clock:
    def __init__(self, now: float = 1000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


class PresenceRegistryTests(unittest.TestCase):
    def setUp(self) -> None:
        self.clock = _Clock()
        self.presence = PresenceRegistry(PRESENCE_TTL_SECONDS, clock=self.clock)

    def _names(self):
        return sorted((e.name, e.address) for e in self.presence.list())

    def test_entry_expires_after_ttl(self) -> None:
        self.presence.touch("bob", "10.0.0.2")
        self.clock.now += PRESENCE_TTL_SECONDS - 1
        self.assertEqual(self._names(), [("bob", "10.0.0.2")])
        self.clock.now += 2
        self.assertEqual(self._names(), [])
        # Eviction happened on read, not just filtering.
        self.assertEqual(len(self.presence), 0)

    def test_entry_at_exact_ttl_is_stale(self) -> None:
        self.presence.touch("bob", "10.0.0.2")
        self.clock.now += PRESENCE_TTL_SECONDS
        self.assertFalse(is_live(self.presence, "bob", "10.0.0.2"))
        self.assertIsNone(self.presence.resolve_address("bob"))

    def test_touch_refreshes(self) -> None:
        self.presence.touch("bob", "10.0.0.2")
        self.clock.now += 200
        self.presence.touch("bob", "10.0.0.2")
        self.clock.now += 200
        self.assertTrue(is_live(self.presence, "bob", "10.0.0.2"))
        self.assertEqual(self.presence.list()[0].last_seen, 1200.0)

    def test_same_address_under_several_names(self) -> None:
        self.presence.touch("bob", "10.0.0.2")
        self.presence.touch("robert", "10.0.0.2")
        self.assertEqual(self._names(), [("bob", "10.0.0.2"), ("robert", "10.0.0.2")])

    def test_resolve_prefers_most_recently_seen(self) -> None:
        self.presence.touch("bob", "10.0.0.2")
        self.clock.now += 10
        self.presence.touch("bob", "10.0.0.3")
        self.assertEqual(self.presence.resolve_address("bob"), "10.0.0.3")
        self.clock.now += 10
        self.presence.touch("bob", "10.0.0.2")
        self.assertEqual(self.presence.resolve_address("bob"), "10.0.0.2")
        self.assertIsNone(self.presence.resolve_address("carol"))

    def test_resolve_tie_goes_to_last_refreshed(self) -> None:
        self.presence.touch("bob", "10.0.0.2")
        self.presence.touch("bob", "10.0.0.3")
        self.assertEqual(self.presence.resolve_address("bob"), "10.0.0.3")
        self.presence.touch("bob", "10.0.0.2")
        self.assertEqual(self.presence.resolve_address("bob"), "10.0.0.2")

    def test_resolve_skips_stale_entries(self) -> None:
        self.presence.touch("bob", "10.0.0.2")
        self.clock.now += PRESENCE_TTL_SECONDS - 5
        self.presence.touch("bob", "10.0.0.3")
        self.clock.now += 10
        self.assertEqual(self.presence.resolve_address("bob"), "10.0.0.3")

    def test_rename_replaces_key(self) -> None:
        self.presence.touch("bob", "10.0.0.2")
        self.presence.rename("bob", "robert", "10.0.0.2")
        self.assertFalse(is_live(self.presence, "bob", "10.0.0.2"))
        self.assertTrue(is_live(self.presence, "robert", "10.0.0.2"))
        self.assertEqual(self.presence.resolve_address("robert"), "10.0.0.2")

    def test_remove(self) -> None:
        self.presence.touch("bob", "10.0.0.2")
        self.assertTrue(self.presence.remove("bob", "10.0.0.2"))
        self.assertFalse(self.presence.remove("bob", "10.0.0.2"))

    def test_remove_by_address_cascades(self) -> None:
        self.presence.touch("bob", "10.0.0.2")
        self.presence.touch("robert", "10.0.0.2")
        self.presence.touch("carol", "10.0.0.3")
        self.assertEqual(self.presence.remove_by_address("10.0.0.2"), 2)
        self.assertEqual(self._names(), [("carol", "10.0.0.3")])
        self.assertEqual(self.presence.remove_by_address("10.0.0.2"), 0)

    def test_concurrent_rename_never_shows_torn_view(self) -> None:
        # A reader must always see exactly one of the two names.
        self.presence.touch("a", "10.0.0.2")
        stop = threading.Event()
        torn = []

        def flipper() -> None:
            names = ("a", "b")
            i = 0
            while not stop.is_set():
                self.presence.rename(names[i % 2], names[(i + 1) % 2], "10.0.0.2")
                i += 1

        t = threading.Thread(target=flipper, daemon=True)
        t.start()
        try:
            for _ in range(2000):
                seen = [e.name for e in self.presence.list() if e.address == "10.0.0.2"]
                if len(seen) != 1:
                    torn.append(seen)
        finally:
            stop.set()
            t.join(2.0)
        self.assertEqual(torn, [])


if __name__ == "__main__":
    unittest.main()
