#!/usr/bin/env python3
# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
In-process event bus for the engine.

The engine never prints. Diagnostics go to ``peerchat.log`` and user-visible
happenings go to ``peerchat.display.*``; whatever front end is attached
subscribes with ``pub.subscribe(listener, TOPIC_...)``.
"""

from __future__ import annotations

from pubsub import pub


TOPIC_LOG = "peerchat.log"
TOPIC_CHAT = "peerchat.display.chat"
TOPIC_PRIVATE = "peerchat.display.private"
TOPIC_SYSTEM = "peerchat.display.system"

LEVELS = ("debug", "info", "warn", "error")


class PeerChatTopics:
    class peerchat:
        """Events published by the peer chat engine."""

        class log:
            """One diagnostic line with a tag prefix such as 'RECV:' or 'SEND:'."""

            def msgDataSpec(text, level):
                """
                - text: log line without timestamp
                - level: one of debug, info, warn, error
                """

        class display:
            """Something the local user should see."""

            class chat:
                """Public chat line received from a peer."""

                def msgDataSpec(sender, address, text):
                    """
                    - sender: display name of the author
                    - address: network address of the author
                    - text: message body
                    """

            class private:
                """Private message addressed to the local identity."""

                def msgDataSpec(sender, address, text):
                    """
                    - sender: display name of the author
                    - address: network address of the author
                    - text: message body
                    """

            class system:
                """Join/leave/rename notices and engine status."""

                def msgDataSpec(text):
                    """
                    - text: notice text
                    """


pub.addTopicDefnProvider(PeerChatTopics, pub.TOPIC_TREE_FROM_CLASS)


def emit_log(text: str, level: str = "info") -> None:
    if level not in LEVELS:
        level = "info"
    pub.sendMessage(TOPIC_LOG, text=str(text), level=level)


def emit_chat(sender: str, address: str, text: str) -> None:
    pub.sendMessage(TOPIC_CHAT, sender=sender, address=address, text=text)


def emit_private(sender: str, address: str, text: str) -> None:
    pub.sendMessage(TOPIC_PRIVATE, sender=sender, address=address, text=text)


def emit_system(text: str) -> None:
    pub.sendMessage(TOPIC_SYSTEM, text=str(text))
