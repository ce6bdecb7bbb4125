#!/usr/bin/env python3
# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
peerchat package

Protocol engine behind peerChat.py: wire codec, peer directory, presence
registry, dispatcher and the background loops. peerChat.py stays the
entrypoint; everything here is importable and testable without a terminal.
"""

from __future__ import annotations

VERSION = "2.0.0"
