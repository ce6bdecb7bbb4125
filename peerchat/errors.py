#!/usr/bin/env python3
# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

from __future__ import annotations


class PeerChatError(Exception):
    pass


class StorageError(PeerChatError):
    """Durable storage could not be read or written.

    The in-memory state has already been updated when this is raised; only
    persistence failed for that call.
    """

    def __init__(self, path: str, op: str, cause: BaseException) -> None:
        super().__init__(f"{op} {path} failed: {type(cause).__name__}: {cause}")
        self.path = path
        self.op = op
        self.cause = cause


class PortInUseError(PeerChatError):
    def __init__(self, port: int, cause: BaseException) -> None:
        super().__init__(f"port {port} is already in use: {cause}")
        self.port = port
        self.cause = cause


class ConnectTimeout(PeerChatError):
    def __init__(self, address: str, port: int, timeout: float) -> None:
        super().__init__(f"no reply from {address}:{port} within {timeout:g}s")
        self.address = address
        self.port = port
        self.timeout = timeout
