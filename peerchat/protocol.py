#!/usr/bin/env python3
# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Optional, Tuple, Type, Union


DELIM = ":"
TAG_MSG = "MSG"
TAG_JOIN = "SYS:JOIN"
TAG_LEAVE = "SYS:LEAVE"
TAG_PING = "SYS:PING"
TAG_ACTIVE = "SYS:ACTIVE"
TAG_RENAME = "SYS:RENAME"
TAG_PM = "PM"
SYS_PREFIX = "SYS" + DELIM
MAX_DATAGRAM = 65507


def _check_field(label: str, value: object) -> None:
    if not isinstance(value, str) or not value:
        raise ValueError(f"{label} must be a non-empty string")
    if DELIM in value:
        raise ValueError(f"{label} must not contain {DELIM!r}: {value!r}")
    if "\n" in value or "\r" in value:
        raise ValueError(f"{label} must be a single line")


def _check_text(value: object) -> None:
    if not isinstance(value, str):
        raise ValueError("text must be a string")
    if "\n" in value or "\r" in value:
        raise ValueError("text must be a single line")


def _check_port(value: object) -> None:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"port must be an integer, got {value!r}")
    if not 1 <= value <= 65535:
        raise ValueError(f"port out of range: {value}")


@dataclass(frozen=True)
class Chat:
    sender: str
    address: str
    text: str

    def __post_init__(self) -> None:
        _check_field("sender", self.sender)
        _check_field("address", self.address)
        _check_text(self.text)

    @property
    def identity(self) -> Tuple[str, str]:
        return (self.sender, self.address)


@dataclass(frozen=True)
class Join:
    name: str
    address: str

    def __post_init__(self) -> None:
        _check_field("name", self.name)
        _check_field("address", self.address)

    @property
    def identity(self) -> Tuple[str, str]:
        return (self.name, self.address)


@dataclass(frozen=True)
class Leave:
    name: str
    address: str

    def __post_init__(self) -> None:
        _check_field("name", self.name)
        _check_field("address", self.address)

    @property
    def identity(self) -> Tuple[str, str]:
        return (self.name, self.address)


@dataclass(frozen=True)
class Ping:
    name: str
    address: str
    reply_port: Optional[int] = None

    def __post_init__(self) -> None:
        _check_field("name", self.name)
        _check_field("address", self.address)
        if self.reply_port is not None:
            _check_port(self.reply_port)

    @property
    def identity(self) -> Tuple[str, str]:
        return (self.name, self.address)


@dataclass(frozen=True)
class Active:
    name: str
    address: str

    def __post_init__(self) -> None:
        _check_field("name", self.name)
        _check_field("address", self.address)

    @property
    def identity(self) -> Tuple[str, str]:
        return (self.name, self.address)


@dataclass(frozen=True)
class Rename:
    old_name: str
    new_name: str
    address: str

    def __post_init__(self) -> None:
        _check_field("old_name", self.old_name)
        _check_field("new_name", self.new_name)
        _check_field("address", self.address)

    @property
    def identity(self) -> Tuple[str, str]:
        # The sender speaks under its new name from now on.
        return (self.new_name, self.address)


@dataclass(frozen=True)
class Private:
    sender: str
    address: str
    target_name: str
    text: str

    def __post_init__(self) -> None:
        _check_field("sender", self.sender)
        _check_field("address", self.address)
        _check_field("target_name", self.target_name)
        _check_text(self.text)

    @property
    def identity(self) -> Tuple[str, str]:
        return (self.sender, self.address)


@dataclass(frozen=True)
class Malformed:
    """Decode outcome for a datagram that does not match any schema."""

    line: str
    reason: str


Message = Union[Chat, Join, Leave, Ping, Active, Rename, Private]

# tag -> (type, fixed prefix field count, trailing text field)
_SCHEMAS: Dict[str, Tuple[Type, int, bool]] = {
    TAG_MSG: (Chat, 2, True),
    TAG_JOIN: (Join, 2, False),
    TAG_LEAVE: (Leave, 2, False),
    TAG_PING: (Ping, 2, False),
    TAG_ACTIVE: (Active, 2, False),
    TAG_RENAME: (Rename, 3, False),
    TAG_PM: (Private, 3, True),
}
_TAG_BY_TYPE: Dict[Type, str] = {cls: tag for tag, (cls, _n, _t) in _SCHEMAS.items()}


def encode(msg: Message) -> str:
    """Render a message as one wire line (no trailing newline)."""
    tag = _TAG_BY_TYPE.get(type(msg))
    if tag is None:
        raise TypeError(f"not a protocol message: {msg!r}")
    if isinstance(msg, Chat):
        fields = [msg.sender, msg.address, msg.text]
    elif isinstance(msg, Private):
        fields = [msg.sender, msg.address, msg.target_name, msg.text]
    elif isinstance(msg, Rename):
        fields = [msg.old_name, msg.new_name, msg.address]
    elif isinstance(msg, Ping):
        fields = [msg.name, msg.address]
        if msg.reply_port is not None:
            fields.append(str(msg.reply_port))
    else:
        fields = [msg.name, msg.address]
    return DELIM.join([tag] + fields)


def encode_bytes(msg: Message) -> bytes:
    return (encode(msg) + "\n").encode("utf-8")


def _split_tag(line: str) -> Tuple[str, Optional[str]]:
    if line.startswith(SYS_PREFIX):
        kind, sep, rest = line[len(SYS_PREFIX):].partition(DELIM)
        return SYS_PREFIX + kind, (rest if sep else None)
    tag, sep, rest = line.partition(DELIM)
    return tag, (rest if sep else None)


def decode(raw: Union[str, bytes, bytearray]) -> Union[Message, Malformed]:
    """Parse one wire line. Never raises; bad input yields Malformed."""
    if isinstance(raw, (bytes, bytearray)):
        line = bytes(raw).decode("utf-8", errors="replace")
    else:
        line = str(raw)
    line = line.rstrip("\r\n")
    if not line:
        return Malformed(line, "empty datagram")
    tag, rest = _split_tag(line)
    schema = _SCHEMAS.get(tag)
    if schema is None:
        return Malformed(line, f"unknown tag {tag!r}")
    cls, n_fixed, has_text = schema
    if rest is None:
        return Malformed(line, f"{tag}: no fields")
    if has_text:
        parts = rest.split(DELIM, n_fixed)
        if len(parts) != n_fixed + 1:
            return Malformed(line, f"{tag}: expected {n_fixed + 1} fields, got {len(parts)}")
    else:
        parts = rest.split(DELIM)
        if len(parts) < n_fixed:
            return Malformed(line, f"{tag}: expected {n_fixed} fields, got {len(parts)}")
    fixed = parts[:n_fixed]
    if any(not p for p in fixed):
        return Malformed(line, f"{tag}: empty field")
    args = list(fixed)
    if has_text:
        args.append(parts[n_fixed])
    elif cls is Ping and len(parts) > n_fixed and parts[n_fixed]:
        try:
            args.append(int(parts[n_fixed]))
        except ValueError:
            return Malformed(line, f"{tag}: bad reply port {parts[n_fixed]!r}")
    try:
        return cls(*args)
    except ValueError as e:
        return Malformed(line, f"{tag}: {e}")


def tag_of(msg: Message) -> str:
    return _TAG_BY_TYPE[type(msg)]
