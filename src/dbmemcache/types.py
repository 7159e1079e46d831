"""
dbmemcache - Shared Types

Status codes, command kinds, and server addressing used across the adapter
boundary.
"""

from __future__ import annotations

import re
from enum import Enum
from typing import NamedTuple

from .errors import ConfigurationError

DEFAULT_PORT = 11211

# Counter replies are unsigned 64-bit; all ones is reserved for "no reply".
UINT64_MAX = 2**64 - 1
INT64_MAX = 2**63 - 1
INT64_MIN = -(2**63)
NO_REPLY = UINT64_MAX

Key = str | bytes


class AdapterStatus(str, Enum):
    """Typed outcome of a single adapter call."""

    SUCCESS = "success"
    NOT_FOUND = "not_found"
    NOT_STORED = "not_stored"
    BUFFERED = "buffered"
    FAILURE = "failure"


class StoreCommand(str, Enum):
    """Write-family command kinds."""

    ADD = "add"
    REPLACE = "replace"
    SET = "set"
    PREPEND = "prepend"
    APPEND = "append"


class ServerAddress(NamedTuple):
    """One host:port entry of the server list."""

    host: str
    port: int = DEFAULT_PORT

    def __str__(self) -> str:
        if ":" in self.host:
            return f"[{self.host}]:{self.port}"
        return f"{self.host}:{self.port}"


class StatEntry(NamedTuple):
    """One (server, key, value) statistic produced by a stats call."""

    server: str
    key: str
    value: str


_IPV6_ENTRY = re.compile(r"^\[(?P<host>[0-9A-Fa-f:.]+)\](?::(?P<port>\d+))?$")


def parse_server(entry: str, default_port: int = DEFAULT_PORT) -> ServerAddress:
    """Parse ``host[:port]`` (or ``[v6addr][:port]``) into a ServerAddress."""
    text = entry.strip()
    if not text:
        raise ConfigurationError("Empty server entry", details={"entry": entry})

    match = _IPV6_ENTRY.match(text)
    if match:
        host = match.group("host")
        port_text = match.group("port")
    elif text.count(":") > 1:
        raise ConfigurationError(
            f"Ambiguous server entry '{text}', write IPv6 addresses as [addr]:port",
            details={"entry": entry},
        )
    else:
        host, _, port_text = text.partition(":")
        if not host:
            raise ConfigurationError(f"Missing host in server entry '{text}'", details={"entry": entry})

    if not port_text:
        return ServerAddress(host, default_port)
    if not port_text.isdigit() or not 0 < int(port_text) < 65536:
        raise ConfigurationError(f"Invalid port in server entry '{text}'", details={"entry": entry})
    return ServerAddress(host, int(port_text))


def parse_server_list(text: str | None, default_port: int = DEFAULT_PORT) -> list[ServerAddress]:
    """
    Parse a comma separated server list.

    Duplicate entries are dropped, preserving first-seen order.
    """
    if not text or not text.strip():
        return []

    servers: list[ServerAddress] = []
    for entry in text.split(","):
        if not entry.strip():
            continue
        server = parse_server(entry, default_port)
        if server not in servers:
            servers.append(server)
    return servers
