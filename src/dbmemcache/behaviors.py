"""
dbmemcache - Behavior Configuration Resolver

Parses ``FLAG[:VALUE],...`` behavior lists and applies each setting to an
adapter, left to right.

Names are case-insensitive. Every flag also accepts its libmemcached long
form (``MEMCACHED_BEHAVIOR_TCP_NODELAY`` for ``TCP_NODELAY``); hash and
distribution values accept ``MEMCACHED_HASH_`` and ``MEMCACHED_DISTRIBUTION_``
prefixes the same way.

Failure handling:
- An empty flag name, or empty data after ``:``, stops parsing; the flags
  applied before it stay applied.
- An unknown flag or value name raises ConfigurationError; flags applied
  before it stay applied.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from enum import Enum
from typing import TYPE_CHECKING, NamedTuple

from .errors import ConfigurationError

if TYPE_CHECKING:
    from .adapter.interface import BackendAdapter

logger = logging.getLogger(__name__)


class Behavior(str, Enum):
    """Adapter-level behavior flags."""

    NO_BLOCK = "NO_BLOCK"
    TCP_NODELAY = "TCP_NODELAY"
    TCP_KEEPALIVE = "TCP_KEEPALIVE"
    HASH = "HASH"
    KETAMA = "KETAMA"
    KETAMA_WEIGHTED = "KETAMA_WEIGHTED"
    KETAMA_HASH = "KETAMA_HASH"
    DISTRIBUTION = "DISTRIBUTION"
    SOCKET_SEND_SIZE = "SOCKET_SEND_SIZE"
    SOCKET_RECV_SIZE = "SOCKET_RECV_SIZE"
    CACHE_LOOKUPS = "CACHE_LOOKUPS"
    SUPPORT_CAS = "SUPPORT_CAS"
    POLL_TIMEOUT = "POLL_TIMEOUT"
    BUFFER_REQUESTS = "BUFFER_REQUESTS"
    SORT_HOSTS = "SORT_HOSTS"
    VERIFY_KEY = "VERIFY_KEY"
    CONNECT_TIMEOUT = "CONNECT_TIMEOUT"
    RETRY_TIMEOUT = "RETRY_TIMEOUT"
    DEAD_TIMEOUT = "DEAD_TIMEOUT"
    BINARY_PROTOCOL = "BINARY_PROTOCOL"
    SND_TIMEOUT = "SND_TIMEOUT"
    RCV_TIMEOUT = "RCV_TIMEOUT"
    SERVER_FAILURE_LIMIT = "SERVER_FAILURE_LIMIT"
    IO_MSG_WATERMARK = "IO_MSG_WATERMARK"
    IO_BYTES_WATERMARK = "IO_BYTES_WATERMARK"
    HASH_WITH_PREFIX_KEY = "HASH_WITH_PREFIX_KEY"
    NOREPLY = "NOREPLY"
    AUTO_EJECT_HOSTS = "AUTO_EJECT_HOSTS"
    NUMBER_OF_REPLICAS = "NUMBER_OF_REPLICAS"
    RANDOMIZE_REPLICA_READ = "RANDOMIZE_REPLICA_READ"
    REMOVE_FAILED_SERVERS = "REMOVE_FAILED_SERVERS"


class HashAlgorithm(str, Enum):
    """Key hashing algorithms."""

    DEFAULT = "DEFAULT"
    MD5 = "MD5"
    CRC = "CRC"
    FNV1_64 = "FNV1_64"
    FNV1A_64 = "FNV1A_64"
    FNV1_32 = "FNV1_32"
    FNV1A_32 = "FNV1A_32"
    HSIEH = "HSIEH"
    MURMUR = "MURMUR"
    JENKINS = "JENKINS"


class Distribution(str, Enum):
    """Key-to-server distribution algorithms."""

    MODULA = "MODULA"
    CONSISTENT = "CONSISTENT"
    CONSISTENT_KETAMA = "CONSISTENT_KETAMA"
    CONSISTENT_KETAMA_SPY = "CONSISTENT_KETAMA_SPY"
    RANDOM = "RANDOM"


BehaviorValue = int | HashAlgorithm | Distribution

BEHAVIOR_PREFIX = "MEMCACHED_BEHAVIOR_"
HASH_PREFIX = "MEMCACHED_HASH_"
DISTRIBUTION_PREFIX = "MEMCACHED_DISTRIBUTION_"


def _name_table(members: type[Enum], prefix: str) -> dict[str, Enum]:
    table: dict[str, Enum] = {}
    for member in members:
        table[member.value] = member
        table[prefix + member.value] = member
    return table


BEHAVIOR_NAMES: dict[str, Behavior] = _name_table(Behavior, BEHAVIOR_PREFIX)  # type: ignore[assignment]
HASH_NAMES: dict[str, HashAlgorithm] = _name_table(HashAlgorithm, HASH_PREFIX)  # type: ignore[assignment]
DISTRIBUTION_NAMES: dict[str, Distribution] = _name_table(Distribution, DISTRIBUTION_PREFIX)  # type: ignore[assignment]

# Flags whose value is a secondary enum name rather than an integer.
ENUM_VALUED: dict[Behavior, tuple[dict[str, Enum], str]] = {
    Behavior.HASH: (HASH_NAMES, "hash"),  # type: ignore[dict-item]
    Behavior.KETAMA_HASH: (HASH_NAMES, "hash"),  # type: ignore[dict-item]
    Behavior.DISTRIBUTION: (DISTRIBUTION_NAMES, "distribution"),  # type: ignore[dict-item]
}


class BehaviorSetting(NamedTuple):
    """A resolved flag paired with its value."""

    flag: Behavior
    value: BehaviorValue

    def __str__(self) -> str:
        value = self.value.value if isinstance(self.value, Enum) else self.value
        return f"{self.flag.value}:{value}"


def resolve_flag(name: str) -> Behavior:
    """Look up a behavior flag by short or long name."""
    try:
        return BEHAVIOR_NAMES[name.strip().upper()]
    except KeyError:
        raise ConfigurationError(
            f"Unknown behavior flag: {name}",
            details={"flag": name},
        ) from None


def resolve_value(flag: Behavior, data: str | None) -> BehaviorValue:
    """Convert a token's value text into the type the flag expects."""
    if flag in ENUM_VALUED:
        table, kind = ENUM_VALUED[flag]
        if data is None:
            raise ConfigurationError(
                f"Behavior {flag.value} requires a {kind} name",
                details={"flag": flag.value},
            )
        try:
            return table[data.strip().upper()]  # type: ignore[return-value]
        except KeyError:
            raise ConfigurationError(
                f"Unknown {kind} name for {flag.value}: {data}",
                details={"flag": flag.value, "value": data, "supported": sorted(m.value for m in set(table.values()))},
            ) from None

    if data is None:
        return 1
    try:
        return int(data.strip())
    except ValueError:
        raise ConfigurationError(
            f"Behavior {flag.value} requires an integer value, got '{data}'",
            details={"flag": flag.value, "value": data},
        ) from None


def iter_behavior_tokens(text: str) -> Iterator[tuple[str, str | None]]:
    """
    Split a behavior list into (flag, value) text pairs.

    Stops, with a warning, at the first token with an empty flag name or an
    empty value after ``:``.
    """
    for position, token in enumerate(text.split(",")):
        name, sep, data = token.partition(":")
        name = name.strip()
        if not name:
            logger.warning(
                "Empty flag name in behavior list, ignoring the rest of the list",
                extra={"behaviors": text, "position": position},
            )
            return
        if sep and not data.strip():
            logger.warning(
                "Empty data for behavior %s, ignoring the rest of the list",
                name,
                extra={"behaviors": text, "position": position},
            )
            return
        yield name, (data if sep else None)


def parse_behaviors(text: str | None) -> Iterator[BehaviorSetting]:
    """Resolve a behavior list lazily, one setting per token."""
    if not text or not text.strip():
        return
    for name, data in iter_behavior_tokens(text):
        flag = resolve_flag(name)
        yield BehaviorSetting(flag, resolve_value(flag, data))


def apply_behaviors(
    adapter: BackendAdapter, text: str | None, applied: list[BehaviorSetting] | None = None
) -> list[BehaviorSetting]:
    """
    Apply a behavior list to an adapter, left to right.

    Returns the settings that were applied, appending them to ``applied``
    when given. A ConfigurationError from a later token propagates without
    undoing earlier ones, and ``applied`` still lists those earlier settings.
    """
    if applied is None:
        applied = []
    for setting in parse_behaviors(text):
        adapter.set_behavior(setting.flag, setting.value)
        applied.append(setting)
        logger.debug("Applied behavior %s", setting, extra={"backend": adapter.name})
    return applied
