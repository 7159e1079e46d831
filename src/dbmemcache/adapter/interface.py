"""
dbmemcache - Backend Adapter Interface

Defines the capability set every wire-protocol client must implement so the
dispatcher never branches on which client library is in use.

Contract:
- Protocol outcomes come back as an AdapterStatus, never as exceptions.
- Network and protocol failures raise TransientCacheError.
- Adapters never retry; retry policy belongs to the caller.
- Keys arrive as str or bytes; str keys travel as UTF-8.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections import deque
from collections.abc import Callable, Iterable

from ..behaviors import Behavior, BehaviorValue
from ..types import AdapterStatus, Key, ServerAddress, StoreCommand

logger = logging.getLogger(__name__)


class MultiGetCursor:
    """
    Position and inflight buffer of one batched lookup.

    A cursor belongs to exactly one iteration and cannot be restarted.
    """

    def __init__(self, keys: list[Key]):
        self.keys: tuple[Key, ...] = tuple(keys)
        self._ready: deque[tuple[Key, bytes]] = deque()
        self.released = False

    def feed(self, found: dict[Key, bytes]) -> None:
        """Queue the pairs a batch returned; requested order, duplicates once."""
        seen: set[Key] = set()
        for key in self.keys:
            if key in found and key not in seen:
                seen.add(key)
                self._ready.append((key, found[key]))

    def pop(self) -> tuple[Key, bytes] | None:
        if self.released or not self._ready:
            return None
        return self._ready.popleft()

    def release(self) -> None:
        """Drop any buffered pairs."""
        self._ready.clear()
        self.released = True

    def __len__(self) -> int:
        return len(self._ready)


class BackendAdapter(ABC):
    """
    Abstract base class for wire-protocol client adapters.

    A concrete adapter is the ClientHandle: it owns the connection state and
    the server list. The server list only grows at runtime; replacing it means
    building a new adapter.
    """

    name = "abstract"

    def __init__(self) -> None:
        self._servers: list[ServerAddress] = []
        self.behaviors: dict[Behavior, BehaviorValue] = {}
        self.buffered = False

    @property
    def servers(self) -> list[ServerAddress]:
        """Connected servers in server-list order."""
        return list(self._servers)

    # ------------ Connection ------------

    @abstractmethod
    def connect(self, servers: Iterable[ServerAddress]) -> None:
        """Create the underlying client for the given servers."""

    @abstractmethod
    def add_server(self, server: ServerAddress) -> AdapterStatus:
        """Append one server to the running client."""

    @abstractmethod
    def close(self) -> None:
        """Release the underlying client and its connections."""

    # ------------ Commands ------------

    @abstractmethod
    def get(self, key: Key) -> tuple[bytes | None, bool]:
        """Fetch one key; returns (value, found)."""

    @abstractmethod
    def store(self, command: StoreCommand, key: Key, value: bytes, expire: int, flags: int) -> AdapterStatus:
        """Run one write-family command."""

    @abstractmethod
    def delta(self, key: Key, offset: int, increment: bool) -> tuple[int, AdapterStatus]:
        """Atomically add or subtract an unsigned offset; returns (new value, status)."""

    @abstractmethod
    def delete(self, key: Key, hold: int) -> AdapterStatus:
        """Delete one key."""

    @abstractmethod
    def flush(self, expire: int) -> AdapterStatus:
        """Invalidate every item on every server, optionally after a delay."""

    @abstractmethod
    def flush_server(self, server: ServerAddress, expire: int) -> AdapterStatus:
        """Invalidate every item on one server."""

    @abstractmethod
    def drain(self) -> AdapterStatus:
        """Force buffered writes out and wait until the servers have them."""

    # ------------ Placement ------------

    @abstractmethod
    def key_hash(self, key: Key) -> int:
        """The unsigned 32-bit hash this backend's placement applies to a key."""

    @abstractmethod
    def server_for(self, key: Key) -> ServerAddress:
        """The server a key is placed on."""

    # ------------ Behaviors ------------

    def set_behavior(self, flag: Behavior, value: BehaviorValue) -> AdapterStatus:
        """
        Apply one behavior setting.

        Raises:
            UnsupportedBehaviorError: If this backend cannot honor the setting
        """
        self._apply_behavior(flag, value)
        self.behaviors[flag] = value
        return AdapterStatus.SUCCESS

    @abstractmethod
    def _apply_behavior(self, flag: Behavior, value: BehaviorValue) -> None:
        """Backend-specific behavior handling."""

    # ------------ Multi-get ------------

    @abstractmethod
    def _fetch_many(self, keys: list[Key]) -> dict[Key, bytes]:
        """One batched lookup; missing keys are omitted."""

    def multi_get_begin(self, keys: list[Key]) -> MultiGetCursor:
        """Issue one batched request covering all keys."""
        cursor = MultiGetCursor(keys)
        if cursor.keys:
            cursor.feed(self._fetch_many(list(dict.fromkeys(cursor.keys))))
        return cursor

    def multi_get_next(self, cursor: MultiGetCursor) -> tuple[Key, bytes] | None:
        """Pull one ready (key, value) pair, or None when the batch is done."""
        return cursor.pop()

    # ------------ Servers ------------

    def for_each_server(self, callback: Callable[[ServerAddress], None]) -> None:
        """Invoke callback once per connected server, in server-list order."""
        for server in self.servers:
            callback(server)

    @abstractmethod
    def server_stats(self, server: ServerAddress) -> dict[str, str]:
        """Return every statistic one server reports."""

    # ------------ Helpers ------------

    def _ignore_hold(self, key: Key, hold: int) -> None:
        if hold:
            logger.warning(
                "Delete hold time is not supported by current servers, deleting immediately",
                extra={"backend": self.name, "hold": hold},
            )

    def __repr__(self) -> str:
        servers = ",".join(str(s) for s in self._servers)
        return f"<{self.__class__.__name__} servers=[{servers}] buffered={self.buffered}>"
