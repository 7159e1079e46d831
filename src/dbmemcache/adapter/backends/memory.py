"""
dbmemcache - Memory Backend

In-process simulation of a memcached cluster for development and tests.

Features:
- One LRU store per configured server, keys placed by CRC32 modula
- memcached expiry rules (0 = never, <= 30 days relative, larger = absolute)
- Unsigned 64-bit counters with wrap-around incr and floor-at-zero decr
- Buffered mode (BUFFER_REQUESTS or NOREPLY) that queues writes in a local
  send buffer until drain() or the next read
- Per-server down/up switches to exercise partial failures
"""

from __future__ import annotations

import logging
import os
import time
import zlib
from collections import OrderedDict
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field

from ...behaviors import Behavior, BehaviorValue, Distribution, HashAlgorithm
from ...errors import TransientCacheError, UnsupportedBehaviorError
from ...types import NO_REPLY, UINT64_MAX, AdapterStatus, Key, ServerAddress, StoreCommand
from ...validation import key_bytes
from ..interface import BackendAdapter

logger = logging.getLogger(__name__)

RELATIVE_EXPIRY_LIMIT = 30 * 86400
VERSION = "1.6.0-memory"


@dataclass
class _Node:
    """Item store and counters for one simulated server."""

    max_items: int
    started: float
    items: OrderedDict[bytes, tuple[bytes, int, float | None]] = field(default_factory=OrderedDict)
    down: bool = False
    get_hits: int = 0
    get_misses: int = 0
    cmd_get: int = 0
    cmd_set: int = 0
    total_items: int = 0
    evictions: int = 0


class MemoryAdapter(BackendAdapter):
    """
    In-memory adapter with the same capability set as the network backends.

    Honors every behavior except hash algorithms other than DEFAULT/CRC and
    distributions other than MODULA, since placement is fixed.
    """

    name = "memory"

    def __init__(self, max_items: int = 10000, clock: Callable[[], float] | None = None):
        """
        Initialize memory backend.

        Args:
            max_items: Maximum items per simulated server (LRU eviction when exceeded)
            clock: Time source in epoch seconds (time.time by default)
        """
        super().__init__()
        self.max_items = max_items
        self._clock = clock or time.time
        self._nodes: dict[ServerAddress, _Node] = {}
        self._send_buffer: list[Callable[[], object]] = []
        self._closed = False

    # ------------ Connection ------------

    def connect(self, servers: Iterable[ServerAddress]) -> None:
        self._servers = []
        self._nodes = {}
        for server in servers:
            self.add_server(server)
        self._closed = False
        logger.debug("Memory backend connected to %d simulated server(s)", len(self._servers))

    def add_server(self, server: ServerAddress) -> AdapterStatus:
        if server in self._nodes:
            return AdapterStatus.SUCCESS
        self._nodes[server] = _Node(max_items=self.max_items, started=self._clock())
        self._servers.append(server)
        return AdapterStatus.SUCCESS

    def close(self) -> None:
        if self._send_buffer:
            logger.warning(
                "Closing memory backend with %d unsent buffered write(s)",
                len(self._send_buffer),
                extra={"backend": self.name},
            )
        self._send_buffer.clear()
        self._closed = True

    def mark_down(self, server: ServerAddress) -> None:
        """Make a simulated server unreachable."""
        self._nodes[server].down = True

    def mark_up(self, server: ServerAddress) -> None:
        self._nodes[server].down = False

    # ------------ Helpers ------------

    def _node_for(self, key: Key, operation: str) -> _Node:
        return self._reachable(self._owner(key, operation), operation)

    def _owner(self, key: Key, operation: str) -> ServerAddress:
        if self._closed or not self._servers:
            raise TransientCacheError(self.name, operation, "no servers available")
        return self._servers[self.key_hash(key) % len(self._servers)]

    def _reachable(self, server: ServerAddress, operation: str) -> _Node:
        node = self._nodes[server]
        if node.down:
            raise TransientCacheError(self.name, operation, f"server {server} is unreachable")
        return node

    def _expiry(self, expire: int) -> float | None:
        if expire == 0:
            return None
        if expire <= RELATIVE_EXPIRY_LIMIT:
            return self._clock() + expire
        return float(expire)

    def _lookup(self, node: _Node, key: bytes) -> tuple[bytes, int, float | None] | None:
        entry = node.items.get(key)
        if entry is None:
            return None
        expiry = entry[2]
        if expiry is not None and self._clock() >= expiry:
            del node.items[key]
            return None
        node.items.move_to_end(key)
        return entry

    def _put(self, node: _Node, key: bytes, value: bytes, flags: int, expiry: float | None) -> None:
        if key not in node.items and len(node.items) >= node.max_items:
            evicted, _ = node.items.popitem(last=False)
            node.evictions += 1
            logger.debug("Evicted key from memory backend: %r", evicted)
        node.items[key] = (value, flags, expiry)
        node.items.move_to_end(key)
        node.total_items += 1

    def _flush_reads(self) -> None:
        # Reads see every earlier write, as with a real send buffer.
        if self._send_buffer:
            self.drain()

    # ------------ Commands ------------

    def get(self, key: Key) -> tuple[bytes | None, bool]:
        self._flush_reads()
        node = self._node_for(key, "get")
        node.cmd_get += 1
        entry = self._lookup(node, key_bytes(key))
        if entry is None:
            node.get_misses += 1
            return None, False
        node.get_hits += 1
        return entry[0], True

    def _fetch_many(self, keys: list[Key]) -> dict[Key, bytes]:
        self._flush_reads()
        found: dict[Key, bytes] = {}
        for key in keys:
            value, hit = self.get(key)
            if hit:
                found[key] = value  # type: ignore[assignment]
        return found

    def store(self, command: StoreCommand, key: Key, value: bytes, expire: int, flags: int) -> AdapterStatus:
        node = self._node_for(key, command.value)
        if self.buffered:
            self._send_buffer.append(
                lambda: self._store(self._node_for(key, command.value), command, key, value, expire, flags)
            )
            return AdapterStatus.BUFFERED
        return self._store(node, command, key, value, expire, flags)

    def _store(
        self, node: _Node, command: StoreCommand, key: Key, value: bytes, expire: int, flags: int
    ) -> AdapterStatus:
        raw = key_bytes(key)
        node.cmd_set += 1
        current = self._lookup(node, raw)

        if command is StoreCommand.ADD and current is not None:
            return AdapterStatus.NOT_STORED
        if command in (StoreCommand.REPLACE, StoreCommand.PREPEND, StoreCommand.APPEND) and current is None:
            return AdapterStatus.NOT_STORED

        if command is StoreCommand.PREPEND:
            value, flags, expiry = value + current[0], current[1], current[2]  # type: ignore[index]
        elif command is StoreCommand.APPEND:
            value, flags, expiry = current[0] + value, current[1], current[2]  # type: ignore[index]
        else:
            expiry = self._expiry(expire)

        self._put(node, raw, value, flags, expiry)
        return AdapterStatus.SUCCESS

    def delta(self, key: Key, offset: int, increment: bool) -> tuple[int, AdapterStatus]:
        operation = "incr" if increment else "decr"
        node = self._node_for(key, operation)
        if self.buffered:
            self._send_buffer.append(lambda: self._delta(self._node_for(key, operation), key, offset, increment))
            return NO_REPLY, AdapterStatus.BUFFERED
        return self._delta(node, key, offset, increment)

    def _delta(self, node: _Node, key: Key, offset: int, increment: bool) -> tuple[int, AdapterStatus]:
        raw = key_bytes(key)
        current = self._lookup(node, raw)
        if current is None:
            return 0, AdapterStatus.NOT_FOUND

        value, flags, expiry = current
        if not value.strip().isdigit():
            # memcached answers CLIENT_ERROR; the item is left untouched
            logger.debug("Cannot increment or decrement non-numeric value", extra={"backend": self.name})
            return 0, AdapterStatus.FAILURE

        number = int(value)
        if increment:
            number = (number + offset) & UINT64_MAX
        else:
            number = max(number - offset, 0)
        node.items[raw] = (str(number).encode("ascii"), flags, expiry)
        return number, AdapterStatus.SUCCESS

    def delete(self, key: Key, hold: int) -> AdapterStatus:
        self._ignore_hold(key, hold)
        node = self._node_for(key, "delete")
        if self.buffered:
            self._send_buffer.append(lambda: self._delete(self._node_for(key, "delete"), key))
            return AdapterStatus.BUFFERED
        return self._delete(node, key)

    def _delete(self, node: _Node, key: Key) -> AdapterStatus:
        raw = key_bytes(key)
        if self._lookup(node, raw) is None:
            return AdapterStatus.NOT_FOUND
        del node.items[raw]
        return AdapterStatus.SUCCESS

    def flush(self, expire: int) -> AdapterStatus:
        nodes = [self._reachable(server, "flush_all") for server in self._servers]
        if self.buffered:
            self._send_buffer.append(
                lambda: self._flush([self._reachable(s, "flush_all") for s in self._servers], expire)
            )
            return AdapterStatus.BUFFERED
        return self._flush(nodes, expire)

    def flush_server(self, server: ServerAddress, expire: int) -> AdapterStatus:
        node = self._reachable(server, "flush_all")
        if self.buffered:
            self._send_buffer.append(lambda: self._flush([self._reachable(server, "flush_all")], expire))
            return AdapterStatus.BUFFERED
        return self._flush([node], expire)

    def _flush(self, nodes: list[_Node], expire: int) -> AdapterStatus:
        deadline = self._expiry(expire)
        for node in nodes:
            if deadline is None:
                node.items.clear()
            else:
                for raw, (value, flags, expiry) in list(node.items.items()):
                    if expiry is None or expiry > deadline:
                        node.items[raw] = (value, flags, deadline)
        return AdapterStatus.SUCCESS

    def drain(self) -> AdapterStatus:
        pending, self._send_buffer = self._send_buffer, []
        for position, write in enumerate(pending):
            try:
                write()
            except TransientCacheError:
                # Unsent writes stay queued behind the one that failed.
                self._send_buffer = pending[position:] + self._send_buffer
                raise
        logger.debug("Drained %d buffered write(s)", len(pending), extra={"backend": self.name})
        return AdapterStatus.SUCCESS

    # ------------ Placement ------------

    def key_hash(self, key: Key) -> int:
        return zlib.crc32(key_bytes(key))

    def server_for(self, key: Key) -> ServerAddress:
        return self._owner(key, "server_for")

    # ------------ Behaviors ------------

    def _apply_behavior(self, flag: Behavior, value: BehaviorValue) -> None:
        if flag in (Behavior.HASH, Behavior.KETAMA_HASH) and value not in (HashAlgorithm.DEFAULT, HashAlgorithm.CRC):
            raise UnsupportedBehaviorError(self.name, flag.value, value.value, "placement always uses CRC32")  # type: ignore[union-attr]
        if flag is Behavior.DISTRIBUTION and value is not Distribution.MODULA:
            raise UnsupportedBehaviorError(self.name, flag.value, value.value, "placement is always modula")  # type: ignore[union-attr]
        if flag in (Behavior.KETAMA, Behavior.KETAMA_WEIGHTED) and value:
            raise UnsupportedBehaviorError(self.name, flag.value, value, "placement is always modula")
        if flag in (Behavior.BUFFER_REQUESTS, Behavior.NOREPLY):
            self.buffered = bool(value)

    # ------------ Stats ------------

    def server_stats(self, server: ServerAddress) -> dict[str, str]:
        node = self._reachable(server, "stats")
        now = self._clock()
        return {
            "pid": str(os.getpid()),
            "uptime": str(int(now - node.started)),
            "time": str(int(now)),
            "version": VERSION,
            "curr_items": str(len(node.items)),
            "total_items": str(node.total_items),
            "bytes": str(sum(len(k) + len(v[0]) for k, v in node.items.items())),
            "cmd_get": str(node.cmd_get),
            "cmd_set": str(node.cmd_set),
            "get_hits": str(node.get_hits),
            "get_misses": str(node.get_misses),
            "evictions": str(node.evictions),
            "limit_maxitems": str(node.max_items),
        }
