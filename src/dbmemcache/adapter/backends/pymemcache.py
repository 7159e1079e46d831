"""
dbmemcache - pymemcache Backend

Blocking adapter over pymemcache's HashClient.

Notes:
- Key placement is HashClient's fixed rendezvous hashing; requests to pick a
  hash or distribution algorithm are rejected rather than ignored.
- NOREPLY / BUFFER_REQUESTS switch writes to fire-and-forget. Those writes
  report BUFFERED, and drain() confirms them with a ``version`` round trip
  per server (memcached answers commands on a connection in order).
- str keys go out UTF-8 encoded, so any key of 1-249 bytes is accepted.
- Option changes rebuild the HashClient; pymemcache keeps no client-side
  write buffer, so nothing is lost by rebuilding.

Requires: pymemcache>=4.0
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import Any

from ...behaviors import Behavior, BehaviorValue
from ...errors import TransientCacheError, UnsupportedBehaviorError
from ...types import NO_REPLY, AdapterStatus, Key, ServerAddress, StoreCommand
from ..interface import BackendAdapter

logger = logging.getLogger(__name__)

try:
    from pymemcache.client.hash import HashClient
    from pymemcache.client.murmur3 import murmur3_32
    from pymemcache.exceptions import MemcacheError
except ImportError as e:  # pragma: no cover
    raise ImportError(
        "pymemcache is required but not installed. Install with: pip install 'pymemcache>=4.0'"
    ) from e

# Failures pymemcache surfaces: protocol errors plus raw socket errors.
WIRE_ERRORS = (MemcacheError, OSError)

# Behaviors that only make sense for libmemcached's placement and I/O engine.
_PLACEMENT_BEHAVIORS = {
    Behavior.KETAMA,
    Behavior.KETAMA_WEIGHTED,
    Behavior.HASH_WITH_PREFIX_KEY,
    Behavior.NUMBER_OF_REPLICAS,
    Behavior.RANDOMIZE_REPLICA_READ,
}


def _text(value: Any) -> str:
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return str(value)


class PymemcacheAdapter(BackendAdapter):
    """
    pymemcache adapter.

    Timeouts arrive in libmemcached units (milliseconds for connect/poll,
    microseconds for send/receive) and are converted to pymemcache's seconds.
    """

    name = "pymemcache"

    def __init__(self) -> None:
        super().__init__()
        self._client: HashClient | None = None
        self._options: dict[str, Any] = {
            "connect_timeout": None,
            "timeout": None,
            "no_delay": False,
            "retry_attempts": 2,
            "retry_timeout": 1,
            "dead_timeout": 60,
            "default_noreply": False,
        }

    # ------------ Connection ------------

    def _build(self) -> None:
        if self._client is not None:
            self._client.close()
        self._client = HashClient(
            [(server.host, server.port) for server in self._servers],
            ignore_exc=False,
            allow_unicode_keys=True,
            encoding="utf-8",
            **self._options,
        )

    def connect(self, servers: Iterable[ServerAddress]) -> None:
        self._servers = list(servers)
        self._build()
        logger.info(
            "pymemcache client created for %d server(s)",
            len(self._servers),
            extra={"servers": [str(s) for s in self._servers]},
        )

    def add_server(self, server: ServerAddress) -> AdapterStatus:
        if server in self._servers:
            return AdapterStatus.SUCCESS
        self._servers.append(server)
        if self._client is None:
            self._build()
        else:
            self._client.add_server(server.host, server.port)
        return AdapterStatus.SUCCESS

    def close(self) -> None:
        if self._client is None:
            return
        try:
            self._client.close()
        except WIRE_ERRORS as e:
            logger.warning("Error closing pymemcache client: %s", e, extra={"error": str(e)})
        finally:
            self._client = None

    def _require_client(self, operation: str) -> HashClient:
        if self._client is None:
            raise TransientCacheError(self.name, operation, "client is not connected")
        return self._client

    # ------------ Commands ------------

    def get(self, key: Key) -> tuple[bytes | None, bool]:
        client = self._require_client("get")
        try:
            value = client.get(key)
        except WIRE_ERRORS as e:
            raise TransientCacheError(self.name, "get", e) from e
        return value, value is not None

    def _fetch_many(self, keys: list[Key]) -> dict[Key, bytes]:
        client = self._require_client("get_many")
        try:
            return client.get_many(keys)
        except WIRE_ERRORS as e:
            raise TransientCacheError(self.name, "get_many", e) from e

    def store(self, command: StoreCommand, key: Key, value: bytes, expire: int, flags: int) -> AdapterStatus:
        client = self._require_client(command.value)
        method = getattr(client, command.value)
        try:
            if command in (StoreCommand.PREPEND, StoreCommand.APPEND):
                stored = method(key, value, expire=expire, noreply=self.buffered)
            else:
                stored = method(key, value, expire=expire, noreply=self.buffered, flags=flags)
        except WIRE_ERRORS as e:
            raise TransientCacheError(self.name, command.value, e) from e

        if self.buffered:
            return AdapterStatus.BUFFERED
        return AdapterStatus.SUCCESS if stored else AdapterStatus.NOT_STORED

    def delta(self, key: Key, offset: int, increment: bool) -> tuple[int, AdapterStatus]:
        client = self._require_client("incr" if increment else "decr")
        try:
            if increment:
                result = client.incr(key, offset, noreply=self.buffered)
            else:
                result = client.decr(key, offset, noreply=self.buffered)
        except WIRE_ERRORS as e:
            raise TransientCacheError(self.name, "incr" if increment else "decr", e) from e

        if self.buffered:
            return NO_REPLY, AdapterStatus.BUFFERED
        if result is None:
            return 0, AdapterStatus.NOT_FOUND
        return int(result), AdapterStatus.SUCCESS

    def delete(self, key: Key, hold: int) -> AdapterStatus:
        self._ignore_hold(key, hold)
        client = self._require_client("delete")
        try:
            deleted = client.delete(key, noreply=self.buffered)
        except WIRE_ERRORS as e:
            raise TransientCacheError(self.name, "delete", e) from e

        if self.buffered:
            return AdapterStatus.BUFFERED
        return AdapterStatus.SUCCESS if deleted else AdapterStatus.NOT_FOUND

    def flush(self, expire: int) -> AdapterStatus:
        client = self._require_client("flush_all")
        try:
            results = [node.flush_all(delay=expire, noreply=self.buffered) for node in client.clients.values()]
        except WIRE_ERRORS as e:
            raise TransientCacheError(self.name, "flush_all", e) from e

        if self.buffered:
            return AdapterStatus.BUFFERED
        return AdapterStatus.SUCCESS if all(results) else AdapterStatus.FAILURE

    def flush_server(self, server: ServerAddress, expire: int) -> AdapterStatus:
        node = self._node(server, "flush_all")
        try:
            flushed = node.flush_all(delay=expire, noreply=self.buffered)
        except WIRE_ERRORS as e:
            raise TransientCacheError(self.name, "flush_all", e) from e

        if self.buffered:
            return AdapterStatus.BUFFERED
        return AdapterStatus.SUCCESS if flushed else AdapterStatus.FAILURE

    def drain(self) -> AdapterStatus:
        client = self._require_client("drain")
        try:
            for node in client.clients.values():
                node.version()
        except WIRE_ERRORS as e:
            raise TransientCacheError(self.name, "drain", e) from e
        return AdapterStatus.SUCCESS

    # ------------ Placement ------------

    def key_hash(self, key: Key) -> int:
        # Rendezvous scoring runs this hash over "<server>-<key>".
        return murmur3_32(_text(key))

    def server_for(self, key: Key) -> ServerAddress:
        client = self._require_client("server_for")
        try:
            node = client._get_client(key)
        except WIRE_ERRORS as e:
            raise TransientCacheError(self.name, "server_for", e) from e

        for name, candidate in client.clients.items():
            if candidate is node:
                for server in self._servers:
                    if f"{server.host}:{server.port}" == name:
                        return server
        raise TransientCacheError(self.name, "server_for", "no live server owns the key")

    def _node(self, server: ServerAddress, operation: str) -> Any:
        client = self._require_client(operation)
        node = client.clients.get(f"{server.host}:{server.port}")
        if node is None:
            raise TransientCacheError(self.name, operation, f"server {server} is not in the client's pool")
        return node

    # ------------ Behaviors ------------

    def _apply_behavior(self, flag: Behavior, value: BehaviorValue) -> None:
        if flag in (Behavior.HASH, Behavior.KETAMA_HASH, Behavior.DISTRIBUTION):
            raise UnsupportedBehaviorError(
                self.name, flag.value, getattr(value, "value", value), "key placement is fixed rendezvous hashing"
            )

        number = int(value)  # type: ignore[arg-type]
        if flag in _PLACEMENT_BEHAVIORS:
            if number:
                raise UnsupportedBehaviorError(self.name, flag.value, number, "key placement is fixed rendezvous hashing")
            return
        if flag is Behavior.CONNECT_TIMEOUT:
            self._options["connect_timeout"] = number / 1000 if number else None
        elif flag is Behavior.POLL_TIMEOUT:
            self._options["timeout"] = number / 1000 if number else None
        elif flag in (Behavior.SND_TIMEOUT, Behavior.RCV_TIMEOUT):
            self._options["timeout"] = number / 1_000_000 if number else None
        elif flag is Behavior.TCP_NODELAY:
            self._options["no_delay"] = bool(number)
        elif flag is Behavior.SERVER_FAILURE_LIMIT:
            self._options["retry_attempts"] = number
        elif flag is Behavior.RETRY_TIMEOUT:
            self._options["retry_timeout"] = number
        elif flag is Behavior.DEAD_TIMEOUT:
            self._options["dead_timeout"] = number
        elif flag in (Behavior.NOREPLY, Behavior.BUFFER_REQUESTS):
            self.buffered = bool(number)
            self._options["default_noreply"] = self.buffered
        elif flag in (Behavior.VERIFY_KEY, Behavior.REMOVE_FAILED_SERVERS, Behavior.AUTO_EJECT_HOSTS):
            # Always on in pymemcache.
            if not number:
                raise UnsupportedBehaviorError(self.name, flag.value, number, "cannot be disabled")
        elif flag is Behavior.BINARY_PROTOCOL:
            if number:
                raise UnsupportedBehaviorError(self.name, flag.value, number, "only the text protocol is available")
        else:
            raise UnsupportedBehaviorError(self.name, flag.value, number)

        if self._client is not None:
            self._build()

    # ------------ Stats ------------

    def server_stats(self, server: ServerAddress) -> dict[str, str]:
        node = self._node(server, "stats")
        try:
            stats = node.stats()
        except WIRE_ERRORS as e:
            raise TransientCacheError(self.name, "stats", e) from e
        return {_text(key): _text(value) for key, value in stats.items()}
