"""
dbmemcache - Cache Client

The command dispatcher and owner of the client handle. One CacheClient
mediates every host call: it validates arguments, converts expirations,
dispatches to the backend adapter, and maps adapter statuses onto results.

Result conventions for write-family calls:
- True: the server stored the item
- False: not stored, or the call failed (a warning is logged)
- None: the write was buffered and is pending; the transaction buffer is
  marked dirty

The cache is best-effort. Transient failures are logged as warnings and
never raised; shape and range errors are raised for the one call.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timedelta
from types import TracebackType
from typing import Any

from .adapter.factory import create_adapter
from .adapter.interface import BackendAdapter
from .behaviors import BehaviorSetting, apply_behaviors
from .config import MemcacheConfig
from .errors import NotInitializedError, RangeError, TransientCacheError, ValidationError
from .expiration import Interval, compute_expiration
from .multiget import MultiGetIterator
from .stats import collect_stats, format_stats_report, stat_by_name
from .transaction import TransactionBuffer, TransactionEvent
from .types import (
    INT64_MAX,
    INT64_MIN,
    NO_REPLY,
    AdapterStatus,
    Key,
    ServerAddress,
    StoreCommand,
    parse_server,
    parse_server_list,
)
from .validation import validate_flags, validate_key, validate_value

logger = logging.getLogger(__name__)

Expiration = Interval | timedelta | datetime | int | float | None
AdapterFactory = Callable[[MemcacheConfig], BackendAdapter]


class CacheClient:
    """
    Backend-agnostic memcached client.

    The handle is created by init() and destroyed by free(). Reconfiguring
    the server or behavior list discards the handle and builds a new one;
    writes that were only in a client-side send buffer are lost.

    Example:
        client = CacheClient(MemcacheConfig(backend="memory", servers="a:11211"))
        client.init()
        client.set("greeting", "hello", expire=Interval(days=1))
        client.get("greeting")  # b"hello"
    """

    def __init__(
        self,
        config: MemcacheConfig | None = None,
        adapter_factory: AdapterFactory = create_adapter,
    ):
        self.config = config or MemcacheConfig()
        self._adapter_factory = adapter_factory
        self._adapter: BackendAdapter | None = None
        self._servers: list[ServerAddress] = parse_server_list(self.config.servers, self.config.default_port)
        self.behaviors: list[BehaviorSetting] = []
        self.transaction = TransactionBuffer(flush_on_commit=self.config.flush_on_commit)

    # ------------ Handle lifecycle ------------

    @property
    def initialized(self) -> bool:
        return self._adapter is not None

    @property
    def adapter(self) -> BackendAdapter:
        return self._require("adapter")

    @property
    def servers(self) -> list[ServerAddress]:
        if self._adapter is not None:
            return self._adapter.servers
        return list(self._servers)

    def init(self) -> bool:
        """
        Build the client handle.

        Returns False if a handle already exists, so callers can add servers
        conditionally.
        """
        if self._adapter is not None:
            return False
        self._build_handle()
        return True

    def free(self) -> bool:
        """Tear the handle down. Returns False if there was none."""
        if self._adapter is None:
            return False

        adapter, self._adapter = self._adapter, None
        self._discard_pending("free")
        try:
            adapter.close()
        except TransientCacheError as e:
            logger.warning("Error closing cache client: %s", e.message, extra={"backend": adapter.name})
        logger.info("Cache client freed", extra={"backend": adapter.name})
        return True

    def _build_handle(self) -> None:
        adapter = self._adapter_factory(self.config)
        adapter.connect(self._servers)
        self._adapter = adapter
        logger.info(
            "Cache client initialized with %d server(s)",
            len(self._servers),
            extra={"backend": adapter.name, "servers": [str(s) for s in self._servers]},
        )

        # Flags applied before a bad one stay applied and recorded.
        self.behaviors = []
        apply_behaviors(adapter, self.config.behaviors, applied=self.behaviors)

    def _rebuild_handle(self, reason: str) -> None:
        if self._adapter is None:
            return
        adapter, self._adapter = self._adapter, None
        self._discard_pending(reason)
        try:
            adapter.close()
        except TransientCacheError as e:
            logger.warning("Error closing cache client: %s", e.message, extra={"backend": adapter.name})
        self._build_handle()

    def _discard_pending(self, reason: str) -> None:
        if self.transaction.dirty:
            logger.warning(
                "Discarding cache client with buffered writes outstanding (%s)",
                reason,
                extra={"reason": reason},
            )
            self.transaction.dirty = False

    def _require(self, operation: str) -> BackendAdapter:
        if self._adapter is None:
            raise NotInitializedError(operation)
        return self._adapter

    # ------------ Configuration ------------

    def configure_servers(self, text: str | None) -> None:
        """
        Replace the server list.

        The list is parsed before anything is discarded; an invalid entry
        raises ConfigurationError and leaves the current handle untouched.
        """
        servers = parse_server_list(text, self.config.default_port)
        self.config = self.config.model_copy(update={"servers": text or ""})
        self._servers = servers
        self._rebuild_handle("server list changed")

    def configure_behaviors(self, text: str | None) -> None:
        """Replace the behavior list and apply it to a fresh handle."""
        self.config = self.config.model_copy(update={"behaviors": text or ""})
        self._rebuild_handle("behavior list changed")

    def add_server(self, host_port: str) -> bool:
        """Append one ``host[:port]`` server to the running handle."""
        adapter = self._require("add_server")
        server = parse_server(host_port, self.config.default_port)
        if server in self._servers:
            logger.debug("Server %s already configured", server, extra={"server": str(server)})
            return False

        try:
            status = adapter.add_server(server)
        except TransientCacheError as e:
            logger.warning(
                "Unable to add server %s: %s",
                server,
                e.message,
                extra={"server": str(server), "backend": adapter.name},
            )
            return False

        if status is not AdapterStatus.SUCCESS:
            logger.warning(
                "Unable to add server %s: %s",
                server,
                status.value,
                extra={"server": str(server), "backend": adapter.name},
            )
            return False

        self._servers.append(server)
        logger.debug("Added server %s", server, extra={"server": str(server), "backend": adapter.name})
        return True

    # ------------ Write family ------------

    def add(self, key: Key, value: Any, expire: Expiration = None, flags: int = 0) -> bool | None:
        """Store only if the key does not exist."""
        return self._store(StoreCommand.ADD, key, value, expire, flags)

    def replace(self, key: Key, value: Any, expire: Expiration = None, flags: int = 0) -> bool | None:
        """Store only if the key already exists."""
        return self._store(StoreCommand.REPLACE, key, value, expire, flags)

    def set(self, key: Key, value: Any, expire: Expiration = None, flags: int = 0) -> bool | None:
        """Store unconditionally."""
        return self._store(StoreCommand.SET, key, value, expire, flags)

    def prepend(self, key: Key, value: Any, expire: Expiration = None, flags: int = 0) -> bool | None:
        return self._store(StoreCommand.PREPEND, key, value, expire, flags)

    def append(self, key: Key, value: Any, expire: Expiration = None, flags: int = 0) -> bool | None:
        return self._store(StoreCommand.APPEND, key, value, expire, flags)

    def _store(self, command: StoreCommand, key: Key, value: Any, expire: Expiration, flags: int) -> bool | None:
        adapter = self._require(command.value)
        key = validate_key(key)
        data = validate_value(value)
        flags = validate_flags(flags)
        seconds = compute_expiration(expire)

        try:
            status = adapter.store(command, key, data, seconds, flags)
        except TransientCacheError as e:
            self._warn_transient(command.value, key, e)
            return False
        return self._write_result(command.value, key, status)

    def _write_result(self, operation: str, key: Key | None, status: AdapterStatus) -> bool | None:
        self.transaction.record(status)
        if status is AdapterStatus.BUFFERED:
            return None
        if status is AdapterStatus.SUCCESS:
            return True
        if status is AdapterStatus.FAILURE:
            logger.warning(
                "Cache %s failed",
                operation,
                extra={"operation": operation, "key": _key_repr(key), "status": status.value},
            )
        return False

    def _warn_transient(self, operation: str, key: Key | None, error: TransientCacheError) -> None:
        logger.warning(
            "Cache %s failed: %s",
            operation,
            error.message,
            extra={"operation": operation, "key": _key_repr(key), "backend": error.backend},
        )

    # ------------ Reads ------------

    def get(self, key: Key) -> bytes | None:
        """Fetch one value; None on a miss or a transient failure."""
        adapter = self._require("get")
        key = validate_key(key)
        try:
            value, found = adapter.get(key)
        except TransientCacheError as e:
            self._warn_transient("get", key, e)
            return None
        return value if found else None

    def get_multi(self, keys: Any) -> MultiGetIterator:
        """
        Lazily fetch several keys in one batched request.

        Yields (key, value) pairs for the keys present in the cache, in no
        guaranteed order. The request is issued on the first pull.
        """
        adapter = self._require("get_multi")
        return MultiGetIterator(adapter, keys)

    # ------------ Atomic delta ------------

    def incr(self, key: Key, offset: int = 1) -> int | None:
        """Atomically increment a counter; None on miss, failure, or no reply."""
        return self._delta("incr", key, offset, increment=True)

    def decr(self, key: Key, offset: int = 1) -> int | None:
        """Atomically decrement a counter; the server floors the result at 0."""
        return self._delta("decr", key, offset, increment=False)

    def _delta(self, operation: str, key: Key, offset: Any, increment: bool) -> int | None:
        adapter = self._require(operation)
        key = validate_key(key)
        if offset is None:
            offset = 1
        if isinstance(offset, bool) or not isinstance(offset, int):
            raise ValidationError("Offset must be an integer", details={"offset": repr(offset)})
        if not INT64_MIN <= offset <= INT64_MAX:
            raise RangeError("Offset out of signed 64-bit range", details={"offset": offset})

        # The wire protocol only takes unsigned offsets.
        if offset < 0:
            offset = -offset
            increment = not increment

        try:
            value, status = adapter.delta(key, offset, increment)
        except TransientCacheError as e:
            self._warn_transient(operation, key, e)
            return None

        self.transaction.record(status)
        if status is AdapterStatus.BUFFERED or status is AdapterStatus.NOT_FOUND:
            return None
        if status is not AdapterStatus.SUCCESS:
            logger.warning(
                "Cache %s failed",
                operation,
                extra={"operation": operation, "key": _key_repr(key), "status": status.value},
            )
            return None

        if value == NO_REPLY:
            return None
        if value > INT64_MAX:
            raise RangeError(
                f"Counter value {value} is out of range for a signed 64-bit integer",
                details={"key": _key_repr(key), "value": value},
            )
        return value

    # ------------ Delete / flush ------------

    def delete(self, key: Key, hold: Expiration = None) -> bool | None:
        """Delete one key. A hold time is converted but not honored by current servers."""
        adapter = self._require("delete")
        key = validate_key(key)
        seconds = compute_expiration(hold)
        try:
            status = adapter.delete(key, seconds)
        except TransientCacheError as e:
            self._warn_transient("delete", key, e)
            return False
        return self._write_result("delete", key, status)

    def flush_all(self, expire: Expiration = None) -> bool | None:
        """Invalidate every item on every server, optionally after a delay."""
        adapter = self._require("flush_all")
        seconds = compute_expiration(expire)
        try:
            status = adapter.flush(seconds)
        except TransientCacheError as e:
            self._warn_transient("flush_all", None, e)
            return False
        return self._write_result("flush_all", None, status)

    def flush(self, key: Key, expire: Expiration = None) -> bool | None:
        """Invalidate every item on the one server that owns ``key``."""
        adapter = self._require("flush")
        key = validate_key(key)
        seconds = compute_expiration(expire)
        try:
            server = adapter.server_for(key)
            status = adapter.flush_server(server, seconds)
        except TransientCacheError as e:
            self._warn_transient("flush", key, e)
            return False
        return self._write_result("flush", key, status)

    # ------------ Placement ------------

    def hash(self, key: Key) -> int:
        """The 32-bit hash the backend's key placement applies to ``key``."""
        adapter = self._require("hash")
        return adapter.key_hash(validate_key(key))

    # ------------ Stats ------------

    def stats(self) -> str:
        """Combined per-server statistics report."""
        return format_stats_report(collect_stats(self._require("stats")))

    def stat(self, name: str) -> dict[str, str]:
        """One named statistic, keyed by server."""
        return stat_by_name(self._require("stat"), name)

    # ------------ Transactions ------------

    def on_transaction_event(self, event: TransactionEvent | str) -> bool:
        """
        Handle a host transaction lifecycle event.

        Only PRE_COMMIT does work: it drains buffered writes when
        flush-on-commit is enabled. Returns True if a drain succeeded.
        """
        try:
            event = TransactionEvent(event)
        except ValueError:
            raise ValidationError(
                f"Unknown transaction event: {event}",
                details={"event": str(event), "supported": [e.value for e in TransactionEvent]},
            ) from None
        if event is TransactionEvent.PRE_COMMIT:
            return self.transaction.on_pre_commit(self._adapter)
        if event is TransactionEvent.ABORT and self.transaction.dirty:
            logger.debug("Transaction aborted; buffered cache writes are not undone")
        return False

    # ------------ Context manager ------------

    def __enter__(self) -> CacheClient:
        self.init()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.free()

    def __repr__(self) -> str:
        return f"<CacheClient backend={self.config.backend.value} initialized={self.initialized}>"


def _key_repr(key: Key | None) -> str | None:
    if key is None:
        return None
    if isinstance(key, bytes):
        return key.decode("utf-8", errors="replace")
    return key
