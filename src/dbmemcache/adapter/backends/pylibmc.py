"""
dbmemcache - pylibmc Backend

Adapter over pylibmc, the libmemcached binding.

Notes:
- Honors the libmemcached behavior set, including hash and distribution
  selection; names the installed libmemcached lacks are rejected.
- BUFFER_REQUESTS keeps writes in libmemcached's send buffer. libmemcached
  answers those with MEMCACHED_BUFFERED, which pylibmc raises as an error;
  such writes report BUFFERED. drain() calls disconnect_all(), which flushes
  every server's send buffer before closing the connection.
- server_for() mirrors libmemcached's MODULA placement (hash % server
  count) and refuses other distributions.
- BINARY_PROTOCOL is a constructor argument in pylibmc, so changing it
  rebuilds the client (after draining).

Requires: pylibmc>=1.6 (and libmemcached)
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from enum import Enum

from ...behaviors import Behavior, BehaviorValue
from ...errors import TransientCacheError, UnsupportedBehaviorError
from ...types import NO_REPLY, AdapterStatus, Key, ServerAddress, StoreCommand
from ..interface import BackendAdapter

logger = logging.getLogger(__name__)

try:
    import pylibmc
    from pylibmc.consts import distributions, hashers
except ImportError as e:  # pragma: no cover
    raise ImportError(
        "pylibmc is required but not installed. Install with: pip install 'dbmemcache[pylibmc]' "
        "(needs the libmemcached headers)"
    ) from e

# libmemcached return code for a write queued in the send buffer.
MEMCACHED_BUFFERED = 32

# Adapter flag -> pylibmc behavior name.
BEHAVIOR_KEYS: dict[Behavior, str] = {
    Behavior.NO_BLOCK: "no_block",
    Behavior.TCP_NODELAY: "tcp_nodelay",
    Behavior.TCP_KEEPALIVE: "tcp_keepalive",
    Behavior.HASH: "hash",
    Behavior.KETAMA: "ketama",
    Behavior.KETAMA_WEIGHTED: "ketama_weighted",
    Behavior.KETAMA_HASH: "ketama_hash",
    Behavior.DISTRIBUTION: "distribution",
    Behavior.CACHE_LOOKUPS: "cache_lookups",
    Behavior.SUPPORT_CAS: "cas",
    Behavior.BUFFER_REQUESTS: "buffer_requests",
    Behavior.VERIFY_KEY: "verify_keys",
    Behavior.CONNECT_TIMEOUT: "connect_timeout",
    Behavior.RETRY_TIMEOUT: "retry_timeout",
    Behavior.DEAD_TIMEOUT: "dead_timeout",
    Behavior.SND_TIMEOUT: "send_timeout",
    Behavior.RCV_TIMEOUT: "receive_timeout",
    Behavior.SERVER_FAILURE_LIMIT: "failure_limit",
    Behavior.AUTO_EJECT_HOSTS: "auto_eject",
    Behavior.NUMBER_OF_REPLICAS: "num_replicas",
    Behavior.REMOVE_FAILED_SERVERS: "remove_failed",
}


def _is_buffered_reply(error: Exception) -> bool:
    retcode = getattr(error, "retcode", None)
    if retcode is not None:
        return retcode == MEMCACHED_BUFFERED
    message = str(error)
    return "ACTION QUEUED" in message or f"error {MEMCACHED_BUFFERED} " in message

class PylibmcAdapter(BackendAdapter):
    """pylibmc adapter; send-buffered when BUFFER_REQUESTS is on."""

    name = "pylibmc"

    def __init__(self) -> None:
        super().__init__()
        self._client: pylibmc.Client | None = None
        self._binary = False
        self._pylibmc_behaviors: dict[str, int | str] = {}

    # ------------ Connection ------------

    def _build(self) -> None:
        if self._client is not None:
            self.close()
        self._client = pylibmc.Client(
            [str(server) for server in self._servers],
            binary=self._binary,
            behaviors=dict(self._pylibmc_behaviors),
        )

    def connect(self, servers: Iterable[ServerAddress]) -> None:
        self._servers = list(servers)
        self._build()
        logger.info(
            "pylibmc client created for %d server(s)",
            len(self._servers),
            extra={"servers": [str(s) for s in self._servers], "binary": self._binary},
        )

    def add_server(self, server: ServerAddress) -> AdapterStatus:
        # pylibmc has no incremental server add; rebuild keeps behaviors.
        if server in self._servers:
            return AdapterStatus.SUCCESS
        self._servers.append(server)
        self._build()
        return AdapterStatus.SUCCESS

    def close(self) -> None:
        if self._client is None:
            return
        try:
            self._client.disconnect_all()
        except pylibmc.Error as e:
            logger.warning("Error disconnecting pylibmc client: %s", e, extra={"error": str(e)})
        finally:
            self._client = None

    def _require_client(self, operation: str) -> pylibmc.Client:
        if self._client is None:
            raise TransientCacheError(self.name, operation, "client is not connected")
        return self._client

    # ------------ Commands ------------

    def get(self, key: Key) -> tuple[bytes | None, bool]:
        client = self._require_client("get")
        try:
            value = client.get(key)
        except pylibmc.Error as e:
            raise TransientCacheError(self.name, "get", e) from e
        return value, value is not None

    def _fetch_many(self, keys: list[Key]) -> dict[Key, bytes]:
        client = self._require_client("get_multi")
        try:
            return client.get_multi(keys)
        except pylibmc.Error as e:
            raise TransientCacheError(self.name, "get_multi", e) from e

    def store(self, command: StoreCommand, key: Key, value: bytes, expire: int, flags: int) -> AdapterStatus:
        client = self._require_client(command.value)
        if flags:
            logger.warning(
                "pylibmc reserves item flags for serialization, ignoring flags=%d",
                flags,
                extra={"backend": self.name},
            )
        method = getattr(client, command.value)
        try:
            if command in (StoreCommand.PREPEND, StoreCommand.APPEND):
                stored = method(key, value)
            else:
                stored = method(key, value, time=expire)
        except pylibmc.NotFound:
            return AdapterStatus.NOT_STORED
        except pylibmc.Error as e:
            return self._buffered_or_raise(command.value, e)

        if not stored:
            return AdapterStatus.NOT_STORED
        return AdapterStatus.BUFFERED if self.buffered else AdapterStatus.SUCCESS

    def delta(self, key: Key, offset: int, increment: bool) -> tuple[int, AdapterStatus]:
        operation = "incr" if increment else "decr"
        client = self._require_client(operation)
        try:
            result = client.incr(key, offset) if increment else client.decr(key, offset)
        except pylibmc.NotFound:
            return 0, AdapterStatus.NOT_FOUND
        except pylibmc.Error as e:
            self._buffered_or_raise(operation, e)
            return NO_REPLY, AdapterStatus.BUFFERED
        return int(result), AdapterStatus.SUCCESS

    def delete(self, key: Key, hold: int) -> AdapterStatus:
        self._ignore_hold(key, hold)
        client = self._require_client("delete")
        try:
            deleted = client.delete(key)
        except pylibmc.NotFound:
            return AdapterStatus.NOT_FOUND
        except pylibmc.Error as e:
            return self._buffered_or_raise("delete", e)

        if not deleted:
            return AdapterStatus.NOT_FOUND
        return AdapterStatus.BUFFERED if self.buffered else AdapterStatus.SUCCESS

    def flush(self, expire: int) -> AdapterStatus:
        client = self._require_client("flush_all")
        try:
            flushed = client.flush_all(time=expire)
        except pylibmc.Error as e:
            return self._buffered_or_raise("flush_all", e)

        if not flushed:
            return AdapterStatus.FAILURE
        return AdapterStatus.BUFFERED if self.buffered else AdapterStatus.SUCCESS

    def flush_server(self, server: ServerAddress, expire: int) -> AdapterStatus:
        """
        Flush one server over a short-lived unbuffered connection.

        pylibmc only flushes whole pools, so the owning server gets its own
        client. Pending buffered writes are drained first to keep ordering.
        """
        self._require_client("flush_all")
        if self.buffered:
            self.drain()

        behaviors = {name: setting for name, setting in self._pylibmc_behaviors.items() if name != "buffer_requests"}
        single = pylibmc.Client([str(server)], binary=self._binary, behaviors=behaviors)
        try:
            flushed = single.flush_all(time=expire)
            single.disconnect_all()
        except pylibmc.Error as e:
            raise TransientCacheError(self.name, "flush_all", e) from e
        return AdapterStatus.SUCCESS if flushed else AdapterStatus.FAILURE

    def drain(self) -> AdapterStatus:
        client = self._require_client("drain")
        try:
            client.disconnect_all()
        except pylibmc.Error as e:
            raise TransientCacheError(self.name, "drain", e) from e
        return AdapterStatus.SUCCESS

    def _buffered_or_raise(self, operation: str, error: Exception) -> AdapterStatus:
        if self.buffered and _is_buffered_reply(error):
            return AdapterStatus.BUFFERED
        raise TransientCacheError(self.name, operation, error) from error

    # ------------ Placement ------------

    def key_hash(self, key: Key) -> int:
        client = self._require_client("hash")
        return int(client.hash(key))

    def server_for(self, key: Key) -> ServerAddress:
        if not self._servers:
            raise TransientCacheError(self.name, "server_for", "no servers available")
        distribution = self._pylibmc_behaviors.get("distribution", "modula")
        consistent = self._pylibmc_behaviors.get("ketama") or self._pylibmc_behaviors.get("ketama_weighted")
        if distribution != "modula" or consistent:
            raise UnsupportedBehaviorError(
                self.name, Behavior.DISTRIBUTION.value, distribution, "server lookup by key needs MODULA placement"
            )
        return self._servers[self.key_hash(key) % len(self._servers)]

    # ------------ Behaviors ------------

    def _apply_behavior(self, flag: Behavior, value: BehaviorValue) -> None:
        if flag is Behavior.BINARY_PROTOCOL:
            binary = bool(value)
            if binary != self._binary:
                self._binary = binary
                if self._client is not None:
                    self.drain()
                    self._build()
            return

        if flag not in BEHAVIOR_KEYS:
            raise UnsupportedBehaviorError(self.name, flag.value, getattr(value, "value", value))

        setting: int | str
        if isinstance(value, Enum):
            setting = value.value.lower()
            known = distributions if flag is Behavior.DISTRIBUTION else hashers
            if setting not in known:
                raise UnsupportedBehaviorError(
                    self.name, flag.value, value.value, "not available in the installed libmemcached"
                )
        else:
            setting = int(value)

        behavior = BEHAVIOR_KEYS[flag]
        if self._client is not None:
            try:
                self._client.set_behaviors({behavior: setting})
            except (pylibmc.Error, KeyError, ValueError) as e:
                raise UnsupportedBehaviorError(self.name, flag.value, setting, str(e)) from e
        self._pylibmc_behaviors[behavior] = setting

        if flag is Behavior.BUFFER_REQUESTS:
            self.buffered = bool(setting)

    # ------------ Stats ------------

    def server_stats(self, server: ServerAddress) -> dict[str, str]:
        client = self._require_client("stats")
        try:
            reports = client.get_stats()
        except pylibmc.Error as e:
            raise TransientCacheError(self.name, "stats", e) from e

        wanted = {str(server), f"{server.host}:{server.port}"}
        for label, stats in reports:
            # pylibmc labels look like "host:port (index)".
            if label.split(" ")[0] in wanted:
                return {str(key): str(value) for key, value in stats.items()}
        raise TransientCacheError(self.name, "stats", f"no stats reply from {server}")
