"""
dbmemcache - pymemcache Backend Tests

Runs the adapter against a fake HashClient so no server is needed.
"""

import zlib
from typing import Any

import pytest
from pymemcache.client.hash import HashClient
from pymemcache.client.murmur3 import murmur3_32
from pymemcache.exceptions import MemcacheIllegalInputError, MemcacheUnexpectedCloseError

from dbmemcache.adapter.backends import pymemcache as pymemcache_backend
from dbmemcache.adapter.backends.pymemcache import PymemcacheAdapter
from dbmemcache.behaviors import Behavior, Distribution, HashAlgorithm
from dbmemcache.errors import TransientCacheError, UnsupportedBehaviorError
from dbmemcache.types import NO_REPLY, AdapterStatus, ServerAddress, StoreCommand


class FakeNode:
    """Per-server client of the fake HashClient."""

    def __init__(self, server: tuple[str, int]):
        self.server = server
        self.calls: list[tuple[str, Any]] = []
        self.fail = False

    def _check(self) -> None:
        if self.fail:
            raise ConnectionRefusedError(f"{self.server} refused")

    def flush_all(self, delay: int = 0, noreply: bool | None = None) -> bool:
        self._check()
        self.calls.append(("flush_all", delay))
        return True

    def version(self) -> bytes:
        self._check()
        self.calls.append(("version", None))
        return b"1.6.21"

    def stats(self) -> dict[bytes, Any]:
        self._check()
        return {b"pid": 42, b"version": b"1.6.21", b"curr_items": 3}


class FakeHashClient:
    """Just enough of pymemcache's HashClient for the adapter."""

    instances: list["FakeHashClient"] = []

    def __init__(self, servers: list[tuple[str, int]], **kwargs: Any):
        self.options = kwargs
        self.data: dict[Any, bytes] = {}
        self.clients: dict[str, FakeNode] = {}
        self.noreply_calls: list[str] = []
        self.error: Exception | None = None
        self.closed = False
        for host, port in servers:
            self.add_server(host, port)
        FakeHashClient.instances.append(self)

    def add_server(self, server: str, port: int | None = None) -> None:
        self.clients[f"{server}:{port}"] = FakeNode((server, port))  # type: ignore[arg-type]

    def close(self) -> None:
        self.closed = True

    def _maybe_fail(self) -> None:
        if self.error is not None:
            raise self.error

    def _check_key(self, key: Any) -> None:
        if isinstance(key, str) and not self.options.get("allow_unicode_keys") and not key.isascii():
            raise MemcacheIllegalInputError(f"Non-ASCII key: {key!r}")

    def _get_client(self, key: Any) -> FakeNode:
        self._check_key(key)
        nodes = list(self.clients.values())
        return nodes[zlib.crc32(str(key).encode()) % len(nodes)]

    def get(self, key: Any) -> bytes | None:
        self._check_key(key)
        self._maybe_fail()
        return self.data.get(key)

    def get_many(self, keys: list[Any]) -> dict[Any, bytes]:
        for key in keys:
            self._check_key(key)
        self._maybe_fail()
        return {key: self.data[key] for key in keys if key in self.data}

    def _write(self, name: str, key: Any, noreply: bool) -> None:
        self._check_key(key)
        self._maybe_fail()
        if noreply:
            self.noreply_calls.append(name)

    def set(self, key: Any, value: bytes, expire: int = 0, noreply: bool = False, flags: int = 0) -> bool:
        self._write("set", key, noreply)
        self.data[key] = value
        return True

    def add(self, key: Any, value: bytes, expire: int = 0, noreply: bool = False, flags: int = 0) -> bool:
        self._write("add", key, noreply)
        if key in self.data:
            return False
        self.data[key] = value
        return True

    def replace(self, key: Any, value: bytes, expire: int = 0, noreply: bool = False, flags: int = 0) -> bool:
        self._write("replace", key, noreply)
        if key not in self.data:
            return False
        self.data[key] = value
        return True

    def append(self, key: Any, value: bytes, expire: int = 0, noreply: bool = False) -> bool:
        self._write("append", key, noreply)
        if key not in self.data:
            return False
        self.data[key] += value
        return True

    def prepend(self, key: Any, value: bytes, expire: int = 0, noreply: bool = False) -> bool:
        self._write("prepend", key, noreply)
        if key not in self.data:
            return False
        self.data[key] = value + self.data[key]
        return True

    def incr(self, key: Any, value: int, noreply: bool = False) -> int | None:
        self._write("incr", key, noreply)
        if key not in self.data:
            return None
        number = int(self.data[key]) + value
        self.data[key] = str(number).encode()
        return None if noreply else number

    def decr(self, key: Any, value: int, noreply: bool = False) -> int | None:
        self._write("decr", key, noreply)
        if key not in self.data:
            return None
        number = max(int(self.data[key]) - value, 0)
        self.data[key] = str(number).encode()
        return None if noreply else number

    def delete(self, key: Any, noreply: bool = False) -> bool:
        self._write("delete", key, noreply)
        return self.data.pop(key, None) is not None


@pytest.fixture
def adapter(monkeypatch: pytest.MonkeyPatch) -> PymemcacheAdapter:
    FakeHashClient.instances = []
    monkeypatch.setattr(pymemcache_backend, "HashClient", FakeHashClient)
    pymemcache_adapter = PymemcacheAdapter()
    pymemcache_adapter.connect([ServerAddress("cache-a", 11211), ServerAddress("cache-b", 11212)])
    return pymemcache_adapter


def fake(adapter: PymemcacheAdapter) -> FakeHashClient:
    return adapter._client  # type: ignore[return-value]


class TestConnection:
    def test_builds_hash_client(self, adapter: PymemcacheAdapter) -> None:
        client = fake(adapter)
        assert set(client.clients) == {"cache-a:11211", "cache-b:11212"}
        assert client.options["ignore_exc"] is False
        assert client.options["default_noreply"] is False
        assert client.options["allow_unicode_keys"] is True
        assert client.options["encoding"] == "utf-8"

    def test_add_server_is_incremental(self, adapter: PymemcacheAdapter) -> None:
        client = fake(adapter)
        assert adapter.add_server(ServerAddress("cache-c", 11213)) is AdapterStatus.SUCCESS
        assert fake(adapter) is client
        assert "cache-c:11213" in client.clients
        assert adapter.servers[-1] == ServerAddress("cache-c", 11213)

    def test_close(self, adapter: PymemcacheAdapter) -> None:
        client = fake(adapter)
        adapter.close()
        assert client.closed
        with pytest.raises(TransientCacheError, match="not connected"):
            adapter.get("k")


class TestCommands:
    def test_store_statuses(self, adapter: PymemcacheAdapter) -> None:
        assert adapter.store(StoreCommand.SET, "k", b"v", 0, 3) is AdapterStatus.SUCCESS
        assert adapter.store(StoreCommand.ADD, "k", b"v", 0, 0) is AdapterStatus.NOT_STORED
        assert adapter.store(StoreCommand.REPLACE, "missing", b"v", 0, 0) is AdapterStatus.NOT_STORED
        assert adapter.store(StoreCommand.APPEND, "k", b"!", 0, 0) is AdapterStatus.SUCCESS
        assert adapter.get("k") == (b"v!", True)

    def test_get_miss(self, adapter: PymemcacheAdapter) -> None:
        assert adapter.get("missing") == (None, False)

    def test_delta(self, adapter: PymemcacheAdapter) -> None:
        adapter.store(StoreCommand.SET, "c", b"10", 0, 0)
        assert adapter.delta("c", 5, True) == (15, AdapterStatus.SUCCESS)
        assert adapter.delta("c", 20, False) == (0, AdapterStatus.SUCCESS)
        assert adapter.delta("missing", 1, True) == (0, AdapterStatus.NOT_FOUND)

    def test_delete(self, adapter: PymemcacheAdapter) -> None:
        adapter.store(StoreCommand.SET, "k", b"v", 0, 0)
        assert adapter.delete("k", 0) is AdapterStatus.SUCCESS
        assert adapter.delete("k", 0) is AdapterStatus.NOT_FOUND

    def test_flush_reaches_every_server(self, adapter: PymemcacheAdapter) -> None:
        assert adapter.flush(30) is AdapterStatus.SUCCESS
        for node in fake(adapter).clients.values():
            assert node.calls == [("flush_all", 30)]

    def test_unicode_keys(self, adapter: PymemcacheAdapter) -> None:
        assert adapter.store(StoreCommand.SET, "ключ", b"v", 0, 0) is AdapterStatus.SUCCESS
        assert adapter.get("ключ") == (b"v", True)
        assert adapter.delete("ключ", 0) is AdapterStatus.SUCCESS

    def test_flush_one_server(self, adapter: PymemcacheAdapter) -> None:
        assert adapter.flush_server(ServerAddress("cache-b", 11212), 0) is AdapterStatus.SUCCESS
        assert fake(adapter).clients["cache-a:11211"].calls == []
        assert fake(adapter).clients["cache-b:11212"].calls == [("flush_all", 0)]

    def test_flush_unknown_server(self, adapter: PymemcacheAdapter) -> None:
        with pytest.raises(TransientCacheError, match="not in the client's pool"):
            adapter.flush_server(ServerAddress("elsewhere", 11211), 0)

    def test_flush_unreachable_server(self, adapter: PymemcacheAdapter) -> None:
        fake(adapter).clients["cache-a:11211"].fail = True
        with pytest.raises(TransientCacheError):
            adapter.flush_server(ServerAddress("cache-a", 11211), 0)

    def test_multi_get(self, adapter: PymemcacheAdapter) -> None:
        adapter.store(StoreCommand.SET, "a", b"1", 0, 0)
        adapter.store(StoreCommand.SET, "b", b"2", 0, 0)
        cursor = adapter.multi_get_begin(["a", "missing", "b"])
        pairs = []
        while (pair := adapter.multi_get_next(cursor)) is not None:
            pairs.append(pair)
        assert pairs == [("a", b"1"), ("b", b"2")]

    @pytest.mark.parametrize(
        "error",
        [MemcacheUnexpectedCloseError(), ConnectionResetError("reset"), TimeoutError("timed out")],
    )
    def test_wire_errors_become_transient(self, adapter: PymemcacheAdapter, error: Exception) -> None:
        fake(adapter).error = error
        with pytest.raises(TransientCacheError):
            adapter.get("k")
        with pytest.raises(TransientCacheError):
            adapter.store(StoreCommand.SET, "k", b"v", 0, 0)
        with pytest.raises(TransientCacheError):
            adapter.multi_get_begin(["k"])


class TestNoReply:
    @pytest.fixture
    def noreply(self, adapter: PymemcacheAdapter) -> PymemcacheAdapter:
        adapter.set_behavior(Behavior.NOREPLY, 1)
        return adapter

    def test_rebuilds_with_default_noreply(self, noreply: PymemcacheAdapter) -> None:
        assert noreply.buffered
        assert fake(noreply).options["default_noreply"] is True
        assert len(FakeHashClient.instances) == 2

    def test_writes_report_buffered(self, noreply: PymemcacheAdapter) -> None:
        assert noreply.store(StoreCommand.SET, "k", b"v", 0, 0) is AdapterStatus.BUFFERED
        assert noreply.delta("k", 1, True) == (NO_REPLY, AdapterStatus.BUFFERED)
        assert noreply.delete("k", 0) is AdapterStatus.BUFFERED
        assert fake(noreply).noreply_calls == ["set", "incr", "delete"]

    def test_server_flush_buffered(self, noreply: PymemcacheAdapter) -> None:
        assert noreply.flush_server(ServerAddress("cache-a", 11211), 0) is AdapterStatus.BUFFERED

    def test_drain_round_trips_every_server(self, noreply: PymemcacheAdapter) -> None:
        assert noreply.drain() is AdapterStatus.SUCCESS
        for node in fake(noreply).clients.values():
            assert ("version", None) in node.calls

    def test_drain_failure(self, noreply: PymemcacheAdapter) -> None:
        fake(noreply).clients["cache-b:11212"].fail = True
        with pytest.raises(TransientCacheError, match="drain"):
            noreply.drain()

    def test_buffer_requests_is_alias(self, adapter: PymemcacheAdapter) -> None:
        adapter.set_behavior(Behavior.BUFFER_REQUESTS, 1)
        assert adapter.buffered


class TestBehaviors:
    def test_timeouts_converted_to_seconds(self, adapter: PymemcacheAdapter) -> None:
        adapter.set_behavior(Behavior.CONNECT_TIMEOUT, 1500)
        adapter.set_behavior(Behavior.RCV_TIMEOUT, 250_000)
        options = fake(adapter).options
        assert options["connect_timeout"] == pytest.approx(1.5)
        assert options["timeout"] == pytest.approx(0.25)

    def test_poll_timeout(self, adapter: PymemcacheAdapter) -> None:
        adapter.set_behavior(Behavior.POLL_TIMEOUT, 500)
        assert fake(adapter).options["timeout"] == pytest.approx(0.5)

    def test_failure_handling_options(self, adapter: PymemcacheAdapter) -> None:
        adapter.set_behavior(Behavior.SERVER_FAILURE_LIMIT, 5)
        adapter.set_behavior(Behavior.RETRY_TIMEOUT, 3)
        adapter.set_behavior(Behavior.DEAD_TIMEOUT, 30)
        adapter.set_behavior(Behavior.TCP_NODELAY, 1)
        options = fake(adapter).options
        assert options["retry_attempts"] == 5
        assert options["retry_timeout"] == 3
        assert options["dead_timeout"] == 30
        assert options["no_delay"] is True

    def test_always_on_flags(self, adapter: PymemcacheAdapter) -> None:
        adapter.set_behavior(Behavior.VERIFY_KEY, 1)
        with pytest.raises(UnsupportedBehaviorError, match="cannot be disabled"):
            adapter.set_behavior(Behavior.VERIFY_KEY, 0)

    @pytest.mark.parametrize(
        ("flag", "value"),
        [
            (Behavior.HASH, HashAlgorithm.MD5),
            (Behavior.HASH, HashAlgorithm.DEFAULT),
            (Behavior.KETAMA_HASH, HashAlgorithm.MD5),
            (Behavior.DISTRIBUTION, Distribution.CONSISTENT_KETAMA),
            (Behavior.KETAMA, 1),
            (Behavior.BINARY_PROTOCOL, 1),
            (Behavior.SOCKET_SEND_SIZE, 65536),
        ],
    )
    def test_unsupported(self, adapter: PymemcacheAdapter, flag: Behavior, value: object) -> None:
        with pytest.raises(UnsupportedBehaviorError, match="pymemcache"):
            adapter.set_behavior(flag, value)  # type: ignore[arg-type]
        assert flag not in adapter.behaviors

    def test_disabling_placement_flags_is_accepted(self, adapter: PymemcacheAdapter) -> None:
        adapter.set_behavior(Behavior.KETAMA, 0)
        adapter.set_behavior(Behavior.BINARY_PROTOCOL, 0)
        assert adapter.behaviors == {Behavior.KETAMA: 0, Behavior.BINARY_PROTOCOL: 0}


class TestPlacement:
    def test_key_hash_is_murmur3(self, adapter: PymemcacheAdapter) -> None:
        assert adapter.key_hash("k") == murmur3_32("k")
        assert adapter.key_hash(b"k") == adapter.key_hash("k")

    def test_server_for_follows_client(self, adapter: PymemcacheAdapter) -> None:
        client = fake(adapter)
        for key in ("a", "b", "user:42", "ключ"):
            node = client._get_client(key)
            assert adapter.server_for(key) == ServerAddress(*node.server)

    def test_flush_hits_only_owner(self, adapter: PymemcacheAdapter) -> None:
        owner = adapter.server_for("k")
        adapter.flush_server(owner, 0)
        for name, node in fake(adapter).clients.items():
            assert bool(node.calls) == (name == f"{owner.host}:{owner.port}")

    def test_server_for_after_close(self, adapter: PymemcacheAdapter) -> None:
        adapter.close()
        with pytest.raises(TransientCacheError, match="not connected"):
            adapter.server_for("k")


class TestRealHashClient:
    """Key handling of pymemcache's own HashClient; nothing connects until a command runs."""

    @pytest.fixture
    def real(self) -> PymemcacheAdapter:
        pymemcache_adapter = PymemcacheAdapter()
        pymemcache_adapter.connect([ServerAddress("127.0.0.1", 11211), ServerAddress("127.0.0.1", 11212)])
        assert isinstance(pymemcache_adapter._client, HashClient)
        return pymemcache_adapter

    def test_accepts_non_ascii_keys(self, real: PymemcacheAdapter) -> None:
        client = real._client
        assert client is not None
        for node in client.clients.values():
            assert node.check_key("ключ", b"") == "ключ".encode()
        client._get_client("ключ")

    def test_server_for_matches_rendezvous(self, real: PymemcacheAdapter) -> None:
        names = {f"{s.host}:{s.port}": s for s in real.servers}
        for key in ("a", "user:42", "ключ"):
            winner = max(names, key=lambda name: murmur3_32(f"{name}-{key}"))
            assert real.server_for(key) == names[winner]

    def test_still_rejects_bad_keys(self, real: PymemcacheAdapter) -> None:
        client = real._client
        assert client is not None
        with pytest.raises(MemcacheIllegalInputError):
            client._get_client("has space")


class TestStats:
    def test_server_stats_decoded(self, adapter: PymemcacheAdapter) -> None:
        stats = adapter.server_stats(ServerAddress("cache-a", 11211))
        assert stats == {"pid": "42", "version": "1.6.21", "curr_items": "3"}

    def test_unreachable_server(self, adapter: PymemcacheAdapter) -> None:
        fake(adapter).clients["cache-a:11211"].fail = True
        with pytest.raises(TransientCacheError):
            adapter.server_stats(ServerAddress("cache-a", 11211))

    def test_unknown_server(self, adapter: PymemcacheAdapter) -> None:
        with pytest.raises(TransientCacheError, match="not in the client's pool"):
            adapter.server_stats(ServerAddress("elsewhere", 11211))
