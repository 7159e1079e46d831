"""
dbmemcache - Test Configuration and Shared Fixtures

Provides pytest configuration and shared fixtures for unit and integration tests.
"""

import os
import socket
from collections.abc import Generator

import pytest

from dbmemcache.adapter.backends.memory import MemoryAdapter
from dbmemcache.client import CacheClient
from dbmemcache.config import MemcacheBackend, MemcacheConfig
from dbmemcache.types import ServerAddress

# Set test environment
os.environ["ENVIRONMENT"] = "test"
os.environ["LOG_LEVEL"] = "DEBUG"

TEST_SERVERS = "cache-a:11211,cache-b:11211"


def live_memcache_servers() -> str:
    """Server list for live tests (TEST_MEMCACHE_SERVERS or localhost)."""
    return os.environ.get("TEST_MEMCACHE_SERVERS", "localhost:11211")


def is_memcached_available() -> bool:
    """Check if a memcached server is available for testing."""
    entry = live_memcache_servers().split(",")[0].strip()
    host, _, port = entry.partition(":")
    try:
        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        sock.settimeout(1)
        result = sock.connect_ex((host, int(port or 11211)))
        sock.close()
        return result == 0
    except OSError:
        return False


class FakeClock:
    """Settable epoch-seconds clock for expiry tests."""

    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def servers() -> list[ServerAddress]:
    return [ServerAddress("cache-a", 11211), ServerAddress("cache-b", 11211)]


@pytest.fixture
def memory_adapter(clock: FakeClock, servers: list[ServerAddress]) -> Generator[MemoryAdapter, None, None]:
    """A connected memory adapter with two simulated servers."""
    adapter = MemoryAdapter(max_items=100, clock=clock)
    adapter.connect(servers)
    yield adapter
    adapter.close()


@pytest.fixture
def memory_config() -> MemcacheConfig:
    return MemcacheConfig(backend=MemcacheBackend.MEMORY, servers=TEST_SERVERS)


@pytest.fixture
def client(memory_config: MemcacheConfig) -> Generator[CacheClient, None, None]:
    """An initialized client over the memory backend."""
    cache_client = CacheClient(memory_config)
    cache_client.init()
    yield cache_client
    cache_client.free()


@pytest.fixture
def buffered_client() -> Generator[CacheClient, None, None]:
    """A memory-backed client in buffered mode with flush-on-commit enabled."""
    config = MemcacheConfig(
        backend=MemcacheBackend.MEMORY,
        servers=TEST_SERVERS,
        behaviors="BUFFER_REQUESTS:1",
        flush_on_commit=True,
    )
    cache_client = CacheClient(config)
    cache_client.init()
    yield cache_client
    cache_client.free()


@pytest.fixture
def live_client() -> Generator[CacheClient, None, None]:
    """
    A pymemcache client against a real memcached.

    Automatically skips tests if no server is listening.
    """
    if not is_memcached_available():
        pytest.skip("memcached server not available")

    cache_client = CacheClient(MemcacheConfig(backend=MemcacheBackend.PYMEMCACHE, servers=live_memcache_servers()))
    cache_client.init()
    cache_client.flush_all()
    yield cache_client
    cache_client.flush_all()
    cache_client.free()


@pytest.fixture  # type: ignore[misc]
def mock_env_memory(monkeypatch: pytest.MonkeyPatch) -> None:
    """Set environment variables for the memory backend."""
    monkeypatch.setenv("MEMCACHE_BACKEND", "memory")
    monkeypatch.setenv("MEMCACHE_SERVERS", TEST_SERVERS)
    monkeypatch.setenv("MEMCACHE_BEHAVIORS", "")
    monkeypatch.setenv("MEMCACHE_FLUSH_ON_COMMIT", "false")
    monkeypatch.setenv("MEMCACHE_MEMORY_MAX_ITEMS", "100")


@pytest.fixture(autouse=True)  # type: ignore[misc]
def reset_client_registry(monkeypatch: pytest.MonkeyPatch) -> Generator[None, None, None]:
    """Reset the client registry and config singleton after each test to prevent state leakage."""
    monkeypatch.chdir(os.path.dirname(__file__))
    yield
    from dbmemcache.config import loader
    from dbmemcache.registry import reset_client_registry as reset_registry

    reset_registry()
    loader._config_instance = None
