"""
dbmemcache - Client Registry

Process-wide owner of the single CacheClient. The client is created lazily
from the loaded configuration, initialized on first use, and torn down when
the host unloads the library.

Examples:
    from dbmemcache.registry import get_client

    client = get_client()
    client.set("user:1", b"...")

    # Or with an explicit configuration (e.g., for tests)
    from dbmemcache.config import MemcacheBackend, MemcacheConfig
    from dbmemcache.registry import init_client
    init_client(MemcacheConfig(backend=MemcacheBackend.MEMORY, servers="localhost"))
"""

from __future__ import annotations

import logging

from .client import CacheClient
from .config import DbMemcacheConfig, LogFormat, MemcacheConfig, get_config
from .observability import setup_logging

logger = logging.getLogger(__name__)

_client_instance: CacheClient | None = None


def _resolve_config(config: MemcacheConfig | DbMemcacheConfig | None) -> MemcacheConfig:
    if config is None:
        config = get_config()
    if isinstance(config, DbMemcacheConfig):
        if config.log_format is LogFormat.JSON:
            setup_logging(config.log_level.value, config.log_format.value)
        return config.memcache
    return config


def init_client(config: MemcacheConfig | DbMemcacheConfig | None = None) -> bool:
    """
    Create and initialize the process-wide client.

    Returns False if a client handle already exists, mirroring
    CacheClient.init().
    """
    if _client_instance is not None and _client_instance.initialized:
        logger.debug("Cache client already initialized")
        return False

    _create_client(config)
    return True


def _create_client(config: MemcacheConfig | DbMemcacheConfig | None) -> CacheClient:
    global _client_instance

    memcache_config = _resolve_config(config)
    logger.info(
        "Creating cache client with backend: %s",
        memcache_config.backend.value,
        extra={"backend": memcache_config.backend.value},
    )
    # Registered before init(): a half-configured handle must stay freeable.
    _client_instance = CacheClient(memcache_config)
    _client_instance.init()
    return _client_instance


def get_client() -> CacheClient:
    """Return the process-wide client, creating it on first use."""
    if _client_instance is None or not _client_instance.initialized:
        return _create_client(None)
    return _client_instance


def free_client() -> bool:
    """Tear down the process-wide client handle. Returns False if there was none."""
    if _client_instance is None:
        return False
    return _client_instance.free()


def reset_client_registry() -> None:
    """Free and forget the process-wide client (for tests)."""
    global _client_instance

    if _client_instance is not None:
        _client_instance.free()
    _client_instance = None
    logger.debug("Client registry reset")
