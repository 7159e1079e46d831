"""
dbmemcache - Database-Embedded Memcached Client

Backend-agnostic memcached client for code running inside a database host:
write-family commands, atomic counters, streaming multi-get, stats, and
commit-triggered flushing of buffered writes.

Usage:
    from dbmemcache import get_client

    client = get_client()
    client.set("key", "value", expire=3600)
    value = client.get("key")
"""

__version__ = "1.0.0"

from .behaviors import Behavior, BehaviorSetting, Distribution, HashAlgorithm
from .client import CacheClient
from .errors import (
    ConfigurationError,
    DbMemcacheError,
    DependencyError,
    NotInitializedError,
    RangeError,
    TransientCacheError,
    UnsupportedBehaviorError,
    ValidationError,
)
from .expiration import Interval
from .multiget import MultiGetIterator
from .registry import free_client, get_client, init_client, reset_client_registry
from .transaction import TransactionEvent, bind_session

__all__ = [
    # Client
    "CacheClient",
    "MultiGetIterator",
    "Interval",
    # Registry (canonical access)
    "init_client",
    "get_client",
    "free_client",
    "reset_client_registry",
    # Transactions
    "TransactionEvent",
    "bind_session",
    # Behaviors
    "Behavior",
    "BehaviorSetting",
    "HashAlgorithm",
    "Distribution",
    # Errors
    "DbMemcacheError",
    "ConfigurationError",
    "UnsupportedBehaviorError",
    "DependencyError",
    "ValidationError",
    "RangeError",
    "NotInitializedError",
    "TransientCacheError",
]
