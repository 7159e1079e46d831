"""
dbmemcache - Configuration Module

Provides typed configuration loading and validation.
"""

from .loader import get_config, load_config, reload_config
from .schemas import (
    DbMemcacheConfig,
    Environment,
    LogFormat,
    LogLevel,
    MemcacheBackend,
    MemcacheConfig,
)

__all__ = [
    # Loader functions
    "load_config",
    "get_config",
    "reload_config",
    # Main config
    "DbMemcacheConfig",
    # Enums
    "Environment",
    "MemcacheBackend",
    "LogLevel",
    "LogFormat",
    # Config sections
    "MemcacheConfig",
]
