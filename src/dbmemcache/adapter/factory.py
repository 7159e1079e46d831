"""
dbmemcache - Adapter Factory

Builds the backend adapter selected by configuration. The choice is made once
per client handle; call sites only ever see the BackendAdapter interface.

Third-party client libraries are imported lazily, so a missing optional
library only matters when that backend is selected.
"""

from __future__ import annotations

import logging

from ..config import MemcacheBackend, MemcacheConfig
from ..errors import ConfigurationError, DependencyError
from .backends.memory import MemoryAdapter
from .interface import BackendAdapter

logger = logging.getLogger(__name__)

_INSTALL_HINTS = {
    MemcacheBackend.PYMEMCACHE: "pip install 'pymemcache>=4.0'",
    MemcacheBackend.PYLIBMC: "pip install 'dbmemcache[pylibmc]'",
}


def _create_pymemcache_adapter() -> BackendAdapter:
    try:
        from .backends.pymemcache import PymemcacheAdapter
    except ImportError as e:
        logger.error(
            "pymemcache backend selected but pymemcache is not installed",
            extra={"package": "pymemcache", "error": str(e)},
        )
        raise DependencyError(
            "pymemcache",
            feature="the pymemcache backend",
            install_hint=_INSTALL_HINTS[MemcacheBackend.PYMEMCACHE],
            details={"error": str(e)},
        ) from e
    return PymemcacheAdapter()


def _create_pylibmc_adapter() -> BackendAdapter:
    try:
        from .backends.pylibmc import PylibmcAdapter
    except ImportError as e:
        logger.error(
            "pylibmc backend selected but pylibmc is not installed",
            extra={"package": "pylibmc", "error": str(e)},
        )
        raise DependencyError(
            "pylibmc",
            feature="the pylibmc backend",
            install_hint=_INSTALL_HINTS[MemcacheBackend.PYLIBMC],
            details={"error": str(e)},
        ) from e
    return PylibmcAdapter()


def create_adapter(config: MemcacheConfig) -> BackendAdapter:
    """
    Create an unconnected adapter for the configured backend.

    Raises:
        DependencyError: If the backend's client library is unavailable
        ConfigurationError: If the backend is unknown
    """
    backend = MemcacheBackend(config.backend)
    logger.debug("Creating %s adapter", backend.value, extra={"backend": backend.value})

    if backend is MemcacheBackend.MEMORY:
        return MemoryAdapter(max_items=config.memory_max_items)
    if backend is MemcacheBackend.PYMEMCACHE:
        return _create_pymemcache_adapter()
    if backend is MemcacheBackend.PYLIBMC:
        return _create_pylibmc_adapter()

    raise ConfigurationError(
        f"Unknown cache backend: {backend}",
        details={"backend": str(backend), "supported": [b.value for b in MemcacheBackend]},
    )
