"""
dbmemcache - Adapter Backends

Exports the always-available backend. The pymemcache and pylibmc backends
are lazy-loaded via factory.py to avoid a hard dependency on either library.
"""

from .memory import MemoryAdapter

__all__ = [
    "MemoryAdapter",
]
