"""
dbmemcache - Backend Adapters

- interface.py: capability set every wire-protocol client implements
- factory.py: builds the configured adapter
- backends/: memory, pymemcache and pylibmc implementations
"""

from .factory import create_adapter
from .interface import BackendAdapter, MultiGetCursor

__all__ = [
    "create_adapter",
    "BackendAdapter",
    "MultiGetCursor",
]
