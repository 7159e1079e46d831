"""
dbmemcache - Multi-Get Streaming Iterator

Lazy batched lookup. The batched request goes out on the first pull; each
pull then hands back one (key, value) pair. Keys missing from the cache are
skipped, and pairs come back in no guaranteed order.

States: NOT_STARTED -> REQUEST_ISSUED -> YIELDING -> EXHAUSTED
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from enum import Enum
from types import TracebackType
from typing import Any

from .adapter.interface import BackendAdapter, MultiGetCursor
from .errors import TransientCacheError
from .types import Key
from .validation import validate_key_array

logger = logging.getLogger(__name__)


class MultiGetState(str, Enum):
    NOT_STARTED = "not_started"
    REQUEST_ISSUED = "request_issued"
    YIELDING = "yielding"
    EXHAUSTED = "exhausted"


class MultiGetIterator(Iterator[tuple[Key, bytes]]):
    """
    Single-use iterator over the cached values of a key array.

    The key array is validated on construction. The iterator owns its cursor
    and releases it on exhaustion or close(); it cannot be restarted.
    """

    def __init__(self, adapter: BackendAdapter, keys: Any):
        self._keys: list[Key] = validate_key_array(keys)
        self._adapter = adapter
        self._cursor: MultiGetCursor | None = None
        self.state = MultiGetState.NOT_STARTED

    @property
    def keys(self) -> tuple[Key, ...]:
        return tuple(self._keys)

    def __iter__(self) -> MultiGetIterator:
        return self

    def __next__(self) -> tuple[Key, bytes]:
        if self.state is MultiGetState.EXHAUSTED:
            raise StopIteration

        try:
            if self.state is MultiGetState.NOT_STARTED:
                if not self._keys:
                    self._finish()
                    raise StopIteration
                self._cursor = self._adapter.multi_get_begin(self._keys)
                self.state = MultiGetState.REQUEST_ISSUED

            pair = self._adapter.multi_get_next(self._cursor)  # type: ignore[arg-type]
        except TransientCacheError as e:
            logger.warning(
                "Multi-get failed, treating remaining keys as misses: %s",
                e.message,
                extra={"key_count": len(self._keys), "error": e.message},
            )
            self._finish()
            raise StopIteration from None

        if pair is None:
            self._finish()
            raise StopIteration

        self.state = MultiGetState.YIELDING
        return pair

    def _finish(self) -> None:
        if self._cursor is not None:
            self._cursor.release()
            self._cursor = None
        self.state = MultiGetState.EXHAUSTED

    def close(self) -> None:
        """Abandon the iteration and release any buffered results."""
        self._finish()

    def __enter__(self) -> MultiGetIterator:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()
