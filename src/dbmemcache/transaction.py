"""
dbmemcache - Transaction-Buffer Coordinator

Tracks whether a buffered-but-unconfirmed write is outstanding and drains
the adapter's send buffer when the host's transaction reaches pre-commit.

The cache is outside the transactional domain: nothing is undone on
rollback, and a failed drain never aborts the host's transaction.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import TYPE_CHECKING, Any

from sqlalchemy import event

from .adapter.interface import BackendAdapter
from .errors import TransientCacheError
from .types import AdapterStatus

if TYPE_CHECKING:
    from .client import CacheClient

logger = logging.getLogger(__name__)


class TransactionEvent(str, Enum):
    """Host transaction lifecycle events."""

    PRE_COMMIT = "pre_commit"
    COMMIT = "commit"
    PREPARE = "prepare"
    ABORT = "abort"

    @classmethod
    def _missing_(cls, value: object) -> TransactionEvent | None:
        # Hosts spell events in either case ("PRE_COMMIT", "pre_commit").
        if isinstance(value, str):
            lowered = value.strip().lower()
            for member in cls:
                if member.value == lowered:
                    return member
        return None


class TransactionBuffer:
    """Holds the dirty flag for buffered writes."""

    def __init__(self, flush_on_commit: bool = False):
        self.flush_on_commit = flush_on_commit
        self.dirty = False

    def record(self, status: AdapterStatus) -> None:
        """Mark dirty when an adapter call was only buffered."""
        if status is AdapterStatus.BUFFERED:
            self.dirty = True

    def on_pre_commit(self, adapter: BackendAdapter | None) -> bool:
        """
        Drain buffered writes if flush-on-commit is enabled and writes are pending.

        Returns True if a drain was attempted and succeeded. The dirty flag is
        only cleared on success, so a failed drain is retried at the next
        commit boundary.
        """
        if not (self.dirty and self.flush_on_commit) or adapter is None:
            return False

        try:
            status = adapter.drain()
        except TransientCacheError as e:
            logger.warning(
                "Unable to flush buffered cache writes at commit: %s",
                e.message,
                extra={"backend": adapter.name, "error": e.message},
            )
            return False

        if status is not AdapterStatus.SUCCESS:
            logger.warning(
                "Unable to flush buffered cache writes at commit: %s",
                status.value,
                extra={"backend": adapter.name, "status": status.value},
            )
            return False

        self.dirty = False
        logger.debug("Flushed buffered cache writes at commit", extra={"backend": adapter.name})
        return True


def bind_session(client: CacheClient, target: Any) -> None:
    """
    Attach a client to a SQLAlchemy Session, sessionmaker, or Session class.

    ``before_commit`` is delivered as PRE_COMMIT and ``after_rollback`` as
    ABORT.
    """

    def _before_commit(session: Any) -> None:
        client.on_transaction_event(TransactionEvent.PRE_COMMIT)

    def _after_rollback(session: Any) -> None:
        client.on_transaction_event(TransactionEvent.ABORT)

    event.listen(target, "before_commit", _before_commit)
    event.listen(target, "after_rollback", _after_rollback)
