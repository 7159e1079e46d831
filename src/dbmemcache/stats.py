"""
dbmemcache - Server Stats Collector

Walks the connected servers in server-list order and gathers each one's
statistics. An unreachable server contributes an error line instead of
stats; the collection as a whole still succeeds.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from dataclasses import dataclass, field

from .adapter.interface import BackendAdapter
from .errors import TransientCacheError, ValidationError
from .types import ServerAddress, StatEntry

logger = logging.getLogger(__name__)


@dataclass
class ServerStats:
    """Statistics of one server, or the error that prevented collecting them."""

    server: ServerAddress
    stats: dict[str, str] = field(default_factory=dict)
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def format(self) -> str:
        lines = [f"Server: {self.server}"]
        if self.error is not None:
            lines.append(f"error: {self.error}")
        else:
            lines.extend(f"{key}: {value}" for key, value in self.stats.items())
        return "\n".join(lines)


def collect_stats(adapter: BackendAdapter) -> list[ServerStats]:
    """Fetch all stats from every server; failures are recorded per server."""
    results: list[ServerStats] = []

    def _collect(server: ServerAddress) -> None:
        try:
            stats = adapter.server_stats(server)
        except TransientCacheError as e:
            logger.warning(
                "Failed to get stats from server %s: %s",
                server,
                e.message,
                extra={"server": str(server), "backend": adapter.name},
            )
            results.append(ServerStats(server, error=e.message))
            return
        results.append(ServerStats(server, stats={str(k): str(v) for k, v in stats.items()}))

    adapter.for_each_server(_collect)
    return results


def iter_stat_entries(adapter: BackendAdapter) -> Iterator[StatEntry]:
    """Yield one StatEntry per statistic of every reachable server."""
    for block in collect_stats(adapter):
        for key, value in block.stats.items():
            yield StatEntry(str(block.server), key, value)


def format_stats_report(blocks: list[ServerStats]) -> str:
    """Join per-server blocks with a blank line between them."""
    return "\n\n".join(block.format() for block in blocks)


def stat_by_name(adapter: BackendAdapter, name: str) -> dict[str, str]:
    """
    Return one named statistic for each server that reports it.

    Stat names are matched case-insensitively.
    """
    if not name or not name.strip():
        raise ValidationError("Unable to have a zero length stat")
    wanted = name.strip().lower()

    result: dict[str, str] = {}
    for block in collect_stats(adapter):
        for key, value in block.stats.items():
            if key.lower() == wanted:
                result[str(block.server)] = value
                break
    return result
