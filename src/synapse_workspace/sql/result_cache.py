"""
Time-bounded cache of statement results.

Entries expire a fixed TTL after insertion; reads never extend that
lifetime. Expired entries are dropped lazily on read, by purge_expired(),
and by the optional background sweeper running every check period.
When max_entries is reached the oldest entry is evicted.

A TTL of 0 disables caching entirely.
"""

import asyncio
import contextlib
import logging
import time
from collections import OrderedDict
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from typing import Any

logger = logging.getLogger(__name__)

Row = dict[str, Any]


@dataclass(frozen=True)
class CacheEntry:
    rows: tuple[Row, ...]
    expires_at: float


def _copy_rows(rows: Iterable[Row]) -> list[Row]:
    return [dict(row) for row in rows]


class ResultCache:
    """TTL cache mapping a cache key to a row list."""

    def __init__(
        self,
        ttl_seconds: float = 300.0,
        check_period_seconds: float = 60.0,
        max_entries: int = 1000,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.ttl_seconds = float(ttl_seconds)
        self.check_period_seconds = float(check_period_seconds)
        self.max_entries = max_entries
        self._clock = clock
        self._entries: OrderedDict[str, CacheEntry] = OrderedDict()
        self._sweeper: asyncio.Task | None = None

    @property
    def enabled(self) -> bool:
        return self.ttl_seconds > 0

    def get(self, key: str) -> list[Row] | None:
        """Copy of the cached rows, or None when absent or expired."""
        entry = self._entries.get(key)
        if entry is None:
            return None
        if entry.expires_at <= self._clock():
            del self._entries[key]
            return None
        return _copy_rows(entry.rows)

    def set(self, key: str, rows: Iterable[Row]) -> None:
        if not self.enabled:
            return
        self._entries.pop(key, None)
        while len(self._entries) >= self.max_entries:
            evicted, _ = self._entries.popitem(last=False)
            logger.debug("Evicted oldest cached result", extra={"cache_key": evicted})
        self._entries[key] = CacheEntry(
            rows=tuple(_copy_rows(rows)),
            expires_at=self._clock() + self.ttl_seconds,
        )

    def delete(self, key: str) -> bool:
        return self._entries.pop(key, None) is not None

    def flush(self) -> int:
        """Drop every entry; returns how many were dropped."""
        count = len(self._entries)
        self._entries.clear()
        return count

    def purge_expired(self) -> int:
        now = self._clock()
        expired = [key for key, entry in self._entries.items() if entry.expires_at <= now]
        for key in expired:
            del self._entries[key]
        return len(expired)

    def keys(self) -> list[str]:
        self.purge_expired()
        return list(self._entries)

    def __len__(self) -> int:
        self.purge_expired()
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return self.get(key) is not None

    def start_sweeper(self) -> None:
        """Start the periodic purge task on the running loop (idempotent)."""
        if self._sweeper is not None and not self._sweeper.done():
            return
        if not self.enabled or self.check_period_seconds <= 0:
            return
        self._sweeper = asyncio.get_running_loop().create_task(self._sweep_loop())

    async def stop_sweeper(self) -> None:
        if self._sweeper is None:
            return
        self._sweeper.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._sweeper
        self._sweeper = None

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self.check_period_seconds)
            purged = self.purge_expired()
            if purged:
                logger.debug(
                    "Purged expired cached results",
                    extra={"purged": purged, "cached_queries": len(self._entries)},
                )


__all__ = ["ResultCache", "CacheEntry"]
