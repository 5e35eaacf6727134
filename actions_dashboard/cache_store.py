"""Key/value stores behind the cache tiers.

Both stores keep payloads serialized as JSON and stamp each write with the
store clock, so a read always hands back a fresh copy plus the time it was
fetched.  Freshness rules live in :mod:`actions_dashboard.cache_coordinator`;
stores only remember and forget.
"""

from __future__ import annotations

import json
import logging
import pathlib
import threading
import time
from dataclasses import dataclass
from typing import Callable

from actions_dashboard import database

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CacheEntry:
    payload: object
    fetched_at: float


@dataclass
class CacheStats:
    hit: int = 0
    miss: int = 0
    write: int = 0


class MemoryCacheStore:
    """Process-local store with optional per-key expiry, like an edge KV.

    ``ttl_hint`` on :meth:`put` makes the key vanish after that many
    seconds regardless of what the tier policy would say.
    """

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self._lock = threading.Lock()
        self._data: dict[str, tuple[str, float, float | None]] = {}
        self.stats = CacheStats()

    def get(self, key: str) -> CacheEntry | None:
        now = self._clock()
        with self._lock:
            item = self._data.get(key)
            if item is not None and item[2] is not None and now >= item[2]:
                del self._data[key]
                item = None
            if item is None:
                self.stats.miss += 1
                return None
            self.stats.hit += 1
        raw, fetched_at, _ = item
        return CacheEntry(payload=json.loads(raw), fetched_at=fetched_at)

    def put(self, key: str, payload: object, ttl_hint: float | None = None) -> None:
        raw = json.dumps(payload)
        now = self._clock()
        expires_at = now + ttl_hint if ttl_hint else None
        with self._lock:
            self._data[key] = (raw, now, expires_at)
            self.stats.write += 1

    def delete_older_than(self, cutoff: float) -> int:
        """Drop keys fetched before ``cutoff`` as well as keys past their own expiry."""
        now = self._clock()
        with self._lock:
            old = [
                k for k, (_, fetched_at, expires_at) in self._data.items()
                if fetched_at < cutoff or (expires_at is not None and now >= expires_at)
            ]
            for key in old:
                del self._data[key]
        return len(old)

    def __len__(self) -> int:
        with self._lock:
            return len(self._data)


class SqliteCacheStore:
    """Durable store on the ``cache_entries`` table, one upserted row per key.

    ``ttl_hint`` is accepted for interface parity and ignored; rows are only
    removed by :meth:`delete_older_than`.
    """

    def __init__(self, db_path: str | pathlib.Path, clock: Callable[[], float] = time.time):
        self.db_path = str(db_path)
        self._clock = clock
        self.stats = CacheStats()

    def get(self, key: str) -> CacheEntry | None:
        with database.db_connection(self.db_path) as conn:
            row = database.read_cache_entry(conn, key)
        if row is None:
            self.stats.miss += 1
            return None
        self.stats.hit += 1
        payload, fetched_at = row
        return CacheEntry(payload=payload, fetched_at=fetched_at)

    def put(self, key: str, payload: object, ttl_hint: float | None = None) -> None:
        with database.db_connection(self.db_path) as conn:
            database.upsert_cache_entry(conn, key, payload, self._clock())
        self.stats.write += 1

    def delete_older_than(self, cutoff: float) -> int:
        with database.db_connection(self.db_path) as conn:
            deleted = database.delete_cache_entries_before(conn, cutoff)
        if deleted:
            logger.debug("swept %d cache rows", deleted)
        return deleted
