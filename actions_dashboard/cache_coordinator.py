"""Stale-while-revalidate caching over one or more independent tiers.

Each tier pairs a store with its own policy.  An entry's age decides what a
lookup returns:

    age <= ttl            FRESH   serve it
    age <= stale_window   STALE   serve it, refresh in the background
    otherwise             MISS    fetch synchronously, write through

Entries older than ``retention`` are physically deleted by an occasional
sweep.  Every miss and every write asks for one; the coordinator lets at
most one through per tier per ``sweep_interval``.  Keys roll over (the
window start is part of them), so old entries are usually never read again
and only a sweep removes them.

Background work runs on :class:`BackgroundRefresher`, an executor owned by
the process rather than by any request, so a refresh keeps going after the
response that triggered it has been sent.  Refresh failures are logged and
dropped; the caller already has an answer.
"""

from __future__ import annotations

import enum
import logging
import sqlite3
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from typing import Callable, Protocol

from actions_dashboard.cache_store import CacheEntry

logger = logging.getLogger(__name__)

DEFAULT_SWEEP_INTERVAL = 5 * 60

# What a misbehaving store can throw: database errors, disk errors, and
# JSON decode errors (a ValueError subclass).
STORE_ERRORS = (sqlite3.Error, OSError, ValueError)


class CacheStore(Protocol):
    def get(self, key: str) -> CacheEntry | None: ...

    def put(self, key: str, payload: object, ttl_hint: float | None = None) -> None: ...

    def delete_older_than(self, cutoff: float) -> int: ...


class Freshness(str, enum.Enum):
    FRESH = "fresh"
    STALE = "stale"
    MISS = "miss"


@dataclass(frozen=True)
class CacheLookup:
    state: Freshness
    payload: object = None
    fetched_at: float | None = None


@dataclass(frozen=True)
class CachePolicy:
    ttl: float
    stale_window: float
    retention: float

    def classify(self, age: float) -> Freshness:
        if age <= self.ttl:
            return Freshness.FRESH
        if age <= self.stale_window:
            return Freshness.STALE
        return Freshness.MISS


class CacheTier:
    """A store plus the freshness policy that applies to it.

    Store failures never reach the caller: a failed read is a MISS, a
    failed write is logged and skipped.
    """

    def __init__(
        self,
        name: str,
        store: CacheStore,
        policy: CachePolicy,
        clock: Callable[[], float] = time.time,
    ):
        self.name = name
        self.store = store
        self.policy = policy
        self._clock = clock

    def lookup(self, key: str) -> CacheLookup:
        try:
            entry = self.store.get(key)
        except STORE_ERRORS as exc:
            logger.warning("cache read failed: %s", exc, extra={"tier": self.name, "cache_key": key})
            return CacheLookup(Freshness.MISS)
        if entry is None:
            return CacheLookup(Freshness.MISS)

        state = self.policy.classify(self._clock() - entry.fetched_at)
        if state is Freshness.MISS:
            return CacheLookup(Freshness.MISS, fetched_at=entry.fetched_at)
        return CacheLookup(state, entry.payload, entry.fetched_at)

    def write(self, key: str, payload: object) -> bool:
        try:
            self.store.put(key, payload, ttl_hint=self.policy.retention)
        except STORE_ERRORS as exc:
            logger.warning("cache write failed: %s", exc, extra={"tier": self.name, "cache_key": key})
            return False
        return True

    def sweep(self) -> int:
        return self.store.delete_older_than(self._clock() - self.policy.retention)


class BackgroundRefresher:
    """Long-lived worker pool for refreshes and sweeps, one task per key at a time."""

    def __init__(self, max_workers: int = 2):
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="cache-refresh")
        self._lock = threading.Lock()
        self._in_flight: set[str] = set()

    def submit(self, key: str, fn: Callable[[], object]) -> Future | None:
        """Queue ``fn`` unless a task for ``key`` is already queued or running."""
        with self._lock:
            if key in self._in_flight:
                logger.debug("refresh already in flight", extra={"cache_key": key})
                return None
            self._in_flight.add(key)
        try:
            return self._executor.submit(self._run, key, fn)
        except RuntimeError:
            # executor already shut down
            with self._lock:
                self._in_flight.discard(key)
            logger.warning("refresher is shut down; dropping task", extra={"cache_key": key})
            return None

    def _run(self, key: str, fn: Callable[[], object]) -> None:
        try:
            fn()
        except Exception:
            logger.exception("background refresh failed", extra={"cache_key": key})
        finally:
            with self._lock:
                self._in_flight.discard(key)

    def in_flight(self) -> set[str]:
        with self._lock:
            return set(self._in_flight)

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)


class CacheCoordinator:
    def __init__(
        self,
        tiers: list[CacheTier],
        refresher: BackgroundRefresher,
        *,
        sweep_interval: float = DEFAULT_SWEEP_INTERVAL,
        clock: Callable[[], float] = time.time,
    ):
        self.tiers = {tier.name: tier for tier in tiers}
        self.refresher = refresher
        self.sweep_interval = sweep_interval
        self._clock = clock
        self._last_sweep: dict[str, float] = {}
        self._sweep_lock = threading.Lock()

    def tier(self, name: str) -> CacheTier:
        return self.tiers[name]

    def lookup(self, tier_name: str, key: str) -> CacheLookup:
        tier = self.tier(tier_name)
        result = tier.lookup(key)
        if result.state is Freshness.MISS:
            self._maybe_sweep(tier)
        logger.debug("cache %s", result.state.value, extra={"tier": tier_name, "cache_key": key})
        return result

    def _maybe_sweep(self, tier: CacheTier) -> None:
        now = self._clock()
        with self._sweep_lock:
            last = self._last_sweep.get(tier.name)
            if last is not None and now - last < self.sweep_interval:
                return
            self._last_sweep[tier.name] = now
        self.refresher.submit(f"sweep:{tier.name}", tier.sweep)

    def store(self, tier_name: str, key: str, payload: object) -> bool:
        tier = self.tier(tier_name)
        written = tier.write(key, payload)
        self._maybe_sweep(tier)
        return written

    def refresh_in_background(self, key: str, fn: Callable[[], object]) -> Future | None:
        return self.refresher.submit(f"refresh:{key}", fn)

    def resolve(self, tier_name: str, key: str, fetch: Callable[[], object]) -> tuple[object, Freshness]:
        """Serve ``key`` from one tier, calling ``fetch`` on a miss or in the background when stale."""
        hit = self.lookup(tier_name, key)
        if hit.state is Freshness.FRESH:
            return hit.payload, Freshness.FRESH
        if hit.state is Freshness.STALE:
            self.refresh_in_background(key, lambda: self.store(tier_name, key, fetch()))
            return hit.payload, Freshness.STALE

        payload = fetch()
        self.store(tier_name, key, payload)
        return payload, Freshness.MISS
