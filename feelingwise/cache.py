"""
Result Cache

In-memory TTL cache for neutralization results.
Key = fingerprint (SHA-256 of the fragment text). TTL = 24 hours.

Prevents duplicate language-model calls for identical fragments.
Serialised via an asyncio lock.

Eviction is by insertion order, not recency: a full cache drops the
record that was put earliest, however often it has been hit since.
hit_count is kept for observability only.

Usage:
    from feelingwise.cache import ResultCache, CacheRecord
    cache = ResultCache()
    record = await cache.get(fp)
    if record is None:
        record = await cache.put(CacheRecord(fingerprint=fp, ...))
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import OrderedDict
from dataclasses import dataclass, replace
from typing import TYPE_CHECKING, Callable, Optional

from feelingwise.techniques import TechniqueMatch

if TYPE_CHECKING:
    from feelingwise.store import SQLiteCacheStore

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 24 * 3600
DEFAULT_MAX_ENTRIES = 1000


@dataclass(frozen=True)
class CacheRecord:
    """An immutable cached neutralization."""
    fingerprint: str
    original: str
    neutralized: str
    techniques: tuple[TechniqueMatch, ...]
    severity: int
    created_at: float = 0.0     # epoch seconds, stamped by put()
    hit_count: int = 0
    ttl_seconds: Optional[float] = None   # None = the cache-wide TTL

    @property
    def technique_names(self) -> list[str]:
        return [t.name for t in self.techniques]

    def expires_at(self, default_ttl: float) -> float:
        ttl = default_ttl if self.ttl_seconds is None else min(self.ttl_seconds, default_ttl)
        return self.created_at + ttl

    def to_dict(self) -> dict:
        return {
            "fingerprint": self.fingerprint,
            "original": self.original,
            "neutralized": self.neutralized,
            "techniques": self.technique_names,
            "severity": self.severity,
            "created_at": self.created_at,
            "hit_count": self.hit_count,
            "ttl_seconds": self.ttl_seconds,
        }


class ResultCache:
    """Bounded in-memory cache with TTL expiry and optional SQLite mirror."""

    def __init__(
        self,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        max_entries: int = DEFAULT_MAX_ENTRIES,
        clock: Callable[[], float] = time.time,
        store: Optional["SQLiteCacheStore"] = None,
    ):
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1")
        self._records: OrderedDict[str, CacheRecord] = OrderedDict()
        self._hit_counts: dict[str, int] = {}
        self._ttl = ttl_seconds
        self._max_entries = max_entries
        self._clock = clock
        self._store = store
        self._lock = asyncio.Lock()
        self._hits = 0
        self._misses = 0
        self._evictions = 0

        if store is not None:
            self._restore()

    @property
    def ttl_seconds(self) -> float:
        return self._ttl

    @property
    def max_entries(self) -> int:
        return self._max_entries

    def _restore(self) -> None:
        """Reload live records from the store, oldest first.

        The store drops expired rows while loading; rows beyond capacity
        are deleted here so the table never outgrows the cache.
        """
        try:
            records = self._store.load(now=self._clock(), default_ttl=self._ttl)
        except Exception as e:
            logger.warning("Cache store load failed, starting empty: %s", e,
                           extra={"error_type": type(e).__name__})
            return

        overflow = len(records) - self._max_entries
        if overflow > 0:
            for record in records[:overflow]:
                self._mirror("delete", record.fingerprint)
            records = records[overflow:]

        for record in records:
            self._records[record.fingerprint] = replace(record, hit_count=0)
            self._hit_counts[record.fingerprint] = record.hit_count
        logger.info("Restored %d cached results", len(self._records))

    def _mirror(self, action: str, *args) -> None:
        if self._store is None:
            return
        try:
            getattr(self._store, action)(*args)
        except Exception as e:
            logger.warning("Cache store %s failed: %s", action, e,
                           extra={"error_type": type(e).__name__})

    def _is_expired(self, record: CacheRecord) -> bool:
        return self._clock() > record.expires_at(self._ttl)

    def _drop(self, fingerprint: str) -> None:
        self._records.pop(fingerprint, None)
        self._hit_counts.pop(fingerprint, None)
        self._mirror("delete", fingerprint)

    async def get(self, fingerprint: str) -> Optional[CacheRecord]:
        """Return the live record for ``fingerprint``, or None."""
        async with self._lock:
            record = self._records.get(fingerprint)
            if record is None:
                self._misses += 1
                return None

            if self._is_expired(record):
                self._drop(fingerprint)
                self._misses += 1
                return None

            self._hits += 1
            count = self._hit_counts.get(fingerprint, 0) + 1
            self._hit_counts[fingerprint] = count
            self._mirror("record_hit", fingerprint)
            return replace(record, hit_count=count)

    async def peek(self, fingerprint: str) -> Optional[CacheRecord]:
        """Like get() but does not touch hit/miss counters."""
        async with self._lock:
            record = self._records.get(fingerprint)
            if record is None or self._is_expired(record):
                return None
            return replace(record, hit_count=self._hit_counts.get(fingerprint, 0))

    async def put(self, record: CacheRecord, ttl_seconds: Optional[float] = None) -> CacheRecord:
        """Store ``record`` stamped with the current time. Evicts the oldest if full.

        ``ttl_seconds`` shortens the lifetime of this one record (never
        beyond the cache-wide TTL).
        """
        stamped = replace(record, created_at=self._clock(), hit_count=0,
                          ttl_seconds=ttl_seconds)
        key = stamped.fingerprint
        async with self._lock:
            if key in self._records:
                # Refresh: re-insert as newest
                del self._records[key]
            elif len(self._records) >= self._max_entries:
                oldest_key, _ = self._records.popitem(last=False)
                self._hit_counts.pop(oldest_key, None)
                self._mirror("delete", oldest_key)
                self._evictions += 1

            self._records[key] = stamped
            self._hit_counts[key] = 0
            self._mirror("upsert", stamped)
        return stamped

    async def invalidate(self, fingerprint: str) -> bool:
        """Remove a specific entry. Returns whether it existed."""
        async with self._lock:
            existed = fingerprint in self._records
            self._drop(fingerprint)
            return existed

    async def clear(self) -> int:
        """Drop every record. Returns how many were removed."""
        async with self._lock:
            removed = len(self._records)
            self._records.clear()
            self._hit_counts.clear()
            self._mirror("clear")
            return removed

    async def purge_expired(self) -> int:
        """Eagerly drop expired records. Returns how many were removed."""
        async with self._lock:
            expired = [k for k, r in self._records.items() if self._is_expired(r)]
            for key in expired:
                self._drop(key)
            return len(expired)

    def __len__(self) -> int:
        return len(self._records)

    @property
    def stats(self) -> dict:
        """Cache hit/miss statistics."""
        total = self._hits + self._misses
        return {
            "entries": len(self._records),
            "max_entries": self._max_entries,
            "ttl_seconds": self._ttl,
            "hits": self._hits,
            "misses": self._misses,
            "evictions": self._evictions,
            "hit_rate": round(self._hits / total, 3) if total > 0 else 0.0,
            "persistent": self._store is not None,
        }
