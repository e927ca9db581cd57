"""
Cache Store — SQLite persistence for neutralization results.

Write-through backing for ResultCache so results survive a restart of
the bridge. The in-memory cache stays authoritative for TTL and
capacity; this table only mirrors it. Expired rows are deleted when the
cache reloads.

Table: neutralization_cache
  content_hash  TEXT PRIMARY KEY   (the fragment fingerprint)
  original, neutralized, techniques (JSON), severity, created_at,
  hit_count, ttl_seconds (NULL = the cache-wide TTL)
"""

import json
import sqlite3
import threading

from feelingwise.cache import CacheRecord
from feelingwise.techniques import TechniqueMatch

# Expiry of a row, given the cache-wide TTL as the named parameter :ttl
_EXPIRES_AT = "created_at + MIN(COALESCE(ttl_seconds, :ttl), :ttl)"


class SQLiteCacheStore:
    """Persistent mirror of the result cache, backed by SQLite."""

    def __init__(self, db_path: str = "feelingwise_cache.db"):
        self.db_path = db_path
        self._lock = threading.Lock()
        self._init_db()

    def _init_db(self):
        with self._get_conn() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS neutralization_cache (
                    content_hash TEXT PRIMARY KEY,
                    original TEXT NOT NULL,
                    neutralized TEXT NOT NULL,
                    techniques TEXT NOT NULL,
                    severity INTEGER NOT NULL,
                    created_at REAL NOT NULL,
                    hit_count INTEGER NOT NULL DEFAULT 0,
                    ttl_seconds REAL
                )
            """)
            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_created_at
                ON neutralization_cache(created_at)
            """)
            conn.commit()

    def _get_conn(self) -> sqlite3.Connection:
        return sqlite3.connect(self.db_path)

    def load(self, now: float, default_ttl: float) -> list[CacheRecord]:
        """Delete expired rows, then return the live ones oldest first."""
        params = {"now": now, "ttl": default_ttl}
        with self._lock:
            with self._get_conn() as conn:
                conn.execute(
                    f"DELETE FROM neutralization_cache WHERE {_EXPIRES_AT} < :now",
                    params,
                )
                conn.commit()
                rows = conn.execute(
                    """SELECT content_hash, original, neutralized, techniques,
                              severity, created_at, hit_count, ttl_seconds
                       FROM neutralization_cache
                       ORDER BY created_at ASC, rowid ASC""",
                ).fetchall()

        return [
            CacheRecord(
                fingerprint=r[0],
                original=r[1],
                neutralized=r[2],
                techniques=tuple(TechniqueMatch.from_dict(t) for t in json.loads(r[3])),
                severity=r[4],
                created_at=r[5],
                hit_count=r[6],
                ttl_seconds=r[7],
            )
            for r in rows
        ]

    def upsert(self, record: CacheRecord) -> None:
        techniques = json.dumps([t.to_dict() for t in record.techniques])
        with self._lock:
            with self._get_conn() as conn:
                conn.execute(
                    """INSERT OR REPLACE INTO neutralization_cache
                       (content_hash, original, neutralized, techniques,
                        severity, created_at, hit_count, ttl_seconds)
                       VALUES (?, ?, ?, ?, ?, ?, ?, ?)""",
                    (
                        record.fingerprint, record.original, record.neutralized,
                        techniques, record.severity, record.created_at,
                        record.hit_count, record.ttl_seconds,
                    ),
                )
                conn.commit()

    def record_hit(self, fingerprint: str) -> None:
        with self._lock:
            with self._get_conn() as conn:
                conn.execute(
                    """UPDATE neutralization_cache SET hit_count = hit_count + 1
                       WHERE content_hash = ?""",
                    (fingerprint,),
                )
                conn.commit()

    def delete(self, fingerprint: str) -> None:
        with self._lock:
            with self._get_conn() as conn:
                conn.execute(
                    "DELETE FROM neutralization_cache WHERE content_hash = ?",
                    (fingerprint,),
                )
                conn.commit()

    def clear(self) -> None:
        with self._lock:
            with self._get_conn() as conn:
                conn.execute("DELETE FROM neutralization_cache")
                conn.commit()

    def get_count(self) -> int:
        with self._get_conn() as conn:
            row = conn.execute("SELECT COUNT(*) FROM neutralization_cache").fetchone()
        return row[0]
