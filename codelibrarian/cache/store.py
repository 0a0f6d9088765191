"""Storage backends for serialized cache entries."""

from dataclasses import dataclass
import sqlite3
import threading
from pathlib import Path
from typing import Protocol


@dataclass(frozen=True)
class StoredEntry:
    payload: str
    expires_at: float
    stored_at: float


class CacheStore(Protocol):
    def get(self, tier: str, key: str) -> StoredEntry | None: ...

    def put(self, tier: str, key: str, entry: StoredEntry) -> None: ...

    def delete(self, tier: str, key: str) -> None: ...

    def clear(self, tier: str | None = None) -> None: ...

    def count(self, tier: str | None = None) -> int: ...


class MemoryCacheStore:
    """Process-local store keyed by (tier, key)."""

    def __init__(self):
        self._entries: dict[tuple[str, str], StoredEntry] = {}
        self._lock = threading.Lock()

    def get(self, tier: str, key: str) -> StoredEntry | None:
        with self._lock:
            return self._entries.get((tier, key))

    def put(self, tier: str, key: str, entry: StoredEntry) -> None:
        with self._lock:
            self._entries[(tier, key)] = entry

    def delete(self, tier: str, key: str) -> None:
        with self._lock:
            self._entries.pop((tier, key), None)

    def clear(self, tier: str | None = None) -> None:
        with self._lock:
            if tier is None:
                self._entries.clear()
                return
            for entry_key in [k for k in self._entries if k[0] == tier]:
                del self._entries[entry_key]

    def count(self, tier: str | None = None) -> int:
        with self._lock:
            if tier is None:
                return len(self._entries)
            return sum(1 for k in self._entries if k[0] == tier)


class SqliteCacheStore:
    """SQLite-backed store shared by both tiers; survives process restarts."""

    def __init__(self, db_path: Path | str):
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()
        self._init_db()

    def _init_db(self):
        """Initialize the database schema."""
        conn = sqlite3.connect(self.db_path)
        conn.execute("""
            CREATE TABLE IF NOT EXISTS cache_entries (
                tier TEXT NOT NULL,
                cache_key TEXT NOT NULL,
                payload TEXT NOT NULL,
                expires_at REAL NOT NULL,
                stored_at REAL NOT NULL,
                PRIMARY KEY (tier, cache_key)
            )
        """)
        conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_cache_expires ON cache_entries(expires_at)
        """)
        conn.commit()
        conn.close()

    def _get_conn(self) -> sqlite3.Connection:
        return sqlite3.connect(self.db_path)

    def get(self, tier: str, key: str) -> StoredEntry | None:
        with self._lock:
            conn = self._get_conn()
            try:
                row = conn.execute(
                    "SELECT payload, expires_at, stored_at FROM cache_entries "
                    "WHERE tier = ? AND cache_key = ?",
                    (tier, key),
                ).fetchone()
            finally:
                conn.close()
        if row is None:
            return None
        return StoredEntry(payload=row[0], expires_at=row[1], stored_at=row[2])

    def put(self, tier: str, key: str, entry: StoredEntry) -> None:
        with self._lock:
            conn = self._get_conn()
            try:
                conn.execute(
                    "INSERT OR REPLACE INTO cache_entries "
                    "(tier, cache_key, payload, expires_at, stored_at) VALUES (?, ?, ?, ?, ?)",
                    (tier, key, entry.payload, entry.expires_at, entry.stored_at),
                )
                conn.commit()
            finally:
                conn.close()

    def delete(self, tier: str, key: str) -> None:
        with self._lock:
            conn = self._get_conn()
            try:
                conn.execute(
                    "DELETE FROM cache_entries WHERE tier = ? AND cache_key = ?",
                    (tier, key),
                )
                conn.commit()
            finally:
                conn.close()

    def clear(self, tier: str | None = None) -> None:
        with self._lock:
            conn = self._get_conn()
            try:
                if tier is None:
                    conn.execute("DELETE FROM cache_entries")
                else:
                    conn.execute("DELETE FROM cache_entries WHERE tier = ?", (tier,))
                conn.commit()
            finally:
                conn.close()

    def count(self, tier: str | None = None) -> int:
        with self._lock:
            conn = self._get_conn()
            try:
                if tier is None:
                    row = conn.execute("SELECT COUNT(*) FROM cache_entries").fetchone()
                else:
                    row = conn.execute(
                        "SELECT COUNT(*) FROM cache_entries WHERE tier = ?", (tier,)
                    ).fetchone()
            finally:
                conn.close()
        return int(row[0])
