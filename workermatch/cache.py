"""SQLite cache for geocoding responses, bounded by TTL and size."""
from __future__ import annotations

import hashlib
import json
import sqlite3
import threading
import time
from typing import Any, Callable, Dict, Optional

from . import config

# Stored for lookups that returned no place, so they are not re-queried.
NOT_FOUND = {"__not_found__": True}


def make_request_cache_key(url: str, field_mask: str, body: Dict[str, Any]) -> str:
    payload = json.dumps(body, sort_keys=True, separators=(",", ":"))
    raw = f"{url}|{field_mask}|{payload}".encode("utf-8")
    return hashlib.sha256(raw).hexdigest()


def is_not_found(payload: Optional[Dict[str, Any]]) -> bool:
    return bool(payload) and payload.get("__not_found__") is True


class GeocodeCache:
    def __init__(
        self,
        db_path: str = ":memory:",
        ttl_seconds: Optional[int] = None,
        max_entries: Optional[int] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.db_path = db_path
        self.ttl_seconds = int(ttl_seconds if ttl_seconds is not None else config.CACHE_TTL_SECONDS)
        self.max_entries = max(1, int(max_entries if max_entries is not None else config.CACHE_MAX_ENTRIES))
        self._clock = clock
        self._lock = threading.Lock()
        self.conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self.conn.row_factory = sqlite3.Row
        self._configure_conn()
        self._init_db()

    def _configure_conn(self) -> None:
        cur = self.conn.cursor()
        try:
            cur.execute("PRAGMA journal_mode=WAL")
            cur.fetchone()
        except sqlite3.DatabaseError:
            pass
        try:
            cur.execute("PRAGMA synchronous=NORMAL")
        except sqlite3.DatabaseError:
            pass

    def _init_db(self) -> None:
        cur = self.conn.cursor()
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS geocode_cache (
                key TEXT PRIMARY KEY,
                response_json TEXT,
                created_at REAL
            )
            """
        )
        cur.execute(
            "CREATE INDEX IF NOT EXISTS idx_geocode_cache_created ON geocode_cache (created_at)"
        )
        self.conn.commit()

    def close(self) -> None:
        with self._lock:
            self.conn.commit()
            self.conn.close()

    def get(self, key: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            cur = self.conn.cursor()
            cur.execute("SELECT response_json, created_at FROM geocode_cache WHERE key = ?", (key,))
            row = cur.fetchone()
            if not row:
                return None
            if self._clock() - float(row["created_at"]) > self.ttl_seconds:
                cur.execute("DELETE FROM geocode_cache WHERE key = ?", (key,))
                self.conn.commit()
                return None
            return json.loads(row["response_json"])

    def set(self, key: str, response: Dict[str, Any]) -> None:
        with self._lock:
            cur = self.conn.cursor()
            cur.execute(
                """
                INSERT OR REPLACE INTO geocode_cache (key, response_json, created_at)
                VALUES (?, ?, ?)
                """,
                (key, json.dumps(response), self._clock()),
            )
            self._evict(cur)
            self.conn.commit()

    def __len__(self) -> int:
        with self._lock:
            cur = self.conn.cursor()
            cur.execute("SELECT COUNT(*) AS n FROM geocode_cache")
            return int(cur.fetchone()["n"])

    def purge_expired(self) -> int:
        with self._lock:
            cur = self.conn.cursor()
            cur.execute(
                "DELETE FROM geocode_cache WHERE created_at < ?",
                (self._clock() - self.ttl_seconds,),
            )
            deleted = cur.rowcount
            self.conn.commit()
            return deleted

    def _evict(self, cur: sqlite3.Cursor) -> None:
        cur.execute("SELECT COUNT(*) AS n FROM geocode_cache")
        overflow = int(cur.fetchone()["n"]) - self.max_entries
        if overflow <= 0:
            return
        cur.execute(
            """
            DELETE FROM geocode_cache WHERE key IN (
                SELECT key FROM geocode_cache ORDER BY created_at ASC, rowid ASC LIMIT ?
            )
            """,
            (overflow,),
        )
