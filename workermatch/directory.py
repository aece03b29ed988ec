"""Worker directory store.

The directory holds people (workers and customers) and the companion
worker-profile records that service requests reference. Search only ever
reads from it; coordinate backfill is the one writer.
"""
from __future__ import annotations

import json
import sqlite3
import threading
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Protocol

from .errors import DirectoryError
from .models import WorkerCandidate


class WorkerDirectory(Protocol):
    def query_by_bounding_box(
        self, min_lat: float, max_lat: float, min_lon: float, max_lon: float
    ) -> List[WorkerCandidate]:
        ...

    def query_all(self) -> List[WorkerCandidate]:
        ...

    def workers_missing_coordinates(self) -> List[WorkerCandidate]:
        ...

    def exists_worker_profile(self, person_id: str) -> Optional[str]:
        ...


_WORKER_SELECT = """
    SELECT p.person_id, p.first_name, p.last_name, p.postal_code,
           p.latitude, p.longitude, wp.id AS worker_profile_id
    FROM people p
    LEFT JOIN worker_profiles wp ON wp.person_id = p.person_id
    WHERE p.user_type = 'worker'
      AND p.postal_code IS NOT NULL
"""


class SqliteWorkerDirectory:
    def __init__(self, db_path: str = ":memory:") -> None:
        self.db_path = db_path
        self._lock = threading.Lock()
        try:
            self.conn = sqlite3.connect(self.db_path, check_same_thread=False)
        except sqlite3.Error as exc:
            raise DirectoryError(f"Cannot open worker directory {db_path}: {exc}") from exc
        self.conn.row_factory = sqlite3.Row
        self._init_db()

    def _init_db(self) -> None:
        cur = self.conn.cursor()
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS people (
                person_id TEXT PRIMARY KEY,
                user_type TEXT NOT NULL,
                first_name TEXT,
                last_name TEXT,
                postal_code TEXT,
                latitude REAL,
                longitude REAL
            )
            """
        )
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS worker_profiles (
                id TEXT PRIMARY KEY,
                person_id TEXT UNIQUE NOT NULL
            )
            """
        )
        cur.execute("CREATE INDEX IF NOT EXISTS idx_people_lat_lon ON people (latitude, longitude)")
        self.conn.commit()

    def close(self) -> None:
        with self._lock:
            self.conn.close()

    def _fetch(self, sql: str, params: Iterable[Any] = ()) -> List[WorkerCandidate]:
        with self._lock:
            try:
                cur = self.conn.cursor()
                cur.execute(sql, tuple(params))
                rows = cur.fetchall()
            except sqlite3.Error as exc:
                raise DirectoryError(f"Worker directory query failed: {exc}") from exc
        return [_row_to_candidate(row) for row in rows]

    def query_by_bounding_box(
        self, min_lat: float, max_lat: float, min_lon: float, max_lon: float
    ) -> List[WorkerCandidate]:
        sql = (
            _WORKER_SELECT
            + """
              AND p.latitude BETWEEN ? AND ?
              AND p.longitude BETWEEN ? AND ?
            ORDER BY p.rowid
            """
        )
        return self._fetch(sql, (min_lat, max_lat, min_lon, max_lon))

    def query_all(self) -> List[WorkerCandidate]:
        return self._fetch(_WORKER_SELECT + " ORDER BY p.rowid")

    def workers_missing_coordinates(self) -> List[WorkerCandidate]:
        return self._fetch(
            _WORKER_SELECT + " AND (p.latitude IS NULL OR p.longitude IS NULL) ORDER BY p.rowid"
        )

    def exists_worker_profile(self, person_id: str) -> Optional[str]:
        with self._lock:
            try:
                cur = self.conn.cursor()
                cur.execute("SELECT id FROM worker_profiles WHERE person_id = ?", (person_id,))
                row = cur.fetchone()
            except sqlite3.Error as exc:
                raise DirectoryError(f"Worker profile lookup failed: {exc}") from exc
        return str(row["id"]) if row else None

    def upsert_person(
        self,
        person_id: str,
        *,
        user_type: str = "worker",
        first_name: str = "",
        last_name: str = "",
        postal_code: Optional[str] = None,
        latitude: Optional[float] = None,
        longitude: Optional[float] = None,
    ) -> None:
        with self._lock:
            self.conn.execute(
                """
                INSERT INTO people (
                    person_id, user_type, first_name, last_name, postal_code, latitude, longitude
                ) VALUES (?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(person_id) DO UPDATE SET
                    user_type = excluded.user_type,
                    first_name = excluded.first_name,
                    last_name = excluded.last_name,
                    postal_code = excluded.postal_code,
                    latitude = excluded.latitude,
                    longitude = excluded.longitude
                """,
                (person_id, user_type, first_name, last_name, postal_code, latitude, longitude),
            )
            self.conn.commit()

    def upsert_worker_profile(self, profile_id: str, person_id: str) -> None:
        with self._lock:
            self.conn.execute(
                """
                INSERT INTO worker_profiles (id, person_id) VALUES (?, ?)
                ON CONFLICT(person_id) DO UPDATE SET id = excluded.id
                """,
                (profile_id, person_id),
            )
            self.conn.commit()

    def delete_worker_profile(self, person_id: str) -> None:
        with self._lock:
            self.conn.execute("DELETE FROM worker_profiles WHERE person_id = ?", (person_id,))
            self.conn.commit()

    def update_coordinates(self, person_id: str, latitude: float, longitude: float) -> None:
        with self._lock:
            try:
                self.conn.execute(
                    "UPDATE people SET latitude = ?, longitude = ? WHERE person_id = ?",
                    (latitude, longitude, person_id),
                )
                self.conn.commit()
            except sqlite3.Error as exc:
                raise DirectoryError(f"Coordinate update failed for {person_id}: {exc}") from exc

    def load_records(self, records: Iterable[Dict[str, Any]]) -> int:
        count = 0
        for rec in records:
            person_id = str(rec["id"])
            self.upsert_person(
                person_id,
                user_type=str(rec.get("user_type") or "worker"),
                first_name=str(rec.get("first_name") or ""),
                last_name=str(rec.get("last_name") or ""),
                postal_code=rec.get("postcode") or rec.get("postal_code"),
                latitude=_optional_float(rec.get("latitude")),
                longitude=_optional_float(rec.get("longitude")),
            )
            profile_id = rec.get("worker_profile_id")
            if profile_id:
                self.upsert_worker_profile(str(profile_id), person_id)
            count += 1
        return count

    def load_json(self, path: str) -> int:
        with open(Path(path), "r", encoding="utf-8") as f:
            data = json.load(f)
        if isinstance(data, dict):
            data = data.get("people") or data.get("workers") or []
        return self.load_records(data)


def _optional_float(value: Any) -> Optional[float]:
    if value is None or value == "":
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _row_to_candidate(row: sqlite3.Row) -> WorkerCandidate:
    name = " ".join(part for part in (row["first_name"], row["last_name"]) if part).strip()
    profile_id = row["worker_profile_id"]
    return WorkerCandidate(
        person_id=str(row["person_id"]),
        worker_profile_id=str(profile_id) if profile_id is not None else None,
        display_name=name,
        postal_code=row["postal_code"] or "",
        latitude=row["latitude"],
        longitude=row["longitude"],
    )
