"""SQLiteStore: local file-based store for single-host deployments and CI caching.

Why SQLite as the local store:
- Batteries included: ships with Python, no extra dependencies.
- Transactions: put_many() commits a unit record and its bucket(s) together,
  which is exactly the atomicity the ingest path needs.
- Indexed prefix scans over the primary key stay fast as history grows.

Schema:
  records: one row per key; the record itself is stored as JSON text so the
            store stays ignorant of finding/bucket shapes.
"""

from __future__ import annotations

import json
import logging
import sqlite3
import threading

from prledger_store.base import BaseStore, StoreError

logger = logging.getLogger(__name__)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS records (
    key          TEXT PRIMARY KEY,
    record_json  TEXT NOT NULL,
    updated_at   TEXT DEFAULT (strftime('%Y-%m-%dT%H:%M:%fZ', 'now'))
);
"""


def _escape_like(prefix: str) -> str:
    return prefix.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


class SQLiteStore(BaseStore):
    """Stores records in a local SQLite database file.

    The database file path defaults to `.prledger.db` in the current working
    directory. Configure via .prledger.yml: `store_path: /path/to/prledger.db`.
    `timeout` bounds how long a call waits on a locked database before the
    call fails with a retryable StoreError.
    """

    def __init__(self, db_path: str = ".prledger.db", timeout: float = 5.0):
        # One connection shared across worker threads; the lock serialises
        # access because sqlite3 connections are not themselves thread-safe.
        self._conn = sqlite3.connect(db_path, timeout=timeout, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._lock = threading.Lock()
        self._conn.executescript(_SCHEMA)
        self._conn.commit()

    def get(self, key: str) -> dict | None:
        with self._lock:
            row = self._execute("SELECT record_json FROM records WHERE key=?", (key,)).fetchone()
        return self._decode(key, row["record_json"]) if row else None

    def put(self, key: str, record: dict) -> None:
        self.put_many({key: record})

    def scan(self, prefix: str) -> list[tuple[str, dict]]:
        with self._lock:
            rows = self._execute(
                "SELECT key, record_json FROM records WHERE key LIKE ? ESCAPE '\\' ORDER BY key",
                (_escape_like(prefix) + "%",),
            ).fetchall()
        return [(row["key"], self._decode(row["key"], row["record_json"])) for row in rows]

    def put_many(self, records: dict[str, dict]) -> None:
        rows = [(key, json.dumps(record, sort_keys=True)) for key, record in records.items()]
        with self._lock:
            try:
                with self._conn:
                    self._conn.executemany(
                        """
                        INSERT INTO records (key, record_json) VALUES (?, ?)
                        ON CONFLICT(key) DO UPDATE SET
                          record_json = excluded.record_json,
                          updated_at  = strftime('%Y-%m-%dT%H:%M:%fZ', 'now')
                        """,
                        rows,
                    )
            except sqlite3.Error as e:
                raise self._translate(e) from e

    def close(self) -> None:
        self._conn.close()

    def _execute(self, sql: str, params: tuple):
        try:
            return self._conn.execute(sql, params)
        except sqlite3.Error as e:
            raise self._translate(e) from e

    @staticmethod
    def _translate(error: sqlite3.Error) -> StoreError:
        # "database is locked" / "database is busy" clear up once the other
        # writer commits; everything else needs a human.
        message = str(error)
        retryable = isinstance(error, sqlite3.OperationalError) and ("locked" in message or "busy" in message)
        logger.warning("SQLiteStore error (retryable=%s): %s", retryable, message)
        return StoreError(f"SQLite error: {message}", retryable=retryable)

    @staticmethod
    def _decode(key: str, raw: str) -> dict:
        try:
            return json.loads(raw)
        except json.JSONDecodeError as e:
            raise StoreError(f"Corrupt record under {key!r}: {e}") from e
