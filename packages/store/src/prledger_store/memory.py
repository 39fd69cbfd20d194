"""In-memory store, the default when no store is configured.

Keeps records in a process-local dict, which is enough for one-off `ingest`
runs, tests, and embedding prledger in a larger service that persists
elsewhere. Nothing survives the process.
"""

from __future__ import annotations

import copy
import threading

from prledger_store.base import BaseStore


class MemoryStore(BaseStore):
    """Dict-backed store guarded by a lock.

    Records are deep-copied on the way in and out so callers can never mutate
    stored state by holding on to a returned dict.
    """

    def __init__(self):
        self._records: dict[str, dict] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> dict | None:
        with self._lock:
            record = self._records.get(key)
            return copy.deepcopy(record) if record is not None else None

    def put(self, key: str, record: dict) -> None:
        with self._lock:
            self._records[key] = copy.deepcopy(record)

    def scan(self, prefix: str) -> list[tuple[str, dict]]:
        with self._lock:
            return [(k, copy.deepcopy(v)) for k, v in sorted(self._records.items()) if k.startswith(prefix)]

    def put_many(self, records: dict[str, dict]) -> None:
        staged = {k: copy.deepcopy(v) for k, v in records.items()}
        with self._lock:
            self._records.update(staged)
