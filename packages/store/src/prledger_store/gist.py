"""GistStore: zero-infrastructure team store via GitHub Gist.

Why Gist as the shared team store:
- Zero infra: no DB to provision, no server to maintain, no S3 bucket to manage.
- Built-in access control: Gist ACL == GitHub account, so every dev who can
  read the Gist can run `prledger stats` against the team's metrics.
- One JSON file: each put_many() is a single Gist edit, so a unit record and
  its bucket update land together or not at all.

Data format: a single JSON file named `prledger_records.json` inside the Gist.
The file contains one JSON object mapping store keys to records.
Suitable for hundreds or low thousands of records; beyond that, switch to
SQLiteStore or a database-backed store.
"""

from __future__ import annotations

import json
import logging
import threading

from prledger_store.base import BaseStore, StoreError

logger = logging.getLogger(__name__)

_GIST_FILENAME = "prledger_records.json"

# 429 and 5xx come back when GitHub is throttling or degraded; the same call
# usually succeeds a few seconds later.
_RETRYABLE_STATUSES = {429, 500, 502, 503, 504}


class GistStore(BaseStore):
    """Stores all records in a GitHub Gist as a single JSON object.

    The Gist ID is configured in .prledger.yml under `gist_id`. The token
    needs the `gist` scope; see prledger_cli.auth for resolution order.
    """

    def __init__(self, gist_id: str, token: str, timeout: float = 15.0):
        try:
            from github import Github
        except ImportError:
            raise ImportError("PyGithub is required for GistStore. Install prledger with its default dependencies.")
        self._gist_id = gist_id
        self._gh = Github(token, timeout=int(timeout))
        # put_many() rewrites the whole file, so two writers must not interleave
        # between reading the snapshot and editing it.
        self._write_lock = threading.Lock()

    def get(self, key: str) -> dict | None:
        return self._load()[1].get(key)

    def put(self, key: str, record: dict) -> None:
        self.put_many({key: record})

    def scan(self, prefix: str) -> list[tuple[str, dict]]:
        _, records = self._load()
        return [(k, v) for k, v in sorted(records.items()) if k.startswith(prefix)]

    def put_many(self, records: dict[str, dict]) -> None:
        with self._write_lock:
            gist, existing = self._load()
            existing.update(records)
            content = json.dumps(existing, indent=2, sort_keys=True)
            try:
                gist.edit(files={_GIST_FILENAME: {"content": content}})
            except Exception as e:
                raise self._translate("write", e) from e

    def _load(self):
        """Fetch the Gist and decode its record file, or return {} if the file is missing."""
        try:
            gist = self._gh.get_gist(self._gist_id)
        except Exception as e:
            raise self._translate("read", e) from e
        file_obj = gist.files.get(_GIST_FILENAME)
        if file_obj is None:
            return gist, {}
        try:
            records = json.loads(file_obj.content or "{}")
        except json.JSONDecodeError as e:
            raise StoreError(f"Gist {self._gist_id} holds a corrupt {_GIST_FILENAME}: {e}") from e
        if not isinstance(records, dict):
            raise StoreError(f"Gist {self._gist_id}: expected a JSON object in {_GIST_FILENAME}")
        return gist, records

    @staticmethod
    def _translate(operation: str, error: Exception) -> StoreError:
        status = getattr(error, "status", None)
        # requests' Timeout/ConnectionError derive from OSError.
        retryable = isinstance(error, OSError) or status in _RETRYABLE_STATUSES
        logger.warning("GistStore %s failed (%s, retryable=%s): %s", operation, type(error).__name__, retryable, error)
        return StoreError(f"Gist {operation} failed ({type(error).__name__}: {error})", retryable=retryable)
