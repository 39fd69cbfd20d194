"""Tests for prledger-store implementations."""

from __future__ import annotations

import json
import sqlite3
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from unittest.mock import MagicMock

import pytest

from prledger_store.base import StoreError
from prledger_store.gist import GistStore
from prledger_store.memory import MemoryStore
from prledger_store.sqlite import SQLiteStore


def _bucket(period="2026-W42", units=1):
    return {"recordType": "bucket", "period": period, "totalReviewUnits": units}


# ---------------------------------------------------------------------------
# MemoryStore
# ---------------------------------------------------------------------------


class TestMemoryStore:
    def test_get_missing_returns_none(self):
        assert MemoryStore().get("bucket/owner/repo/2026-W42") is None

    def test_put_and_get(self):
        store = MemoryStore()
        store.put("bucket/owner/repo/2026-W42", _bucket())
        assert store.get("bucket/owner/repo/2026-W42")["totalReviewUnits"] == 1

    def test_returned_records_are_copies(self):
        store = MemoryStore()
        store.put("k", {"nested": {"count": 1}})
        record = store.get("k")
        record["nested"]["count"] = 99
        assert store.get("k")["nested"]["count"] == 1

    def test_scan_filters_by_prefix_and_sorts(self):
        store = MemoryStore()
        store.put("bucket/owner/repo/2026-W43", _bucket("2026-W43"))
        store.put("bucket/owner/repo/2026-W41", _bucket("2026-W41"))
        store.put("unit/owner/repo/pr-1", {"unitId": "pr-1"})

        keys = [k for k, _ in store.scan("bucket/owner/repo/")]
        assert keys == ["bucket/owner/repo/2026-W41", "bucket/owner/repo/2026-W43"]

    def test_put_many_writes_all(self):
        store = MemoryStore()
        store.put_many({"a": {"n": 1}, "b": {"n": 2}})
        assert store.get("a") == {"n": 1}
        assert store.get("b") == {"n": 2}

    def test_close_is_safe(self):
        MemoryStore().close()


# ---------------------------------------------------------------------------
# SQLiteStore
# ---------------------------------------------------------------------------


class TestSQLiteStore:
    def test_put_and_get(self, tmp_path):
        store = SQLiteStore(db_path=str(tmp_path / "test.db"))
        store.put("bucket/owner/repo/2026-W42", _bucket())
        assert store.get("bucket/owner/repo/2026-W42") == _bucket()
        store.close()

    def test_get_missing_returns_none(self, tmp_path):
        store = SQLiteStore(db_path=str(tmp_path / "test.db"))
        assert store.get("nope") is None
        store.close()

    def test_put_replaces_existing(self, tmp_path):
        store = SQLiteStore(db_path=str(tmp_path / "test.db"))
        store.put("k", _bucket(units=1))
        store.put("k", _bucket(units=5))
        assert store.get("k")["totalReviewUnits"] == 5
        store.close()

    def test_scan_prefix(self, tmp_path):
        store = SQLiteStore(db_path=str(tmp_path / "test.db"))
        store.put("bucket/owner/repo-a/2026-W42", _bucket())
        store.put("bucket/owner/repo-b/2026-W42", _bucket())
        store.put("unit/owner/repo-a/pr-1", {"unitId": "pr-1"})

        results = store.scan("bucket/owner/repo-a/")
        assert [k for k, _ in results] == ["bucket/owner/repo-a/2026-W42"]
        store.close()

    def test_scan_treats_like_wildcards_literally(self, tmp_path):
        store = SQLiteStore(db_path=str(tmp_path / "test.db"))
        store.put("unit/my_repo/pr-1", {"n": 1})
        store.put("unit/myXrepo/pr-1", {"n": 2})

        results = store.scan("unit/my_repo/")
        assert [k for k, _ in results] == ["unit/my_repo/pr-1"]
        store.close()

    def test_put_many_is_atomic(self, tmp_path):
        store = SQLiteStore(db_path=str(tmp_path / "test.db"))
        store.put("a", {"n": 1})

        # A value json.dumps cannot encode fails the batch before commit.
        with pytest.raises(TypeError):
            store.put_many({"a": {"n": 2}, "b": {"bad": object()}})

        assert store.get("a") == {"n": 1}
        assert store.get("b") is None
        store.close()

    def test_persists_across_connections(self, tmp_path):
        """Data written by one SQLiteStore instance must be readable by another."""
        db_path = str(tmp_path / "test.db")
        store_a = SQLiteStore(db_path=db_path)
        store_a.put_many({"a": {"n": 1}, "b": {"n": 2}})
        store_a.close()

        store_b = SQLiteStore(db_path=db_path)
        assert len(store_b.scan("")) == 2
        store_b.close()

    def test_locked_database_is_retryable(self):
        error = SQLiteStore._translate(sqlite3.OperationalError("database is locked"))
        assert isinstance(error, StoreError)
        assert error.retryable is True

    def test_other_errors_are_permanent(self):
        error = SQLiteStore._translate(sqlite3.DatabaseError("file is not a database"))
        assert error.retryable is False

    def test_corrupt_record_raises_store_error(self, tmp_path):
        store = SQLiteStore(db_path=str(tmp_path / "test.db"))
        store._conn.execute("INSERT INTO records (key, record_json) VALUES ('k', '{not json')")
        store._conn.commit()

        with pytest.raises(StoreError):
            store.get("k")
        store.close()


# ---------------------------------------------------------------------------
# GistStore
# ---------------------------------------------------------------------------


def _make_gist_mock(records: dict | None = None):
    """Return a mock Gist object with prledger_records.json pre-populated."""
    gist = MagicMock()
    if records is None:
        gist.files = {}
    else:
        file_mock = MagicMock()
        file_mock.content = json.dumps(records)
        gist.files = {"prledger_records.json": file_mock}
    return gist


def _make_gist_store():
    """Return a GistStore with a mocked Github client."""
    # Github is a local import inside __init__, so bypass it entirely
    # by constructing the object and injecting the mock client directly.
    store = object.__new__(GistStore)
    store._gist_id = "abc123"
    store._gh = MagicMock()
    store._write_lock = threading.Lock()
    return store


def _make_slow_remote_gist(store, edit_delay=0.05):
    """Back the store with one shared JSON file whose edits take edit_delay seconds to land."""
    remote = {"content": "{}"}

    def get_gist(_gist_id):
        gist = MagicMock()
        file_mock = MagicMock()
        file_mock.content = remote["content"]
        gist.files = {"prledger_records.json": file_mock}

        def edit(files):
            time.sleep(edit_delay)
            remote["content"] = files["prledger_records.json"]["content"]

        gist.edit.side_effect = edit
        return gist

    store._gh.get_gist.side_effect = get_gist
    return remote


class TestGistStore:
    def test_put_many_writes_single_edit(self):
        store = _make_gist_store()
        gist = _make_gist_mock(records={})
        store._gh.get_gist.return_value = gist

        store.put_many({"a": {"n": 1}, "b": {"n": 2}})

        gist.edit.assert_called_once()
        content = json.loads(gist.edit.call_args[1]["files"]["prledger_records.json"]["content"])
        assert content == {"a": {"n": 1}, "b": {"n": 2}}

    def test_put_keeps_existing_records(self):
        store = _make_gist_store()
        gist = _make_gist_mock(records={"a": {"n": 1}})
        store._gh.get_gist.return_value = gist

        store.put("b", {"n": 2})

        content = json.loads(gist.edit.call_args[1]["files"]["prledger_records.json"]["content"])
        assert set(content) == {"a", "b"}

    def test_get_and_scan(self):
        store = _make_gist_store()
        store._gh.get_gist.return_value = _make_gist_mock(
            records={"bucket/o/r/2026-W42": _bucket(), "unit/o/r/pr-1": {"unitId": "pr-1"}}
        )

        assert store.get("unit/o/r/pr-1") == {"unitId": "pr-1"}
        assert [k for k, _ in store.scan("bucket/")] == ["bucket/o/r/2026-W42"]

    def test_missing_file_reads_as_empty(self):
        store = _make_gist_store()
        store._gh.get_gist.return_value = _make_gist_mock(records=None)

        assert store.get("anything") is None
        assert store.scan("") == []

    def test_network_error_is_retryable(self):
        store = _make_gist_store()
        store._gh.get_gist.side_effect = ConnectionError("connection reset")

        with pytest.raises(StoreError) as excinfo:
            store.get("k")
        assert excinfo.value.retryable is True

    def test_server_error_is_retryable(self):
        store = _make_gist_store()
        error = Exception("bad gateway")
        error.status = 502
        store._gh.get_gist.side_effect = error

        with pytest.raises(StoreError) as excinfo:
            store.scan("")
        assert excinfo.value.retryable is True

    def test_auth_error_is_permanent(self):
        store = _make_gist_store()
        error = Exception("Bad credentials")
        error.status = 401
        gist = _make_gist_mock(records={})
        gist.edit.side_effect = error
        store._gh.get_gist.return_value = gist

        with pytest.raises(StoreError) as excinfo:
            store.put("k", {"n": 1})
        assert excinfo.value.retryable is False

    def test_corrupt_file_raises(self):
        store = _make_gist_store()
        gist = MagicMock()
        file_mock = MagicMock()
        file_mock.content = "{not json"
        gist.files = {"prledger_records.json": file_mock}
        store._gh.get_gist.return_value = gist

        with pytest.raises(StoreError):
            store.get("k")

    def test_concurrent_put_many_loses_no_records(self):
        store = _make_gist_store()
        remote = _make_slow_remote_gist(store)
        batches = [{f"unit/repo{i}/pr-{i}": {"n": i}, f"bucket/repo{i}/2026-W42": _bucket()} for i in range(4)]

        with ThreadPoolExecutor(max_workers=4) as pool:
            list(pool.map(store.put_many, batches))

        content = json.loads(remote["content"])
        assert sorted(k for k in content if k.startswith("unit/")) == [f"unit/repo{i}/pr-{i}" for i in range(4)]
        assert len(content) == 8
