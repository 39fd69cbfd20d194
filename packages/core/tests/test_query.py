"""Tests for the MetricsReader query surface."""

import pytest

from prledger_core.coordinator import IngestionCoordinator
from prledger_core.models import ReviewUnit
from prledger_core.query import MetricsReader
from prledger_store.memory import MemoryStore

BODY = "- **Important | Testing**: No test for the retry path\n  **Status:** wontfix"


@pytest.fixture
def reader(mocker):
    store = MemoryStore()
    coordinator = IngestionCoordinator(store)
    for unit_id, repository, ts in [
        ("pr-1", "owner/repo", "2026-10-07T10:00:00Z"),  # W41
        ("pr-2", "owner/repo", "2026-10-14T10:00:00Z"),  # W42
        ("pr-3", "owner/repo", "2026-10-21T10:00:00Z"),  # W43
        ("pr-4", "owner/repo-extra", "2026-10-14T10:00:00Z"),
    ]:
        coordinator.ingest(ReviewUnit(unit_id=unit_id, repository=repository, review_timestamp=ts, comment_body=BODY))
    mocker.patch("prledger_core.query.current_period", return_value="2026-W43")
    return MetricsReader(store)


def test_get_bucket(reader):
    bucket = reader.get_bucket("owner/repo", "2026-W42")
    assert bucket.total_review_units == 1
    assert bucket.important_findings == 1
    assert bucket.resolution_counts["wontfix"] == 1


def test_get_missing_bucket(reader):
    assert reader.get_bucket("owner/repo", "2020-W01") is None


def test_list_buckets_oldest_first(reader):
    periods = [b.period for b in reader.list_buckets("owner/repo")]
    assert periods == ["2026-W41", "2026-W42", "2026-W43"]


def test_list_buckets_does_not_leak_across_repositories(reader):
    assert [b.repository for b in reader.list_buckets("owner/repo-extra")] == ["owner/repo-extra"]
    assert all(b.repository == "owner/repo" for b in reader.list_buckets("owner/repo"))


def test_list_buckets_range_is_inclusive(reader):
    periods = [b.period for b in reader.list_buckets("owner/repo", start="2026-W42", end="2026-W43")]
    assert periods == ["2026-W42", "2026-W43"]


def test_completed_only_hides_current_week(reader):
    periods = [b.period for b in reader.list_buckets("owner/repo", completed_only=True)]
    assert periods == ["2026-W41", "2026-W42"]


def test_get_findings_and_history(reader):
    findings = reader.get_findings("owner/repo", "pr-2")
    assert [f.id for f in findings] == ["pr-2#000"]
    assert findings[0].resolution == "wontfix"

    history = reader.get_history("owner/repo", "pr-2")
    assert [(t.previous, t.current) for t in history] == [(None, "wontfix")]


def test_unknown_unit_has_no_findings(reader):
    assert reader.get_findings("owner/repo", "pr-99") == []
    assert reader.get_history("owner/repo", "pr-99") == []


def test_list_units_omits_findings(reader):
    units = reader.list_units("owner/repo")
    assert [u["unitId"] for u in units] == ["pr-1", "pr-2", "pr-3"]
    assert all("findings" not in u and "history" not in u for u in units)
    assert units[0]["period"] == "2026-W41"
