"""Tests for versioned record validation."""

import pytest

from prledger_core.aggregator import adopt_legacy_totals
from prledger_core.models import Finding, MetricsBucket
from prledger_core.schema import validate


def _finding_record(**overrides):
    record = Finding(id="pr-1#000", severity="blocking", category="security", description="Secret").to_dict(
        "owner/repo", "pr-1"
    )
    record.update(overrides)
    return record


def _bucket_v1(**overrides):
    record = {
        "schemaVersion": "1.0",
        "period": "2026-W42",
        "repository": "owner/repo",
        "totalReviewUnits": 2,
        "reviewedUnits": 1,
        "severityCounts": {"blocking": 1, "suggestion": 1},
        "categoryCounts": {"security": 2},
        "falsePositiveCount": 0,
        "resolutionCounts": {"pending": 2},
    }
    record.update(overrides)
    return record


# ---------------------------------------------------------------------------
# Findings
# ---------------------------------------------------------------------------


def test_current_finding_is_valid():
    result = validate(_finding_record())
    assert result.valid
    assert result.errors == []


def test_unknown_fields_are_tolerated():
    assert validate(_finding_record(schemaVersion="2.3", confidence=0.9)).valid


def test_v1_finding_does_not_need_repository():
    record = _finding_record(schemaVersion="1.0")
    del record["repository"]
    del record["unitId"]
    assert validate(record).valid


def test_v2_finding_requires_repository():
    record = _finding_record()
    del record["repository"]
    result = validate(record)
    assert not result.valid
    assert any("repository" in e.message for e in result.errors)


def test_missing_required_field_is_rejected():
    record = _finding_record()
    del record["severity"]
    result = validate(record)
    assert not result.valid
    assert result.errors[0].record_id == "pr-1#000"


@pytest.mark.parametrize(
    "field,value",
    [
        ("severity", "urgent"),
        ("category", "styling"),
        ("resolution", "done"),
        ("description", "   "),
        ("resolutionTime", -5),
        ("resolutionTime", "ten"),
    ],
)
def test_bad_field_values_are_rejected(field, value):
    result = validate(_finding_record(**{field: value}))
    assert not result.valid
    assert result.errors[0].path == field


def test_missing_schema_version():
    record = _finding_record()
    del record["schemaVersion"]
    result = validate(record)
    assert not result.valid
    assert result.errors[0].path == "schemaVersion"


def test_unsupported_major_version():
    result = validate(_finding_record(schemaVersion="3.0"))
    assert not result.valid
    assert "unsupported" in result.errors[0].message


def test_non_object_record():
    result = validate(["not", "a", "record"])
    assert not result.valid
    assert "list" in result.errors[0].message


# ---------------------------------------------------------------------------
# Buckets
# ---------------------------------------------------------------------------


def test_v1_bucket_without_ledger_is_valid():
    assert validate(_bucket_v1()).valid


def test_bucket_type_is_inferred_from_shape():
    record = _bucket_v1()
    assert "recordType" not in record
    assert validate(record).valid


def test_reviewed_units_cannot_exceed_total():
    result = validate(_bucket_v1(reviewedUnits=3))
    assert not result.valid
    assert result.errors[0].path == "reviewedUnits"


def test_disagreeing_totals_are_rejected():
    result = validate(_bucket_v1(categoryCounts={"security": 1}))
    assert not result.valid
    assert "disagree" in result.errors[0].message


def test_false_positive_count_must_match_resolution_counts():
    result = validate(_bucket_v1(resolutionCounts={"pending": 1, "false-positive": 1}))
    assert not result.valid
    assert result.errors[0].path == "falsePositiveCount"


def test_rate_out_of_range():
    result = validate(_bucket_v1(rates={"adoptionRate": 150}))
    assert not result.valid
    assert result.errors[0].path == "rates.adoptionRate"


def test_bad_period():
    result = validate(_bucket_v1(period="2026-W60"))
    assert not result.valid
    assert result.errors[0].path == "period"


def test_empty_current_bucket_is_valid():
    record = MetricsBucket(period="2026-W42", repository="owner/repo").to_dict()
    assert validate(record).valid


def test_v2_bucket_requires_ledger():
    record = MetricsBucket(period="2026-W42", repository="owner/repo").to_dict()
    del record["ledger"]
    result = validate(record)
    assert not result.valid
    assert any("ledger" in e.message for e in result.errors)


def test_ledger_must_match_totals():
    record = MetricsBucket(period="2026-W42", repository="owner/repo").to_dict()
    record["totalReviewUnits"] = 1
    record["reviewedUnits"] = 1
    result = validate(record)
    assert not result.valid
    assert {e.path for e in result.errors} == {"ledger"}


def test_legacy_ledger_entry_may_stand_for_many_units():
    record = adopt_legacy_totals(MetricsBucket.from_dict(_bucket_v1())).to_dict()
    assert record["ledger"]["<legacy>"]["units"] == 2
    assert validate(record).valid


def test_unit_ledger_entry_counts_one_unit():
    record = adopt_legacy_totals(MetricsBucket.from_dict(_bucket_v1())).to_dict()
    record["ledger"]["pr-1"] = record["ledger"].pop("<legacy>")
    result = validate(record)
    assert not result.valid
    assert any(e.path.startswith("ledger") for e in result.errors)


def test_explicit_record_type_overrides_tag():
    result = validate(_finding_record(), record_type="bucket")
    assert not result.valid


# ---------------------------------------------------------------------------
# Units
# ---------------------------------------------------------------------------


def test_unit_record():
    record = {
        "recordType": "unit",
        "schemaVersion": "2.0",
        "repository": "owner/repo",
        "unitId": "pr-1",
        "reviewTimestamp": "2026-10-14T09:00:00Z",
        "contentHash": "abc",
        "period": "2026-W42",
        "findings": [],
    }
    assert validate(record).valid
    del record["contentHash"]
    assert not validate(record).valid


def test_v1_unit_records_are_unsupported():
    result = validate({"recordType": "unit", "schemaVersion": "1.0", "findings": []})
    assert not result.valid
    assert "unsupported" in result.errors[0].message
