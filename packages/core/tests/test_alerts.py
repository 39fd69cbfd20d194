"""Tests for threshold alerts."""

from collections import Counter

import pytest

from prledger_core.alerts import evaluate_alerts
from prledger_core.models import MetricsBucket


def _bucket(units=4, reviewed=3, blocking=2, false_positive=1, pending=1):
    return MetricsBucket(
        period="2026-W42",
        repository="owner/repo",
        total_review_units=units,
        reviewed_units=reviewed,
        severity_counts=Counter({"blocking": blocking, "suggestion": 2}),
        category_counts=Counter({"security": blocking + 2}),
        resolution_counts=Counter(
            {"false-positive": false_positive, "pending": pending, "fixed": blocking + 2 - false_positive - pending}
        ),
    )


def test_no_thresholds_no_alerts():
    assert evaluate_alerts(_bucket(), {}) == []
    assert evaluate_alerts(_bucket(), None) == []


def test_false_positive_rate_breach():
    alerts = evaluate_alerts(_bucket(), {"max_false_positive_rate": 20})

    assert len(alerts) == 1
    alert = alerts[0]
    assert alert.name == "max_false_positive_rate"
    assert alert.value == 25.0
    assert alert.threshold == 20.0
    assert "25.0%" in alert.message


def test_thresholds_met():
    thresholds = {
        "max_false_positive_rate": 30,
        "min_adoption_rate": 75,
        "max_blocking_findings": 2,
        "min_resolution_rate": 50,
    }
    assert evaluate_alerts(_bucket(), thresholds) == []


def test_several_breaches():
    thresholds = {"min_adoption_rate": 80, "max_blocking_findings": 1, "min_resolution_rate": 90}
    names = [a.name for a in evaluate_alerts(_bucket(), thresholds)]
    assert names == ["min_adoption_rate", "max_blocking_findings", "min_resolution_rate"]


def test_empty_bucket_does_not_breach_rate_thresholds():
    empty = MetricsBucket(period="2026-W42", repository="owner/repo")
    thresholds = {"min_adoption_rate": 80, "min_resolution_rate": 50, "max_false_positive_rate": 10}
    assert evaluate_alerts(empty, thresholds) == []


def test_unset_threshold_is_skipped():
    assert evaluate_alerts(_bucket(), {"max_false_positive_rate": None}) == []


def test_unknown_threshold_raises():
    with pytest.raises(ValueError, match="Unknown alert threshold"):
        evaluate_alerts(_bucket(), {"max_latency": 5})
