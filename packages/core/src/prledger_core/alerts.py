"""Threshold alerts over metrics buckets.

Thresholds come from the ``alerts`` section of .prledger.yml. Unset thresholds
are skipped. Delivering alerts (webhooks, issues, chat) is left to the caller;
this module only decides which ones fire.
"""

from __future__ import annotations

from dataclasses import dataclass

from prledger_core.models import MetricsBucket


@dataclass(frozen=True)
class Alert:
    name: str
    repository: str
    period: str
    value: float
    threshold: float
    message: str


# name → (bucket attribute, breach test, message template)
_CHECKS = {
    "max_false_positive_rate": (
        "false_positive_rate",
        lambda value, limit: value > limit,
        "false-positive rate {value:.1f}% exceeds {threshold:.1f}%",
    ),
    "min_adoption_rate": (
        "adoption_rate",
        lambda value, limit: value < limit,
        "adoption rate {value:.1f}% is below {threshold:.1f}%",
    ),
    "max_blocking_findings": (
        "blocking_findings",
        lambda value, limit: value > limit,
        "{value:.0f} blocking finding(s) exceed the limit of {threshold:.0f}",
    ),
    "min_resolution_rate": (
        "resolution_rate",
        lambda value, limit: value < limit,
        "resolution rate {value:.1f}% is below {threshold:.1f}%",
    ),
}


def evaluate_alerts(bucket: MetricsBucket, thresholds: dict | None) -> list[Alert]:
    """Return one Alert per configured threshold the bucket breaches.

    Rate thresholds are not evaluated on a bucket without the relevant
    denominator (no units, or no findings); an empty week is not a breach.
    """
    alerts = []
    for name, limit in (thresholds or {}).items():
        if limit is None:
            continue
        if name not in _CHECKS:
            raise ValueError(f"Unknown alert threshold {name!r}. Choose from: {', '.join(sorted(_CHECKS))}.")
        attribute, breached, template = _CHECKS[name]
        if attribute == "adoption_rate" and not bucket.total_review_units:
            continue
        if attribute in ("false_positive_rate", "resolution_rate") and not bucket.total_findings:
            continue
        value = getattr(bucket, attribute)
        if breached(value, float(limit)):
            alerts.append(
                Alert(
                    name=name,
                    repository=bucket.repository,
                    period=bucket.period,
                    value=value,
                    threshold=float(limit),
                    message=template.format(value=value, threshold=float(limit)),
                )
            )
    return alerts
