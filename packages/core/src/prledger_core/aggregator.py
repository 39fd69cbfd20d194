"""Ledger-corrected weekly metrics.

Each bucket keeps a ledger of what every review unit currently contributes.
Applying a unit first subtracts its previous ledger entry and then adds the
new one, so re-ingesting a unit corrects the bucket instead of
double-counting it, and applying the same unit twice changes nothing.
"""

from __future__ import annotations

import logging
from collections import Counter

from prledger_core.models import LEGACY_LEDGER_KEY, Contribution, Finding, MetricsBucket, ReviewUnit
from prledger_core.utils.periods import iso_period

logger = logging.getLogger(__name__)

# Minutes are floats; rounding after each fold keeps subtract-then-add exact
# enough that idempotent re-application compares equal.
_MINUTE_PRECISION = 6


class LedgerError(Exception):
    """A bucket's ledger and its totals disagree; the bucket must not be written."""


def bucket_for(repository: str, period: str) -> MetricsBucket:
    """Return an empty bucket. Buckets are created lazily on first contribution."""
    return MetricsBucket(period=period, repository=repository)


def adopt_legacy_totals(bucket: MetricsBucket) -> MetricsBucket:
    """Return a copy of a 1.x bucket whose current totals sit in one legacy ledger entry.

    1.x buckets were written without a ledger. Folding their totals into a
    single entry lets new units be applied on top while the ledger still sums
    to the bucket.
    """
    staged = bucket.copy()
    if staged.ledger or not (staged.total_review_units or staged.severity_counts):
        return staged
    staged.ledger[LEGACY_LEDGER_KEY] = Contribution(
        units=staged.total_review_units,
        reviewed=staged.reviewed_units,
        severity=Counter(staged.severity_counts),
        category=Counter(staged.category_counts),
        resolution=Counter(staged.resolution_counts),
        resolution_minutes=staged.resolution_minutes_total,
        timed_resolutions=staged.timed_resolutions,
    )
    logger.info("Carrying %d legacy unit(s) into the ledger of %s", staged.total_review_units, staged.key)
    return staged


def _subtract(totals: Counter, part: Counter, what: str, bucket: MetricsBucket) -> None:
    for key, value in part.items():
        if totals.get(key, 0) < value:
            raise LedgerError(f"{bucket.key}: {what}[{key}] would drop below zero ({totals.get(key, 0)} - {value})")
        totals[key] -= value
    # Drop zero entries so a retracted contribution leaves no trace.
    for key in [k for k, v in totals.items() if v == 0]:
        del totals[key]


class MetricsAggregator:
    def apply(self, unit: ReviewUnit, findings: list[Finding], bucket: MetricsBucket) -> MetricsBucket:
        """Return a copy of ``bucket`` with ``unit``'s contribution replaced by ``findings``.

        The input bucket is never mutated, so a caller can stage the result and
        discard it if any later step fails.
        """
        period = iso_period(unit.review_timestamp)
        if period != bucket.period or unit.repository != bucket.repository:
            raise LedgerError(
                f"unit {unit.repository}/{unit.unit_id} ({period}) does not belong in bucket {bucket.key}"
            )
        staged = self.retract(unit.unit_id, bucket)
        contribution = Contribution.from_findings(findings, reviewed=unit.reviewed)
        self._add(staged, contribution)
        staged.ledger[unit.unit_id] = contribution
        return staged

    def retract(self, unit_id: str, bucket: MetricsBucket) -> MetricsBucket:
        """Return a copy of ``bucket`` without ``unit_id``'s contribution (a copy either way)."""
        staged = bucket.copy()
        previous = staged.ledger.pop(unit_id, None)
        if previous is None:
            return staged
        logger.debug("Retracting %s from %s", unit_id, staged.key)
        if staged.total_review_units < previous.units or staged.reviewed_units < previous.reviewed:
            raise LedgerError(f"{staged.key}: unit counts would drop below zero retracting {unit_id}")
        staged.total_review_units -= previous.units
        staged.reviewed_units -= previous.reviewed
        _subtract(staged.severity_counts, previous.severity, "severityCounts", staged)
        _subtract(staged.category_counts, previous.category, "categoryCounts", staged)
        _subtract(staged.resolution_counts, previous.resolution, "resolutionCounts", staged)
        if staged.timed_resolutions < previous.timed_resolutions:
            raise LedgerError(f"{staged.key}: timedResolutions would drop below zero retracting {unit_id}")
        staged.timed_resolutions -= previous.timed_resolutions
        staged.resolution_minutes_total = round(
            max(staged.resolution_minutes_total - previous.resolution_minutes, 0.0), _MINUTE_PRECISION
        )
        return staged

    @staticmethod
    def _add(bucket: MetricsBucket, contribution: Contribution) -> None:
        bucket.total_review_units += contribution.units
        bucket.reviewed_units += contribution.reviewed
        bucket.severity_counts.update(contribution.severity)
        bucket.category_counts.update(contribution.category)
        bucket.resolution_counts.update(contribution.resolution)
        bucket.timed_resolutions += contribution.timed_resolutions
        bucket.resolution_minutes_total = round(
            bucket.resolution_minutes_total + contribution.resolution_minutes, _MINUTE_PRECISION
        )
