"""Review unit, finding, and metrics bucket data models.

These are the in-memory shapes the pipeline works with. Each has a
to_dict()/from_dict() pair producing the camelCase JSON records persisted
through prledger_store, tagged with ``recordType`` and ``schemaVersion`` so
prledger_core.schema can pick the right rule set.
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field, replace

SCHEMA_VERSION = "2.0"

SEVERITIES = ("blocking", "important", "suggestion")
CATEGORIES = (
    "security",
    "testing",
    "performance",
    "reliability",
    "readability",
    "code-conventions",
    "other",
)
RESOLUTIONS = ("pending", "fixed", "wontfix", "false-positive")

# Ledger entry holding the totals a 1.x bucket carried before it had a ledger.
# Never a unit id, so no ingest can retract it.
LEGACY_LEDGER_KEY = "<legacy>"


def unit_key(repository: str, unit_id: str) -> str:
    return f"unit/{repository}/{unit_id}"


def bucket_key(repository: str, period: str) -> str:
    return f"bucket/{repository}/{period}"


def _rate(numerator: int | float, denominator: int | float) -> float:
    if not denominator:
        return 0.0
    return round(numerator / denominator * 100, 2)


@dataclass
class ReviewUnit:
    """One reviewed change, identified by (repository, unit_id) across revisions."""

    unit_id: str
    repository: str
    review_timestamp: str  # ISO-8601; naive values are read as UTC
    comment_body: str
    reviewed: bool = True

    @classmethod
    def from_dict(cls, d: dict) -> ReviewUnit:
        """Build a unit from an input payload, accepting camelCase or snake_case keys."""
        return cls(
            unit_id=str(d.get("unitId", d.get("unit_id", ""))),
            repository=str(d.get("repository", "")),
            review_timestamp=str(d.get("reviewTimestamp", d.get("review_timestamp", ""))),
            comment_body=d.get("commentBody", d.get("comment_body", "")) or "",
            reviewed=bool(d.get("reviewed", True)),
        )


@dataclass
class Finding:
    """One issue reported within a review unit."""

    id: str
    severity: str
    category: str
    description: str
    evidence_ref: str | None = None
    proposed_fix: str | None = None
    reference: str | None = None
    resolution: str = "pending"
    # False when the comment block carried no resolution label; the tracker
    # then keeps whatever resolution it already holds for this id.
    resolution_reported: bool = False
    resolution_time: float | None = None  # minutes
    resolution_notes: str | None = None

    def to_dict(self, repository: str | None = None, unit_id: str | None = None) -> dict:
        d: dict = {
            "recordType": "finding",
            "schemaVersion": SCHEMA_VERSION,
            "id": self.id,
            "severity": self.severity,
            "category": self.category,
            "description": self.description,
            "resolution": self.resolution,
            "resolutionReported": self.resolution_reported,
        }
        if repository is not None:
            d["repository"] = repository
        if unit_id is not None:
            d["unitId"] = unit_id
        optional = {
            "evidenceRef": self.evidence_ref,
            "proposedFix": self.proposed_fix,
            "reference": self.reference,
            "resolutionTime": self.resolution_time,
            "resolutionNotes": self.resolution_notes,
        }
        d.update({k: v for k, v in optional.items() if v is not None})
        return d

    @classmethod
    def from_dict(cls, d: dict) -> Finding:
        return cls(
            id=d.get("id", ""),
            severity=d.get("severity", ""),
            category=d.get("category", ""),
            description=d.get("description", ""),
            evidence_ref=d.get("evidenceRef"),
            proposed_fix=d.get("proposedFix"),
            reference=d.get("reference"),
            resolution=d.get("resolution", "pending"),
            resolution_reported=bool(d.get("resolutionReported", False)),
            resolution_time=d.get("resolutionTime"),
            resolution_notes=d.get("resolutionNotes"),
        )


@dataclass
class ParseWarning:
    """A comment fragment the parser could not turn into a finding."""

    unit_id: str
    line: int  # 1-based line of the fragment within the comment body
    reason: str
    excerpt: str

    def __str__(self) -> str:
        return f"{self.unit_id}:{self.line}: {self.reason} — {self.excerpt!r}"


@dataclass
class Contribution:
    """What one review unit currently adds to a bucket: one ledger entry."""

    units: int = 1
    reviewed: int = 0
    severity: Counter = field(default_factory=Counter)
    category: Counter = field(default_factory=Counter)
    resolution: Counter = field(default_factory=Counter)
    resolution_minutes: float = 0.0
    timed_resolutions: int = 0

    @classmethod
    def from_findings(cls, findings: list[Finding], reviewed: bool) -> Contribution:
        contribution = cls(reviewed=1 if reviewed else 0)
        for f in findings:
            contribution.severity[f.severity] += 1
            contribution.category[f.category] += 1
            contribution.resolution[f.resolution] += 1
            if f.resolution != "pending" and f.resolution_time is not None:
                contribution.resolution_minutes += f.resolution_time
                contribution.timed_resolutions += 1
        return contribution

    def to_dict(self) -> dict:
        return {
            "units": self.units,
            "reviewed": self.reviewed,
            "severityCounts": dict(self.severity),
            "categoryCounts": dict(self.category),
            "resolutionCounts": dict(self.resolution),
            "resolutionMinutes": self.resolution_minutes,
            "timedResolutions": self.timed_resolutions,
        }

    @classmethod
    def from_dict(cls, d: dict) -> Contribution:
        return cls(
            units=d.get("units", 1),
            reviewed=d.get("reviewed", 0),
            severity=Counter(d.get("severityCounts", {})),
            category=Counter(d.get("categoryCounts", {})),
            resolution=Counter(d.get("resolutionCounts", {})),
            resolution_minutes=d.get("resolutionMinutes", 0.0),
            timed_resolutions=d.get("timedResolutions", 0),
        )


@dataclass
class MetricsBucket:
    """Aggregated findings for one repository over one ISO week.

    Only counts are stored. Every rate is a property computed from the
    counts, so a rate can never disagree with its numerator/denominator.
    """

    period: str  # "YYYY-Www"
    repository: str
    total_review_units: int = 0
    reviewed_units: int = 0
    severity_counts: Counter = field(default_factory=Counter)
    category_counts: Counter = field(default_factory=Counter)
    resolution_counts: Counter = field(default_factory=Counter)
    resolution_minutes_total: float = 0.0
    timed_resolutions: int = 0
    ledger: dict[str, Contribution] = field(default_factory=dict)

    @property
    def key(self) -> str:
        return bucket_key(self.repository, self.period)

    @property
    def total_findings(self) -> int:
        return sum(self.severity_counts.values())

    @property
    def blocking_findings(self) -> int:
        return self.severity_counts.get("blocking", 0)

    @property
    def important_findings(self) -> int:
        return self.severity_counts.get("important", 0)

    @property
    def suggestion_findings(self) -> int:
        return self.severity_counts.get("suggestion", 0)

    @property
    def false_positive_count(self) -> int:
        return self.resolution_counts.get("false-positive", 0)

    @property
    def adoption_rate(self) -> float:
        return _rate(self.reviewed_units, self.total_review_units)

    @property
    def false_positive_rate(self) -> float:
        return _rate(self.false_positive_count, self.total_findings)

    @property
    def resolution_rate(self) -> float:
        resolved = self.total_findings - self.resolution_counts.get("pending", 0)
        return _rate(resolved, self.total_findings)

    @property
    def average_findings_per_reviewed_unit(self) -> float:
        if not self.reviewed_units:
            return 0.0
        return round(self.total_findings / self.reviewed_units, 2)

    @property
    def average_resolution_time(self) -> float:
        if not self.timed_resolutions:
            return 0.0
        return round(self.resolution_minutes_total / self.timed_resolutions, 2)

    def copy(self) -> MetricsBucket:
        return replace(
            self,
            severity_counts=Counter(self.severity_counts),
            category_counts=Counter(self.category_counts),
            resolution_counts=Counter(self.resolution_counts),
            ledger={
                unit_id: Contribution.from_dict(c.to_dict()) for unit_id, c in self.ledger.items()
            },
        )

    def to_dict(self) -> dict:
        return {
            "recordType": "bucket",
            "schemaVersion": SCHEMA_VERSION,
            "period": self.period,
            "repository": self.repository,
            "totalReviewUnits": self.total_review_units,
            "reviewedUnits": self.reviewed_units,
            "totalFindings": self.total_findings,
            "severityCounts": {s: self.severity_counts.get(s, 0) for s in SEVERITIES},
            "categoryCounts": {c: self.category_counts.get(c, 0) for c in CATEGORIES},
            "falsePositiveCount": self.false_positive_count,
            "resolutionCounts": {r: self.resolution_counts.get(r, 0) for r in RESOLUTIONS},
            "resolutionMinutesTotal": self.resolution_minutes_total,
            "timedResolutions": self.timed_resolutions,
            # Written for readers that cannot recompute; ignored by from_dict.
            "rates": {
                "adoptionRate": self.adoption_rate,
                "falsePositiveRate": self.false_positive_rate,
                "resolutionRate": self.resolution_rate,
            },
            "averageFindingsPerReviewedUnit": self.average_findings_per_reviewed_unit,
            "averageResolutionTime": self.average_resolution_time,
            "ledger": {unit_id: c.to_dict() for unit_id, c in sorted(self.ledger.items())},
        }

    @classmethod
    def from_dict(cls, d: dict) -> MetricsBucket:
        return cls(
            period=d["period"],
            repository=d["repository"],
            total_review_units=d.get("totalReviewUnits", 0),
            reviewed_units=d.get("reviewedUnits", 0),
            severity_counts=+Counter(d.get("severityCounts", {})),
            category_counts=+Counter(d.get("categoryCounts", {})),
            resolution_counts=+Counter(d.get("resolutionCounts", {})),
            resolution_minutes_total=d.get("resolutionMinutesTotal", 0.0),
            timed_resolutions=d.get("timedResolutions", 0),
            ledger={unit_id: Contribution.from_dict(c) for unit_id, c in d.get("ledger", {}).items()},
        )
