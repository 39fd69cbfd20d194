"""Per-finding resolution lifecycle.

    pending ──► fixed | wontfix | false-positive
       ▲                    │
       └──── explicit report of "pending" (e.g. a fix regressed)

The tracker reconciles the findings parsed from a unit's latest comment with
the findings already tracked for that unit. It is deliberately conservative:
a finding missing from a later comment is only treated as resolved when the
caller says the unit was fully re-reviewed, because a partial comment thread
says nothing about the findings it does not mention.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace

from prledger_core.models import Finding

logger = logging.getLogger(__name__)

RESOLVED_BY_ABSENCE = "resolved by absence in a full re-review"


@dataclass
class Transition:
    """One change of a finding's resolution, kept for the audit trail."""

    finding_id: str
    previous: str | None  # None when the finding is first reported
    current: str
    observed_at: str
    reason: str  # "reported" | "updated" | "absent"

    def to_dict(self) -> dict:
        return {
            "findingId": self.finding_id,
            "from": self.previous,
            "to": self.current,
            "observedAt": self.observed_at,
            "reason": self.reason,
        }

    @classmethod
    def from_dict(cls, d: dict) -> Transition:
        return cls(
            finding_id=d.get("findingId", ""),
            previous=d.get("from"),
            current=d.get("to", ""),
            observed_at=d.get("observedAt", ""),
            reason=d.get("reason", ""),
        )


@dataclass
class ReconcileResult:
    """Outcome of merging one observation into a unit's tracked findings.

    ``findings`` is the full tracked set (document order first, then retained
    findings the latest comment no longer mentions). ``active_ids`` are the
    findings this observation speaks for, i.e. the ones that contribute to
    metrics.
    """

    findings: list[Finding] = field(default_factory=list)
    active_ids: list[str] = field(default_factory=list)
    transitions: list[Transition] = field(default_factory=list)
    retained_ids: list[str] = field(default_factory=list)

    @property
    def active(self) -> list[Finding]:
        wanted = set(self.active_ids)
        return [f for f in self.findings if f.id in wanted]


class ResolutionTracker:
    def reconcile(
        self,
        previous: list[Finding],
        current: list[Finding],
        observed_at: str,
        fully_reviewed: bool = False,
    ) -> ReconcileResult:
        """Merge ``current`` (latest parse) into ``previous`` (tracked state).

        - In both: the latest observation replaces the tracked finding. Its
          resolution applies only if the comment reported one; otherwise the
          tracked resolution carries over.
        - Only in current: added as reported.
        - Only in previous: marked fixed when ``fully_reviewed`` and still
          pending; left untouched otherwise.
        """
        prior = {f.id: f for f in previous}
        result = ReconcileResult()

        for finding in current:
            old = prior.get(finding.id)
            if old is None:
                result.findings.append(finding)
                result.transitions.append(
                    Transition(finding.id, None, finding.resolution, observed_at, "reported")
                )
            else:
                merged = finding
                if not finding.resolution_reported:
                    resolution_time = finding.resolution_time
                    if resolution_time is None:
                        resolution_time = old.resolution_time
                    merged = replace(
                        finding,
                        resolution=old.resolution,
                        resolution_time=resolution_time,
                        resolution_notes=finding.resolution_notes or old.resolution_notes,
                    )
                result.findings.append(merged)
                if merged.resolution != old.resolution:
                    logger.debug("%s: %s -> %s", finding.id, old.resolution, merged.resolution)
                    result.transitions.append(
                        Transition(finding.id, old.resolution, merged.resolution, observed_at, "updated")
                    )
            result.active_ids.append(finding.id)

        seen = {f.id for f in current}
        for old in previous:
            if old.id in seen:
                continue
            if fully_reviewed:
                # A full re-review speaks for every finding of the unit, so
                # absent ones stay in the metrics, pending ones now as fixed.
                if old.resolution == "pending":
                    old = replace(old, resolution="fixed", resolution_notes=RESOLVED_BY_ABSENCE)
                    result.transitions.append(Transition(old.id, "pending", "fixed", observed_at, "absent"))
                result.findings.append(old)
                result.active_ids.append(old.id)
            else:
                result.findings.append(old)
                result.retained_ids.append(old.id)

        return result
