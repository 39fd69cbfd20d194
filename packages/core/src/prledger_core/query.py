"""Read side for reporting and dashboard tooling.

Readers never write. ``completed_only`` hides the bucket for the current ISO
week, which is still receiving contributions.
"""

from __future__ import annotations

from prledger_core.models import Finding, MetricsBucket, bucket_key, unit_key
from prledger_core.tracker import Transition
from prledger_core.utils.periods import current_period
from prledger_store.base import BaseStore


class MetricsReader:
    def __init__(self, store: BaseStore):
        self._store = store

    def get_bucket(self, repository: str, period: str) -> MetricsBucket | None:
        record = self._store.get(bucket_key(repository, period))
        return MetricsBucket.from_dict(record) if record is not None else None

    def list_buckets(
        self,
        repository: str,
        start: str | None = None,
        end: str | None = None,
        completed_only: bool = False,
    ) -> list[MetricsBucket]:
        """Buckets for a repository, oldest first, with ``start``/``end`` periods inclusive."""
        now = current_period()
        buckets = []
        for _, record in self._store.scan(f"bucket/{repository}/"):
            # A repository named "a" must not pick up "a/b"'s buckets.
            if record.get("repository") != repository:
                continue
            period = record.get("period", "")
            if start is not None and period < start:
                continue
            if end is not None and period > end:
                continue
            if completed_only and period >= now:
                continue
            buckets.append(MetricsBucket.from_dict(record))
        return sorted(buckets, key=lambda b: b.period)

    def get_findings(self, repository: str, unit_id: str) -> list[Finding]:
        record = self._store.get(unit_key(repository, unit_id))
        if record is None:
            return []
        return [Finding.from_dict(d) for d in record.get("findings", [])]

    def get_history(self, repository: str, unit_id: str) -> list[Transition]:
        record = self._store.get(unit_key(repository, unit_id))
        if record is None:
            return []
        return [Transition.from_dict(d) for d in record.get("history", [])]

    def list_units(self, repository: str) -> list[dict]:
        """Stored unit records (without their findings) for a repository."""
        units = []
        for _, record in self._store.scan(f"unit/{repository}/"):
            if record.get("repository") != repository:
                continue
            units.append({k: v for k, v in record.items() if k not in ("findings", "history")})
        return units
