"""Ingestion pipeline: parse → validate → reconcile → aggregate → one atomic write.

    ingest(unit)
      ├─ parse()              deterministic, never retried
      ├─ validate() each      invalid findings reported, not dropped silently
      └─ _commit()            retried on transient StoreError
           ├─ load unit record           (unit lock held)
           ├─ ResolutionTracker.reconcile()
           ├─ load bucket(s)             (bucket locks held, sorted order)
           ├─ MetricsAggregator.apply()  staged copies only
           ├─ validate() staged buckets
           └─ store.put_many()           unit record + bucket(s) together

A unit is all-or-nothing: nothing reaches the store until every step has
succeeded, and put_many() is atomic in every backend.
"""

from __future__ import annotations

import hashlib
import json
import logging
import threading
import time
import weakref
from concurrent.futures import ThreadPoolExecutor
from contextlib import ExitStack
from dataclasses import dataclass, field

from prledger_core.aggregator import LedgerError, MetricsAggregator, adopt_legacy_totals, bucket_for
from prledger_core.models import (
    LEGACY_LEDGER_KEY,
    SCHEMA_VERSION,
    Finding,
    MetricsBucket,
    ParseWarning,
    ReviewUnit,
    bucket_key,
    unit_key,
)
from prledger_core.parser import parse
from prledger_core.schema import ValidationError, validate
from prledger_core.tracker import ResolutionTracker, Transition
from prledger_core.utils.periods import iso_period, parse_timestamp
from prledger_store.base import BaseStore, StoreError

logger = logging.getLogger(__name__)

_MAX_RETRIES = 3
_RETRY_BASE_DELAY = 1.0


@dataclass
class IngestResult:
    """What happened to one review unit. ingest() always returns one and never raises.

    status:
      accepted   state written (findings may still have been rejected)
      unchanged  identical payload already ingested; nothing written
      stale      payload older than the stored review; nothing written
      failed     unit-level failure; nothing written (see error/retryable)
      cancelled  batch cancelled before this unit started
    """

    repository: str
    unit_id: str
    status: str
    accepted: int = 0
    rejected: list[ParseWarning | ValidationError] = field(default_factory=list)
    findings: list[Finding] = field(default_factory=list)
    transitions: list[Transition] = field(default_factory=list)
    bucket_key: str | None = None
    error: str | None = None
    retryable: bool = False
    attempts: int = 0

    @property
    def ok(self) -> bool:
        return self.status in ("accepted", "unchanged")


def content_hash(unit: ReviewUnit, fully_reviewed: bool) -> str:
    payload = json.dumps(
        [unit.comment_body, unit.review_timestamp, unit.reviewed, fully_reviewed],
        ensure_ascii=False,
    )
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


class IngestionCoordinator:
    """Owns the write path from review units to stored findings and buckets.

    Safe to share across threads: read-modify-write on the same unit or the
    same bucket is serialised with per-key locks, always acquired unit key
    first and bucket keys in sorted order.
    """

    MAX_RETRIES: int = _MAX_RETRIES
    RETRY_BASE_DELAY: float = _RETRY_BASE_DELAY

    def __init__(
        self,
        store: BaseStore,
        aggregator: MetricsAggregator | None = None,
        tracker: ResolutionTracker | None = None,
        max_retries: int | None = None,
        retry_base_delay: float | None = None,
        sleep=time.sleep,
    ):
        self._store = store
        self._aggregator = aggregator or MetricsAggregator()
        self._tracker = tracker or ResolutionTracker()
        self.max_retries = max(1, max_retries if max_retries is not None else self.MAX_RETRIES)
        self.retry_base_delay = retry_base_delay if retry_base_delay is not None else self.RETRY_BASE_DELAY
        self._sleep = sleep
        # Entries vanish once no thread holds or waits on the lock.
        self._locks: weakref.WeakValueDictionary[str, threading.Lock] = weakref.WeakValueDictionary()
        self._locks_guard = threading.Lock()

    # ------------------------------------------------------------------ #
    # Public interface                                                     #
    # ------------------------------------------------------------------ #

    def ingest(self, unit: ReviewUnit, fully_reviewed: bool = False) -> IngestResult:
        """Ingest one review unit end to end.

        ``fully_reviewed`` signals that the comment covers the whole change, so
        previously tracked findings it no longer mentions count as fixed.
        """
        result = IngestResult(repository=unit.repository, unit_id=unit.unit_id, status="failed")

        if not unit.repository or not unit.unit_id:
            result.error = "review unit needs a repository and a unitId"
            return result
        if unit.unit_id == LEGACY_LEDGER_KEY:
            result.error = f"unitId {LEGACY_LEDGER_KEY!r} is reserved"
            return result
        try:
            period = iso_period(unit.review_timestamp)
        except ValueError:
            result.error = f"unreadable reviewTimestamp {unit.review_timestamp!r}"
            return result

        findings, warnings = parse(unit.comment_body, unit.unit_id)
        result.rejected.extend(warnings)
        valid: list[Finding] = []
        for finding in findings:
            checked = validate(finding.to_dict(unit.repository, unit.unit_id), record_type="finding")
            if checked.valid:
                valid.append(finding)
            else:
                result.rejected.extend(checked.errors)
        result.accepted = len(valid)
        result.bucket_key = bucket_key(unit.repository, period)

        digest = content_hash(unit, fully_reviewed)
        for attempt in range(self.max_retries):
            result.attempts = attempt + 1
            try:
                self._commit(unit, period, valid, digest, fully_reviewed, result)
                return result
            except LedgerError as e:
                logger.error("Refusing to write %s/%s: %s", unit.repository, unit.unit_id, e)
                result.status, result.error, result.retryable = "failed", str(e), False
                return result
            except (StoreError, TimeoutError) as e:
                retryable = getattr(e, "retryable", True)
                result.status, result.error, result.retryable = "failed", str(e), retryable
                if not retryable or attempt == self.max_retries - 1:
                    logger.error(
                        "Ingest of %s/%s failed after %d attempt(s): %s",
                        unit.repository,
                        unit.unit_id,
                        attempt + 1,
                        e,
                    )
                    return result
                delay = self.retry_base_delay * 2**attempt
                logger.warning(
                    "Store error ingesting %s/%s (attempt %d/%d): %s. Retrying in %.1fs...",
                    unit.repository,
                    unit.unit_id,
                    attempt + 1,
                    self.max_retries,
                    e,
                    delay,
                )
                self._sleep(delay)
        return result

    def ingest_batch(
        self,
        units: list[ReviewUnit],
        workers: int = 1,
        cancel: threading.Event | None = None,
        fully_reviewed: bool = False,
    ) -> list[IngestResult]:
        """Ingest independent units, optionally on a thread pool.

        Results come back in input order. Setting ``cancel`` stops units that
        have not started; a unit already in flight finishes atomically.
        """

        def run(unit: ReviewUnit) -> IngestResult:
            if cancel is not None and cancel.is_set():
                return IngestResult(repository=unit.repository, unit_id=unit.unit_id, status="cancelled")
            try:
                return self.ingest(unit, fully_reviewed=fully_reviewed)
            except Exception as e:
                # One broken unit (or backend bug) must not take the batch down.
                logger.exception("Unexpected error ingesting %s/%s", unit.repository, unit.unit_id)
                return IngestResult(
                    repository=unit.repository,
                    unit_id=unit.unit_id,
                    status="failed",
                    error=f"{type(e).__name__}: {e}",
                )

        if workers <= 1:
            return [run(unit) for unit in units]
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="prledger-ingest") as pool:
            return list(pool.map(run, units))

    # ------------------------------------------------------------------ #
    # Internals                                                            #
    # ------------------------------------------------------------------ #

    def _lock(self, key: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = self._locks[key] = threading.Lock()
            return lock

    def _load_bucket(self, repository: str, period: str) -> MetricsBucket:
        key = bucket_key(repository, period)
        record = self._store.get(key)
        if record is None:
            return bucket_for(repository, period)
        checked = validate(record, record_type="bucket")
        if not checked.valid:
            raise LedgerError(f"stored bucket {key} is invalid: " + "; ".join(str(e) for e in checked.errors))
        bucket = MetricsBucket.from_dict(record)
        if "ledger" not in record:
            return adopt_legacy_totals(bucket)
        return bucket

    def _commit(
        self,
        unit: ReviewUnit,
        period: str,
        findings: list[Finding],
        digest: str,
        fully_reviewed: bool,
        result: IngestResult,
    ) -> None:
        ukey = unit_key(unit.repository, unit.unit_id)
        with self._lock(ukey):
            stored = self._store.get(ukey)
            if stored is not None:
                if stored.get("contentHash") == digest:
                    result.status = "unchanged"
                    result.findings = [Finding.from_dict(d) for d in stored.get("findings", [])]
                    return
                if parse_timestamp(unit.review_timestamp) < parse_timestamp(stored["reviewTimestamp"]):
                    logger.info(
                        "Ignoring %s: review at %s is older than stored %s",
                        ukey,
                        unit.review_timestamp,
                        stored["reviewTimestamp"],
                    )
                    result.status = "stale"
                    result.findings = [Finding.from_dict(d) for d in stored.get("findings", [])]
                    return

            previous = [Finding.from_dict(d) for d in stored.get("findings", [])] if stored else []
            reconciled = self._tracker.reconcile(previous, findings, unit.review_timestamp, fully_reviewed)

            old_period = stored.get("period") if stored else None
            periods = sorted({period} | ({old_period} if old_period else set()))
            with ExitStack() as locks:
                for p in periods:
                    locks.enter_context(self._lock(bucket_key(unit.repository, p)))

                staged: dict[str, MetricsBucket] = {}
                if old_period and old_period != period:
                    # The re-review moved the unit to another week: take its
                    # contribution out of the old bucket in the same write.
                    old_bucket = self._load_bucket(unit.repository, old_period)
                    staged[old_bucket.key] = self._aggregator.retract(unit.unit_id, old_bucket)
                bucket = self._load_bucket(unit.repository, period)
                staged[bucket.key] = self._aggregator.apply(unit, reconciled.active, bucket)

                records: dict[str, dict] = {}
                for key, staged_bucket in staged.items():
                    record = staged_bucket.to_dict()
                    checked = validate(record, record_type="bucket")
                    if not checked.valid:
                        detail = "; ".join(str(e) for e in checked.errors)
                        raise LedgerError(f"bucket {key} would be invalid: {detail}")
                    records[key] = record

                history = list(stored.get("history", [])) if stored else []
                history.extend(t.to_dict() for t in reconciled.transitions)
                records[ukey] = {
                    "recordType": "unit",
                    "schemaVersion": SCHEMA_VERSION,
                    "repository": unit.repository,
                    "unitId": unit.unit_id,
                    "reviewTimestamp": unit.review_timestamp,
                    "contentHash": digest,
                    "period": period,
                    "reviewed": unit.reviewed,
                    "fullyReviewed": fully_reviewed,
                    "findings": [f.to_dict(unit.repository, unit.unit_id) for f in reconciled.findings],
                    "activeIds": reconciled.active_ids,
                    "history": history,
                }
                self._store.put_many(records)

        result.status = "accepted"
        result.findings = reconciled.findings
        result.transitions = reconciled.transitions
