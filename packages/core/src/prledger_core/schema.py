"""Versioned record validation.

Every persisted record carries ``recordType`` and ``schemaVersion``. The pair
(recordType, major version) selects one rule set from _RULES: a JSON Schema
document evaluated with jsonschema, followed by semantic checks that a schema
cannot express (cross-field sums, ledger consistency).

Evolution policy:
- Minor versions (2.0 → 2.1) may add fields. Schemas leave
  additionalProperties open, so newer records validate under older rules.
- Major versions may add required fields or change types. They get their own
  entry in _RULES so 1.x and 2.x records can share a store during a migration.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Callable

from jsonschema import Draft202012Validator

from prledger_core.models import CATEGORIES, LEGACY_LEDGER_KEY, RESOLUTIONS, SEVERITIES
from prledger_core.utils.periods import PERIOD_RE

_VERSION_RE = re.compile(r"^(\d+)(?:\.\d+)*$")


@dataclass
class ValidationError:
    """One rule a record breaks. A value, not an exception: results collect many."""

    path: str
    message: str
    record_id: str = ""

    def __str__(self) -> str:
        where = f"{self.record_id} " if self.record_id else ""
        return f"{where}{self.path}: {self.message}"


@dataclass
class ValidationResult:
    errors: list[ValidationError] = field(default_factory=list)

    @property
    def valid(self) -> bool:
        return not self.errors


_NON_EMPTY = {"type": "string", "minLength": 1, "pattern": r"\S"}
_OPTIONAL_TEXT = {"type": ["string", "null"]}
_COUNT = {"type": "integer", "minimum": 0}
_MINUTES = {"type": "number", "minimum": 0}
_RATE = {"type": "number", "minimum": 0, "maximum": 100}


def _count_map(keys: tuple[str, ...]) -> dict:
    return {"type": "object", "propertyNames": {"enum": list(keys)}, "additionalProperties": _COUNT}


def _version(major: int) -> dict:
    return {"type": "string", "pattern": rf"^{major}(\.\d+)*$"}


_FINDING_PROPERTIES = {
    "id": _NON_EMPTY,
    "severity": {"enum": list(SEVERITIES)},
    "category": {"enum": list(CATEGORIES)},
    "description": _NON_EMPTY,
    "evidenceRef": _OPTIONAL_TEXT,
    "proposedFix": _OPTIONAL_TEXT,
    "reference": _OPTIONAL_TEXT,
    "resolution": {"enum": list(RESOLUTIONS)},
    "resolutionReported": {"type": "boolean"},
    "resolutionTime": {"type": ["number", "null"], "minimum": 0},
    "resolutionNotes": _OPTIONAL_TEXT,
}

FINDING_V1 = {
    "$schema": "https://json-schema.org/draft/2020-12/schema",
    "type": "object",
    "required": ["schemaVersion", "id", "severity", "category", "description", "resolution"],
    "properties": {"schemaVersion": _version(1), **_FINDING_PROPERTIES},
}

FINDING_V2 = {
    "$schema": "https://json-schema.org/draft/2020-12/schema",
    "type": "object",
    "required": FINDING_V1["required"] + ["repository", "unitId"],
    "properties": {
        "schemaVersion": _version(2),
        "repository": _NON_EMPTY,
        "unitId": _NON_EMPTY,
        **_FINDING_PROPERTIES,
    },
}

_BUCKET_PROPERTIES = {
    "period": {"type": "string", "pattern": PERIOD_RE.pattern},
    "repository": _NON_EMPTY,
    "totalReviewUnits": _COUNT,
    "reviewedUnits": _COUNT,
    "severityCounts": _count_map(SEVERITIES),
    "categoryCounts": _count_map(CATEGORIES),
    "falsePositiveCount": _COUNT,
    "resolutionCounts": _count_map(RESOLUTIONS),
    "resolutionMinutesTotal": _MINUTES,
    "timedResolutions": _COUNT,
    "rates": {"type": "object", "additionalProperties": _RATE},
    "averageFindingsPerReviewedUnit": _MINUTES,
    "averageResolutionTime": _MINUTES,
}

_BUCKET_V1_REQUIRED = [
    "schemaVersion",
    "period",
    "repository",
    "totalReviewUnits",
    "reviewedUnits",
    "severityCounts",
    "categoryCounts",
    "falsePositiveCount",
    "resolutionCounts",
]

BUCKET_V1 = {
    "$schema": "https://json-schema.org/draft/2020-12/schema",
    "type": "object",
    "required": _BUCKET_V1_REQUIRED,
    "properties": {"schemaVersion": _version(1), **_BUCKET_PROPERTIES},
}

_CONTRIBUTION = {
    "type": "object",
    "required": ["units", "reviewed", "severityCounts", "categoryCounts", "resolutionCounts"],
    "properties": {
        "units": {"type": "integer", "minimum": 1, "maximum": 1},
        "reviewed": {"type": "integer", "minimum": 0, "maximum": 1},
        "severityCounts": _count_map(SEVERITIES),
        "categoryCounts": _count_map(CATEGORIES),
        "resolutionCounts": _count_map(RESOLUTIONS),
        "resolutionMinutes": _MINUTES,
        "timedResolutions": _COUNT,
    },
}

# Totals carried over from a 1.x bucket: one entry standing for many units.
_LEGACY_CONTRIBUTION = {
    **_CONTRIBUTION,
    "properties": {
        **_CONTRIBUTION["properties"],
        "units": _COUNT,
        "reviewed": _COUNT,
    },
}

BUCKET_V2 = {
    "$schema": "https://json-schema.org/draft/2020-12/schema",
    "type": "object",
    "required": _BUCKET_V1_REQUIRED + ["totalFindings", "ledger"],
    "properties": {
        "schemaVersion": _version(2),
        "totalFindings": _COUNT,
        "ledger": {
            "type": "object",
            "properties": {LEGACY_LEDGER_KEY: _LEGACY_CONTRIBUTION},
            "additionalProperties": _CONTRIBUTION,
        },
        **_BUCKET_PROPERTIES,
    },
}

UNIT_V2 = {
    "$schema": "https://json-schema.org/draft/2020-12/schema",
    "type": "object",
    "required": ["schemaVersion", "repository", "unitId", "reviewTimestamp", "contentHash", "period", "findings"],
    "properties": {
        "schemaVersion": _version(2),
        "repository": _NON_EMPTY,
        "unitId": _NON_EMPTY,
        "reviewTimestamp": _NON_EMPTY,
        "contentHash": _NON_EMPTY,
        "period": {"type": "string", "pattern": PERIOD_RE.pattern},
        "reviewed": {"type": "boolean"},
        "findings": {"type": "array", "items": {"type": "object"}},
        "activeIds": {"type": "array", "items": {"type": "string"}},
        "history": {"type": "array", "items": {"type": "object"}},
    },
}


# ---------------------------------------------------------------------------
# Semantic checks, run only after the schema pass, so keys are present.
# ---------------------------------------------------------------------------


def _check_units(record: dict) -> list[ValidationError]:
    if record["reviewedUnits"] > record["totalReviewUnits"]:
        return [
            ValidationError(
                "reviewedUnits",
                f"reviewedUnits ({record['reviewedUnits']}) exceeds totalReviewUnits ({record['totalReviewUnits']})",
            )
        ]
    return []


def _check_totals(record: dict) -> list[ValidationError]:
    errors = []
    sums = {name: sum(record[name].values()) for name in ("severityCounts", "categoryCounts", "resolutionCounts")}
    if "totalFindings" in record:
        sums["totalFindings"] = record["totalFindings"]
    if len(set(sums.values())) > 1:
        detail = ", ".join(f"{k}={v}" for k, v in sums.items())
        errors.append(ValidationError("severityCounts", f"finding totals disagree ({detail})"))
    fp = record["resolutionCounts"].get("false-positive", 0)
    if record["falsePositiveCount"] != fp:
        errors.append(
            ValidationError(
                "falsePositiveCount",
                f"falsePositiveCount ({record['falsePositiveCount']}) != resolutionCounts.false-positive ({fp})",
            )
        )
    return errors


def _check_ledger(record: dict) -> list[ValidationError]:
    ledger = record["ledger"]
    errors = []
    units = sum(entry["units"] for entry in ledger.values())
    if units != record["totalReviewUnits"]:
        errors.append(
            ValidationError("ledger", f"ledger has {units} unit(s), totalReviewUnits is {record['totalReviewUnits']}")
        )
    reviewed = sum(entry["reviewed"] for entry in ledger.values())
    if reviewed != record["reviewedUnits"]:
        errors.append(
            ValidationError("ledger", f"ledger reviewed sum {reviewed} != reviewedUnits {record['reviewedUnits']}")
        )
    for name in ("severityCounts", "categoryCounts", "resolutionCounts"):
        totals: dict[str, int] = {}
        for entry in ledger.values():
            for k, v in entry[name].items():
                totals[k] = totals.get(k, 0) + v
        stored = {k: v for k, v in record[name].items() if v}
        if {k: v for k, v in totals.items() if v} != stored:
            errors.append(ValidationError(f"ledger.{name}", f"ledger sums {totals} != bucket {stored}"))
    return errors


@dataclass(frozen=True)
class _RuleSet:
    schema: dict
    checks: tuple[Callable[[dict], list[ValidationError]], ...] = ()


_RULES: dict[tuple[str, int], _RuleSet] = {
    ("finding", 1): _RuleSet(FINDING_V1),
    ("finding", 2): _RuleSet(FINDING_V2),
    ("bucket", 1): _RuleSet(BUCKET_V1, (_check_units, _check_totals)),
    ("bucket", 2): _RuleSet(BUCKET_V2, (_check_units, _check_totals, _check_ledger)),
    ("unit", 2): _RuleSet(UNIT_V2),
}


@lru_cache(maxsize=None)
def _validator(record_type: str, major: int) -> Draft202012Validator:
    return Draft202012Validator(_RULES[(record_type, major)].schema)


def _infer_type(record: dict) -> str:
    if "period" in record and "totalReviewUnits" in record:
        return "bucket"
    if "findings" in record:
        return "unit"
    return "finding"


def _record_id(record: dict) -> str:
    if "id" in record:
        return str(record["id"])
    if "period" in record and "repository" in record:
        return f"{record['repository']}/{record['period']}"
    if "unitId" in record:
        return str(record["unitId"])
    return ""


def validate(record: object, record_type: str | None = None) -> ValidationResult:
    """Validate a finding, bucket, or unit record against its versioned rule set.

    ``record_type`` overrides the record's own ``recordType`` tag; without
    either, the shape is inferred. Never raises for bad input.
    """
    if not isinstance(record, dict):
        return ValidationResult([ValidationError("<root>", f"expected a JSON object, got {type(record).__name__}")])

    rid = _record_id(record)
    kind = record_type or record.get("recordType") or _infer_type(record)
    version = record.get("schemaVersion")
    if not isinstance(version, str) or not _VERSION_RE.match(version):
        error = ValidationError("schemaVersion", f"missing or malformed schemaVersion {version!r}", rid)
        return ValidationResult([error])

    major = int(_VERSION_RE.match(version).group(1))
    if (kind, major) not in _RULES:
        return ValidationResult(
            [ValidationError("schemaVersion", f"unsupported schemaVersion {version!r} for {kind!r} records", rid)]
        )

    errors = [
        ValidationError(".".join(str(p) for p in e.absolute_path) or "<root>", e.message, rid)
        for e in sorted(_validator(kind, major).iter_errors(record), key=lambda e: list(map(str, e.absolute_path)))
    ]
    if errors:
        return ValidationResult(errors)

    for check in _RULES[(kind, major)].checks:
        errors.extend(ValidationError(e.path, e.message, rid) for e in check(record))
    return ValidationResult(errors)
