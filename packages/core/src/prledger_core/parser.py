"""Finding extraction from review-comment markdown.

A finding block looks like::

    - **Blocking | Security**: Hardcoded password in config
      **Evidence:** config.ts:15
      **Proposed fix:** read it from the environment
      **Status:** fixed

The marker line carries a severity and a category in either order, in bold
or in brackets. Label lines may be English or Spanish. Everything the
grammar cannot place is reported as a ParseWarning rather than dropped or
coerced to a default, because an unknown token means the comment format and
this parser have drifted apart.

All format knowledge lives in this module; downstream code only ever sees
Finding and ParseWarning objects.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field

from prledger_core.models import Finding, ParseWarning

logger = logging.getLogger(__name__)

_EXCERPT_CHARS = 120


def _norm(token: str) -> str:
    """Normalise a token for alias lookup: case, emphasis, hyphens, apostrophes."""
    text = token.strip().lower()
    text = re.sub(r"^[^\w]+|[^\w]+$", "", text)
    text = text.replace("'", "").replace("’", "")
    text = re.sub(r"[-_\s]+", " ", text)
    return text.strip()


_SEVERITY_ALIASES = {
    "blocking": "blocking",
    "bloqueante": "blocking",
    "important": "important",
    "importante": "important",
    "suggestion": "suggestion",
    "sugerencia": "suggestion",
}

_CATEGORY_ALIASES = {
    "security": "security",
    "seguridad": "security",
    "testing": "testing",
    "tests": "testing",
    "pruebas": "testing",
    "performance": "performance",
    "perf": "performance",
    "rendimiento": "performance",
    "reliability": "reliability",
    "fiabilidad": "reliability",
    "confiabilidad": "reliability",
    "readability": "readability",
    "legibilidad": "readability",
    "code conventions": "code-conventions",
    "conventions": "code-conventions",
    "convenciones": "code-conventions",
    "convenciones de codigo": "code-conventions",
    "convenciones de código": "code-conventions",
    "other": "other",
    "otro": "other",
    "otros": "other",
}

_RESOLUTION_ALIASES = {
    "pending": "pending",
    "open": "pending",
    "unresolved": "pending",
    "reopened": "pending",
    "pendiente": "pending",
    "fixed": "fixed",
    "resolved": "fixed",
    "corregido": "fixed",
    "resuelto": "fixed",
    "wontfix": "wontfix",
    "wont fix": "wontfix",
    "will not fix": "wontfix",
    "no se corregira": "wontfix",
    "no se corregirá": "wontfix",
    "false positive": "false-positive",
    "falso positivo": "false-positive",
}

# Label spelling → Finding attribute. Longest spellings first so that
# "resolution time" wins over "resolution".
_LABEL_FIELDS = {
    "evidence": "evidence_ref",
    "evidencia": "evidence_ref",
    "proposed fix": "proposed_fix",
    "suggested fix": "proposed_fix",
    "corrección propuesta": "proposed_fix",
    "correccion propuesta": "proposed_fix",
    "fix": "proposed_fix",
    "reference": "reference",
    "referencia": "reference",
    "resolution time": "resolution_time",
    "tiempo de resolución": "resolution_time",
    "tiempo de resolucion": "resolution_time",
    "resolution notes": "resolution_notes",
    "notes": "resolution_notes",
    "notas": "resolution_notes",
    "resolution": "resolution",
    "resolución": "resolution",
    "resolucion": "resolution",
    "status": "resolution",
    "estado": "resolution",
}

_LABEL_RE = re.compile(
    r"^\s*(?:[-*+]\s+)?(?:\*\*|__)?\s*(?P<label>"
    + "|".join(re.escape(label) for label in sorted(_LABEL_FIELDS, key=len, reverse=True))
    + r")\s*(?:\*\*|__)?\s*:\s*(?:\*\*|__)?\s*(?P<value>.*?)\s*$",
    re.IGNORECASE,
)

_MARKER_RE = re.compile(
    r"""^\s*(?P<bullet>[-*+]|\d+[.)])?\s*
    (?:\*\*(?P<bold>[^*]+?)\*\*|\[(?P<bracket>[^\]]+)\](?!\())
    \s*(?P<rest>.*?)\s*$""",
    re.VERBOSE,
)

_TOKEN_SPLIT_RE = re.compile(r"\s*[|/,]\s*")
_STATUS_TAG_RE = re.compile(r"^[\[(](?P<tag>[^\])]+)[\])]\s*")
_HEADING_RE = re.compile(r"^\s{0,3}#{1,6}\s")
_FENCE_RE = re.compile(r"^\s*(```|~~~)")
_DURATION_RE = re.compile(
    r"^(?P<amount>\d+(?:\.\d+)?)\s*(?P<unit>m|min|mins|minutes?|minutos?|h|hrs?|hours?|horas?)?\.?$",
    re.IGNORECASE,
)


@dataclass
class _Block:
    """A finding block being accumulated line by line."""

    seq: int
    line: int
    excerpt: str
    tokens: list[str]
    description: list[str] = field(default_factory=list)
    labels: dict[str, list[str]] = field(default_factory=dict)
    status_tag: str | None = None
    current: str = "description"
    gap: bool = False
    in_fence: bool = False

    def append(self, text: str) -> None:
        if self.current == "description":
            self.description.append(text)
        else:
            self.labels[self.current].append(text)


def _excerpt(text: str) -> str:
    text = text.strip()
    return text if len(text) <= _EXCERPT_CHARS else text[: _EXCERPT_CHARS - 1] + "…"


def _match_marker(line: str) -> tuple[list[str], str] | None:
    """Return (tokens, rest) if line has the shape of a finding marker, else None.

    A bold or bracketed pair counts as a marker when the line is a list item
    or at least one of the two tokens is a known severity/category. Plain
    emphasis such as ``**Before | After**`` mid-paragraph is left alone.
    """
    match = _MARKER_RE.match(line)
    if not match:
        return None
    inner = (match.group("bold") or match.group("bracket") or "").strip().rstrip(":").strip()
    tokens = [t for t in _TOKEN_SPLIT_RE.split(inner) if t.strip()]
    if len(tokens) != 2:
        return None
    known = any(_norm(t) in _SEVERITY_ALIASES or _norm(t) in _CATEGORY_ALIASES for t in tokens)
    if not known and not match.group("bullet"):
        return None
    rest = re.sub(r"^[:\-–—]\s*", "", match.group("rest"))
    return tokens, rest


def _classify(tokens: list[str]) -> tuple[str, str] | str:
    """Map the two marker tokens to (severity, category), or return a reason string."""
    a, b = (_norm(t) for t in tokens)
    for sev_tok, cat_tok in ((a, b), (b, a)):
        if sev_tok in _SEVERITY_ALIASES and cat_tok in _CATEGORY_ALIASES:
            return _SEVERITY_ALIASES[sev_tok], _CATEGORY_ALIASES[cat_tok]

    severities = [t for t in (a, b) if t in _SEVERITY_ALIASES]
    categories = [t for t in (a, b) if t in _CATEGORY_ALIASES]
    if len(severities) == 2:
        return f"two severities and no category ({a!r}, {b!r})"
    if len(categories) == 2:
        return f"two categories and no severity ({a!r}, {b!r})"
    if severities:
        other = b if a in _SEVERITY_ALIASES else a
        return f"unrecognized category {other!r}"
    if categories:
        other = b if a in _CATEGORY_ALIASES else a
        return f"unrecognized severity {other!r}"
    return f"unrecognized severity/category tokens {a!r}, {b!r}"


def _parse_minutes(value: str) -> float | None:
    match = _DURATION_RE.match(value.strip())
    if not match:
        return None
    amount = float(match.group("amount"))
    unit = (match.group("unit") or "m").lower()
    if unit.startswith("h"):
        amount *= 60
    return amount


def _label_value(block: _Block, name: str) -> str | None:
    lines = block.labels.get(name)
    if lines is None:
        return None
    value = "\n".join(lines).strip()
    return value or None


def _build(block: _Block, unit_id: str) -> Finding | ParseWarning:
    def warn(reason: str) -> ParseWarning:
        return ParseWarning(unit_id=unit_id, line=block.line, reason=reason, excerpt=block.excerpt)

    classified = _classify(block.tokens)
    if isinstance(classified, str):
        return warn(classified)
    severity, category = classified

    description = " ".join(part.strip() for part in block.description if part.strip())
    if not description:
        return warn("finding has an empty description")

    resolution = "pending"
    reported = False
    raw_resolution = _label_value(block, "resolution") or block.status_tag
    if raw_resolution is not None:
        resolution = _RESOLUTION_ALIASES.get(_norm(raw_resolution))
        if resolution is None:
            return warn(f"unrecognized resolution {raw_resolution.strip()!r}")
        reported = True

    resolution_time = None
    raw_time = _label_value(block, "resolution_time")
    if raw_time is not None:
        resolution_time = _parse_minutes(raw_time)
        if resolution_time is None:
            return warn(f"unreadable resolution time {raw_time!r}")

    return Finding(
        id=f"{unit_id}#{block.seq:03d}",
        severity=severity,
        category=category,
        description=description,
        evidence_ref=_label_value(block, "evidence_ref"),
        proposed_fix=_label_value(block, "proposed_fix"),
        reference=_label_value(block, "reference"),
        resolution=resolution,
        resolution_reported=reported,
        resolution_time=resolution_time,
        resolution_notes=_label_value(block, "resolution_notes"),
    )


def parse(comment_body: str, unit_id: str) -> tuple[list[Finding], list[ParseWarning]]:
    """Extract findings from a review comment.

    Never raises on malformed input: each fragment that cannot become a
    Finding yields one ParseWarning and is skipped, so one bad entry cannot
    stop the rest of the comment from being ingested.

    Ids are ``<unit_id>#<seq>`` where seq counts every marker block in
    document order (rejected ones included), so re-parsing unchanged text
    yields the same ids and fixing one malformed block does not renumber
    the blocks after it.
    """
    findings: list[Finding] = []
    warnings: list[ParseWarning] = []
    block: _Block | None = None
    seq = 0

    def close() -> None:
        nonlocal block
        if block is None:
            return
        result = _build(block, unit_id)
        if isinstance(result, ParseWarning):
            logger.debug("Skipping finding block: %s", result)
            warnings.append(result)
        else:
            findings.append(result)
        block = None

    for lineno, line in enumerate((comment_body or "").splitlines(), 1):
        stripped = line.strip()

        if block is not None and block.in_fence:
            block.append(line.rstrip())
            if _FENCE_RE.match(line):
                block.in_fence = False
            continue

        if _HEADING_RE.match(line):
            close()
            continue

        if not stripped:
            if block is not None:
                block.gap = True
            continue

        label = _LABEL_RE.match(line)
        if label:
            if block is None:
                warnings.append(
                    ParseWarning(
                        unit_id=unit_id,
                        line=lineno,
                        reason=f"{label.group('label')!r} label outside any finding block",
                        excerpt=_excerpt(stripped),
                    )
                )
                continue
            name = _LABEL_FIELDS[label.group("label").lower()]
            value = label.group("value")
            block.labels[name] = [value] if value else []
            block.current = name
            block.gap = False
            continue

        marker = _match_marker(line)
        if marker is not None:
            close()
            tokens, rest = marker
            block = _Block(seq=seq, line=lineno, excerpt=_excerpt(stripped), tokens=tokens)
            seq += 1
            tag = _STATUS_TAG_RE.match(rest)
            if tag and _norm(tag.group("tag")) in _RESOLUTION_ALIASES:
                block.status_tag = tag.group("tag")
                rest = rest[tag.end() :].lstrip(": ").strip()
            if rest:
                block.description.append(rest)
            continue

        if block is None:
            continue  # preamble or closing prose

        if _FENCE_RE.match(line) and (not block.gap or block.current != "description"):
            block.in_fence = True
            block.gap = False
            block.append(line.rstrip())
            continue

        if block.gap:
            # Prose after a blank line belongs to the surrounding comment,
            # not to the finding above it.
            close()
            continue

        block.append(stripped if block.current == "description" else line.rstrip())

    close()
    return findings, warnings
