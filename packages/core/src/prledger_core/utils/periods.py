from __future__ import annotations

import re
from datetime import datetime, timezone

PERIOD_RE = re.compile(r"^(\d{4})-W(0[1-9]|[1-4]\d|5[0-3])$")


def parse_timestamp(value: str) -> datetime:
    """Parse an ISO-8601 timestamp, treating a missing offset (or a trailing Z) as UTC.

    Raises ValueError for anything that is not ISO-8601.
    """
    text = value.strip()
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def iso_period(value: str | datetime) -> str:
    """Return the ISO week ("YYYY-Www") a timestamp falls into, evaluated in UTC."""
    moment = parse_timestamp(value) if isinstance(value, str) else value
    if moment.tzinfo is not None:
        moment = moment.astimezone(timezone.utc)
    year, week, _ = moment.isocalendar()
    return f"{year}-W{week:02d}"


def current_period() -> str:
    return iso_period(datetime.now(timezone.utc))


def is_valid_period(period: str) -> bool:
    return PERIOD_RE.match(period) is not None
