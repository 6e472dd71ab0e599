"""
Date parsing helpers.

LLM output is loose about timestamps; everything that reaches storage goes
through normalize_iso_datetime first.
"""

from __future__ import annotations

import re
from datetime import datetime, timezone

_DATE_ONLY = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_NULL_VALUES = {"", "null", "none", "undefined", "n/a"}


def parse_iso_datetime(value: str | None) -> datetime | None:
    """
    Parse an ISO-8601 string into an aware datetime.

    Accepts a trailing "Z" and date-only values (midnight UTC). Naive
    datetimes are assumed to be UTC. Returns None for null-like or
    unparsable input.
    """
    if value is None:
        return None
    text = str(value).strip()
    if text.lower() in _NULL_VALUES:
        return None

    if _DATE_ONLY.match(text):
        text = f"{text}T00:00:00+00:00"
    elif text.endswith(("Z", "z")):
        text = f"{text[:-1]}+00:00"

    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def normalize_iso_datetime(value: str | None) -> str | None:
    """Return value as a canonical ISO-8601 string, or None if invalid."""
    parsed = parse_iso_datetime(value)
    return parsed.isoformat() if parsed else None
