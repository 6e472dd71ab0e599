"""
LLM response parsing.

Responses are parsed in tiers. Tier 1 is strict json.loads on the response
with code fences removed. Tier 2 is a pattern fallback that recovers the
first bracketed array from responses wrapped in prose. Callers decide
whether a failed ParseResult is fatal (raise via unwrap()) or means "treat
everything as new".
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from typing import Any, Generic, TypeVar

from memory_kg.errors import ResponseParseError

T = TypeVar("T")

_FENCE_OPEN = re.compile(r"^```(?:json)?\s*", re.IGNORECASE)
_FENCE_CLOSE = re.compile(r"\s*```$")
_ARRAY_SPAN = re.compile(r"\[.*\]", re.DOTALL)


def strip_code_fences(text: str) -> str:
    """Remove a leading ```json / ``` fence and its closing fence."""
    cleaned = text.strip()
    if cleaned.startswith("```"):
        cleaned = _FENCE_OPEN.sub("", cleaned)
        cleaned = _FENCE_CLOSE.sub("", cleaned)
    return cleaned.strip()


@dataclass(frozen=True)
class ParseResult(Generic[T]):
    """
    Outcome of parsing one LLM response.

    Attributes:
        ok: True when a strategy produced a list
        items: Parsed items (empty on failure)
        error: Failure description (None on success)
        strategy: Name of the strategy that succeeded ("json", "bracket", ...)
    """

    ok: bool
    items: list[T] = field(default_factory=list)
    error: str | None = None
    strategy: str | None = None

    @classmethod
    def success(cls, items: list[T], strategy: str) -> "ParseResult[T]":
        return cls(ok=True, items=list(items), strategy=strategy)

    @classmethod
    def failure(cls, error: str) -> "ParseResult[T]":
        return cls(ok=False, error=error)

    def unwrap(self) -> list[T]:
        """Return items, raising ResponseParseError on failure."""
        if not self.ok:
            raise ResponseParseError(self.error or "Failed to parse response")
        return self.items


def _as_array(value: Any) -> list[Any] | None:
    if isinstance(value, list):
        return value
    # {"entities": [...]} style wrappers
    if isinstance(value, dict) and len(value) == 1:
        inner = next(iter(value.values()))
        if isinstance(inner, list):
            return inner
    return None


def parse_json_array(text: str | None) -> ParseResult[Any]:
    """
    Parse a JSON array from an LLM response.

    Tier 1: json.loads of the fence-stripped text.
    Tier 2: json.loads of the first [...] span in the text.
    """
    if not text or not text.strip():
        return ParseResult.failure("Empty response")

    cleaned = strip_code_fences(text)
    try:
        parsed = json.loads(cleaned)
    except json.JSONDecodeError as e:
        first_error = f"JSON parse error: {e}"
    else:
        items = _as_array(parsed)
        if items is not None:
            return ParseResult.success(items, "json")
        first_error = f"Expected a JSON array, got {type(parsed).__name__}"

    match = _ARRAY_SPAN.search(cleaned)
    if match:
        try:
            parsed = json.loads(match.group(0))
        except json.JSONDecodeError:
            pass
        else:
            if isinstance(parsed, list):
                return ParseResult.success(parsed, "bracket")

    return ParseResult.failure(first_error)


_FIELD_PATTERN_CACHE: dict[str, re.Pattern[str]] = {}


def extract_field_values(text: str, field_name: str) -> list[str]:
    """
    Permissively pull `"field": "value"` or `field: value` pairs out of text.

    Used as the last parsing tier when a response is not valid JSON.
    """
    pattern = _FIELD_PATTERN_CACHE.get(field_name)
    if pattern is None:
        name = re.escape(field_name)
        pattern = re.compile(rf'"{name}"\s*:\s*"([^"]+)"|\b{name}:\s*([^\n,]+)')
        _FIELD_PATTERN_CACHE[field_name] = pattern

    values = []
    for quoted, bare in pattern.findall(text):
        value = (quoted or bare).replace('"', "").strip()
        if value:
            values.append(value)
    return values


def as_bool(value: Any) -> bool:
    """Interpret a JSON flag that models sometimes emit as a string."""
    if isinstance(value, str):
        return value.strip().lower() in ("true", "yes", "1")
    return value is True or (isinstance(value, int) and value == 1)
