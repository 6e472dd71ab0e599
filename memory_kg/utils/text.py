"""
Text Processing Utilities

Functions for entity name cleaning and normalization.
"""

from __future__ import annotations

import re
from urllib.parse import urlsplit

DEFAULT_OWNER_NAME = "Graph Owner"

_FIRST_PERSON = re.compile(r"^(i|me|my|myself|mine)$", re.IGNORECASE)
_ARTICLE = re.compile(r"^(the|a|an)\s+", re.IGNORECASE)
_CLASSIFIER_WORDS = (
    "company", "person", "repository", "repo", "project", "organization",
    "tool", "library", "framework", "website", "site", "app", "product",
    "user", "author", "platform", "service", "language", "city", "country",
    "book", "paper", "article",
)
_CLASSIFIER_GROUP = "|".join(_CLASSIFIER_WORDS)
# "Company: Acme", "Repo called acme-cli"
_CLASSIFIER_EXPLICIT = re.compile(
    rf"^(?:{_CLASSIFIER_GROUP})(?:\s+(?:called|named|known\s+as):?|:)\s+",
    re.IGNORECASE,
)
# "company Acme"; capitalized forms such as "App Store" are names
_CLASSIFIER_LOWER = re.compile(rf"^(?:{_CLASSIFIER_GROUP})\s+")
_INTRO_PHRASE = re.compile(r"^(called|named|known\s+as):?\s+", re.IGNORECASE)
_DOMAIN = re.compile(r"([a-zA-Z0-9.-]+\.[a-zA-Z]{2,})")
_EDGE_QUOTES = re.compile(r"^[\"']|[\"']$")
_NON_WORD = re.compile(r"[^\w\s-]")


def is_first_person(name: str) -> bool:
    """True for a bare first-person pronoun (I, me, my, myself, mine)."""
    return bool(_FIRST_PERSON.match(name.strip()))


def _clean_url(text: str) -> str:
    """Reduce a URL to its most meaningful identifier."""
    try:
        parsed = urlsplit(text if "://" in text else f"https://{text}")
        hostname = parsed.hostname
    except ValueError:
        hostname = None
        parsed = None

    if parsed is None or not hostname:
        match = _DOMAIN.search(text)
        if match:
            return re.sub(r"^www\.", "", match.group(1))
        return text

    parts = [part for part in parsed.path.split("/") if part]
    if len(parts) >= 2:
        # e.g. owner/repo
        return "/".join(parts[:2])
    if len(parts) == 1:
        return parts[0]
    return re.sub(r"^www\.", "", hostname)


def clean_entity_name(
    name: str,
    *,
    personal: bool = False,
    owner_name: str = DEFAULT_OWNER_NAME,
) -> str:
    """
    Clean an extracted entity name down to a bare identifier.

    Args:
        name: Raw entity name from extraction
        personal: True for personal notes, where first-person pronouns
            refer to the graph owner
        owner_name: Canonical name for the graph owner

    Returns:
        Cleaned entity name (may be empty)

    Examples:
        "the company called Acme" -> "Acme"
        "https://github.com/org/repo/tree/main" -> "org/repo"
        "me" (personal) -> owner_name
    """
    cleaned = name.strip()

    if personal and _FIRST_PERSON.match(cleaned):
        return owner_name

    cleaned = _ARTICLE.sub("", cleaned)
    cleaned = _CLASSIFIER_EXPLICIT.sub("", cleaned)
    cleaned = _CLASSIFIER_LOWER.sub("", cleaned)
    cleaned = _INTRO_PHRASE.sub("", cleaned)

    if "://" in cleaned or ".com" in cleaned or ".org" in cleaned:
        cleaned = _clean_url(cleaned)

    cleaned = _EDGE_QUOTES.sub("", cleaned).strip()
    return re.sub(r"\s+", " ", cleaned)


def normalize_name(name: str) -> str:
    """
    Normalize a name for fuzzy comparison.

    Lower-cases, trims, collapses whitespace, drops punctuation other than
    hyphens and replaces spaces with underscores.
    """
    text = re.sub(r"\s+", " ", name.lower().strip())
    text = _NON_WORD.sub("", text)
    return text.replace(" ", "_")


def normalize_relation_type(relation: str | None) -> str:
    """
    Normalize a relation label to UPPER_SNAKE_CASE.

    Args:
        relation: e.g., "works at"

    Returns:
        Normalized type e.g., "WORKS_AT" ("RELATED_TO" when empty)
    """
    if not relation:
        return "RELATED_TO"
    text = re.sub(r"[^a-zA-Z0-9_\s]", " ", relation)
    words = text.upper().split()
    return "_".join(words) if words else "RELATED_TO"
