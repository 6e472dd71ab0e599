"""
Name matching for endpoint resolution.

When an edge is persisted, each endpoint entity has to be mapped to a real
node id. Existing entities carry their node id; new entities are matched by
name against the nodes just created plus the loaded candidates, trying
progressively looser strategies until one hits.
"""

from __future__ import annotations

import re
from collections.abc import Sequence

from memory_kg.types.graph import Node
from memory_kg.utils.text import normalize_name

UUID_PATTERN = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-[1-5][0-9a-f]{3}-[89ab][0-9a-f]{3}-[0-9a-f]{12}$",
    re.IGNORECASE,
)

MAX_EDIT_DISTANCE = 2
WORD_OVERLAP_RATIO = 0.6


def is_valid_uuid(value: str | None) -> bool:
    return bool(value) and bool(UUID_PATTERN.match(value))


def levenshtein_distance(a: str, b: str) -> int:
    """Classic edit distance (insert, delete, substitute all cost 1)."""
    if a == b:
        return 0
    if not a:
        return len(b)
    if not b:
        return len(a)

    previous = list(range(len(b) + 1))
    for i, ca in enumerate(a, start=1):
        current = [i]
        for j, cb in enumerate(b, start=1):
            current.append(
                min(
                    previous[j] + 1,
                    current[j - 1] + 1,
                    previous[j - 1] + (ca != cb),
                )
            )
        previous = current
    return previous[-1]


def _significant_words(name: str) -> list[str]:
    return [w for w in name.lower().split() if len(w) > 2]


def word_overlap_match(a: str, b: str) -> bool:
    """
    True when most significant words (longer than 2 chars) of the shorter
    name appear, by containment, in the other.
    """
    words_a = _significant_words(a)
    words_b = _significant_words(b)
    if not words_a or not words_b:
        return False
    common = [w1 for w1 in words_a if any(w1 in w2 or w2 in w1 for w2 in words_b)]
    return len(common) >= min(len(words_a), len(words_b)) * WORD_OVERLAP_RATIO


def find_node_id(name: str, nodes: Sequence[Node]) -> str | None:
    """
    Find the id of the node best matching name.

    Strategies, in order (first hit wins):
        1. exact name
        2. normalized name
        3. substring containment of normalized names
        4. Levenshtein distance <= 2 on normalized names
        5. significant-word overlap >= 60% of the shorter name
    """
    if not name or not nodes:
        return None

    for node in nodes:
        if node.name == name:
            return node.id

    target = normalize_name(name)
    normalized = [(normalize_name(node.name), node) for node in nodes if node.name]

    for node_name, node in normalized:
        if node_name == target:
            return node.id

    if target:
        for node_name, node in normalized:
            if node_name and (target in node_name or node_name in target):
                return node.id

    for node_name, node in normalized:
        if levenshtein_distance(target, node_name) <= MAX_EDIT_DISTANCE:
            return node.id

    for node in nodes:
        if node.name and word_overlap_match(name, node.name):
            return node.id

    return None
