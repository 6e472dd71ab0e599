"""
Entity and Fact Resolution

Decides whether each extracted item already exists in the graph.

Modules:
    entity_resolution: Extracted entities vs. candidate nodes
    fact_resolution: Extracted facts vs. candidate edges

Both run in two phases:
    1. Deterministic: case-insensitive name match (entities), or same
       endpoints and type (facts)
    2. LLM: remaining items listed by number next to the candidates; the
       model flags duplicates, answers are aligned by list position

Only candidate ids are accepted as matches; anything else stays new.
"""

from memory_kg.ingestion.resolution.entity_resolution import resolve_entities
from memory_kg.ingestion.resolution.fact_resolution import resolve_facts

__all__ = ["resolve_entities", "resolve_facts"]
