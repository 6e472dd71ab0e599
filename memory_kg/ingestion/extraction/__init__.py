"""
LLM Extraction

Modules:
    entities: Named entities in the captured text
    facts: Relationships between resolved entities, with a second pass
        for entities the first pass left unconnected

Both stages run through map_refine so long texts are processed chunk by
chunk with earlier results carried forward.
"""

from memory_kg.ingestion.extraction.entities import extract_entities
from memory_kg.ingestion.extraction.facts import extract_facts

__all__ = ["extract_entities", "extract_facts"]
