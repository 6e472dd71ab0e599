"""
Ingestion Pipeline

Staged pipeline that turns one captured text into knowledge graph updates.

Stages:
    Extraction (LLM):
        - Entities named in the text
        - Facts (typed relationships) between resolved entities

    Resolution (Deduplication):
        - Candidate nodes/edges loaded from storage (substring, fuzzy, vector)
        - Exact matching first, then LLM judgement over numbered listings

    Enrichment and Persistence:
        - Temporal validity windows for new facts
        - Source, new nodes and new edges written per item

Modules:
    pipeline: Main ingestion orchestrator
    map_refine: Chunked LLM processing with carried-forward results
    candidates: Candidate loading for resolution
    extraction/: Entity and fact extraction
    resolution/: Entity and fact resolution
    temporal: Temporal enrichment
    assembly/: Graph persistence
"""

from memory_kg.ingestion.map_refine import MapRefineOptions, map_refine
from memory_kg.ingestion.pipeline import KnowledgeGraphPipeline

__all__ = ["KnowledgeGraphPipeline", "MapRefineOptions", "map_refine"]
