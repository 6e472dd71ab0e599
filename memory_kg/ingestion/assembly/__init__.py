"""
Graph Assembly

Final stage that writes one ingestion's results to storage.

Modules:
    assembler: Source, node and edge persistence

Write order: source -> nodes (+ MENTIONED_IN) -> edges (+ EXTRACTED_FROM)

Partial failure:
    - Missing page id or title aborts before anything is written
    - Each node and edge is written independently; failures are skipped
"""

from memory_kg.ingestion.assembly.assembler import GraphAssembler

__all__ = ["GraphAssembler"]
