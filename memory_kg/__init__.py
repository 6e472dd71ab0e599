"""
memory-kg - Personal Knowledge Graph Ingestion

Builds a personal knowledge graph from captured text (web pages, selections,
chat turns, personal notes) using an LLM for extraction and resolution.

Example:
    >>> from memory_kg import KnowledgeGraph
    >>> async with KnowledgeGraph("./memory.duckdb") as kg:
    ...     result = await kg.remember(
    ...         "Alice joined Acme Corp in 2020.",
    ...         title="Team notes",
    ...     )
    >>> print(result.final_message)

Main Classes:
    KnowledgeGraph: Primary entry point (storage + providers + pipeline)
    KnowledgeGraphPipeline: The staged ingestion pipeline
    KGConfig: Configuration management
"""

__version__ = "0.1.0"

# Public API - lazy imports to avoid loading optional dependencies
def __getattr__(name: str):
    """Lazy import public API components."""

    if name == "KnowledgeGraph":
        from memory_kg.api.knowledge_graph import KnowledgeGraph
        return KnowledgeGraph

    if name == "KnowledgeGraphPipeline":
        from memory_kg.ingestion.pipeline import KnowledgeGraphPipeline
        return KnowledgeGraphPipeline

    if name == "KGConfig":
        from memory_kg.config.settings import KGConfig
        return KGConfig

    if name in ("JobRegistry", "default_registry"):
        from memory_kg import jobs
        return getattr(jobs, name)

    # Types
    if name in (
        "KnowledgeGraphInput",
        "KnowledgeGraphResult",
        "Node",
        "Edge",
        "Source",
    ):
        from memory_kg import types
        return getattr(types, name)

    raise AttributeError(f"module 'memory_kg' has no attribute {name!r}")


__all__ = [
    # Main classes
    "KnowledgeGraph",
    "KnowledgeGraphPipeline",
    "KGConfig",
    "JobRegistry",
    "default_registry",

    # Types
    "KnowledgeGraphInput",
    "KnowledgeGraphResult",
    "Node",
    "Edge",
    "Source",

    # Version
    "__version__",
]
