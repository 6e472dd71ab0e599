"""
Public API Layer

Modules:
    knowledge_graph: KnowledgeGraph class - main entry point

Design Principles:
    - Single entry point (KnowledgeGraph) for most operations
    - Async-first with sync wrappers (_sync suffix)
    - Lazy initialization - don't connect until needed
    - Context manager support for resource cleanup
"""

from memory_kg.api.knowledge_graph import KnowledgeGraph

__all__ = ["KnowledgeGraph"]
