"""
Embedding Provider Implementations

Modules:
    openai: OpenAI embeddings (text-embedding-3-small) and the "default"
        embedder registry

Sync LangChain calls are wrapped with asyncio.to_thread for async
compatibility.

Example:
    >>> from memory_kg.providers.embedding import OpenAIEmbeddingService
    >>> service = OpenAIEmbeddingService()
    >>> embedder = await service.get("default")
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from memory_kg.providers.embedding.openai import OpenAIEmbedder, OpenAIEmbeddingService


def __getattr__(name: str):
    """Lazy import of providers to avoid loading langchain until needed."""
    if name == "OpenAIEmbedder":
        from memory_kg.providers.embedding.openai import OpenAIEmbedder
        return OpenAIEmbedder
    if name == "OpenAIEmbeddingService":
        from memory_kg.providers.embedding.openai import OpenAIEmbeddingService
        return OpenAIEmbeddingService
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")


__all__ = ["OpenAIEmbedder", "OpenAIEmbeddingService"]
