"""
LLM and Embedding Providers

Provider-agnostic interfaces for the collaborators the pipeline is given.

Modules:
    base: Abstract provider interfaces and chat message types
    llm/: LLM provider implementations
    embedding/: Embedding provider implementations

Supported LLM Providers:
    - OpenAI (gpt-4o-mini, gpt-4o) via LangChain

Supported Embedding Providers:
    - OpenAI (text-embedding-3-small) via LangChain

Example:
    >>> from memory_kg.providers import LLMProvider, EmbeddingService
    >>> from memory_kg.providers.llm import OpenAILLMProvider
    >>> from memory_kg.providers.embedding import OpenAIEmbeddingService
"""

from memory_kg.providers.base import (
    ChatCompletion,
    ChatMessage,
    Embedder,
    EmbeddingService,
    LLMProvider,
)

__all__ = ["ChatCompletion", "ChatMessage", "Embedder", "EmbeddingService", "LLMProvider"]
