"""
LLM Provider Implementations

Modules:
    openai: OpenAI provider (gpt-4o-mini, gpt-4o)

Each provider implements the LLMProvider interface with:
    - is_ready(): Whether requests can be served
    - chat_completions(): One chat completion
    - get_max_model_tokens(): Context window size

Example:
    >>> from memory_kg.providers.llm import OpenAILLMProvider
    >>> provider = OpenAILLMProvider(model="gpt-4o-mini")
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from memory_kg.providers.llm.openai import OpenAILLMProvider


def __getattr__(name: str):
    """Lazy import of providers to avoid loading langchain until needed."""
    if name == "OpenAILLMProvider":
        from memory_kg.providers.llm.openai import OpenAILLMProvider
        return OpenAILLMProvider
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")


__all__ = ["OpenAILLMProvider"]
