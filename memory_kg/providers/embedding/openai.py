"""
OpenAI Embedding Provider (LangChain-based)

Implements Embedder using LangChain's OpenAIEmbeddings, and a small
EmbeddingService registry that hands it out under the name "default".

Models:
    - text-embedding-3-small: 1536 dimensions, the default
    - text-embedding-3-large: 3072 dimensions, best quality

Example:
    >>> service = OpenAIEmbeddingService(model="text-embedding-3-small")
    >>> embedder = await service.get("default")
    >>> vector = await embedder.text_to_vector("Alice works at Acme")
    >>> print(len(vector))
    1536
"""

from __future__ import annotations

import asyncio
import time
from typing import TYPE_CHECKING

from memory_kg.config.pricing import estimate_embedding_cost_usd
from memory_kg.providers.base import Embedder, EmbeddingService
from memory_kg.types.results import CostUsageRecord
from memory_kg.utils.cost_telemetry import current_stage, record_usage
from memory_kg.utils.token_count import count_text_tokens

if TYPE_CHECKING:
    from langchain_openai import OpenAIEmbeddings


# Model dimensions mapping
MODEL_DIMENSIONS = {
    "text-embedding-3-large": 3072,
    "text-embedding-3-small": 1536,
    "text-embedding-ada-002": 1536,
}

DEFAULT_MODEL = "text-embedding-3-small"


def _get_openai_embeddings(
    api_key: str | None = None,
    model: str = DEFAULT_MODEL,
) -> "OpenAIEmbeddings":
    """
    Get an OpenAIEmbeddings instance.

    Uses lazy import so the package imports without langchain-openai loaded.

    Raises:
        ImportError: If langchain-openai package is not installed
    """
    try:
        from langchain_openai import OpenAIEmbeddings
    except ImportError:
        raise ImportError(
            "OpenAI embedding provider requires the 'langchain-openai' package. "
            "Install with: pip install memory-kg"
        )

    if api_key:
        from pydantic import SecretStr
        return OpenAIEmbeddings(model=model, api_key=SecretStr(api_key))
    return OpenAIEmbeddings(model=model)


class OpenAIEmbedder(Embedder):
    """
    Text embedder backed by OpenAI's embedding models.

    Args:
        api_key: OpenAI API key. If None, uses OPENAI_API_KEY environment variable.
        model: Model to use (default: "text-embedding-3-small")
    """

    def __init__(
        self,
        api_key: str | None = None,
        model: str = DEFAULT_MODEL,
    ) -> None:
        self._api_key = api_key
        self._model = model
        self._dimensions = MODEL_DIMENSIONS.get(model, 1536)
        # Lazy initialization
        self._client: OpenAIEmbeddings | None = None

    def _get_client(self) -> "OpenAIEmbeddings":
        """Get or create the OpenAIEmbeddings client."""
        if self._client is None:
            self._client = _get_openai_embeddings(
                api_key=self._api_key,
                model=self._model,
            )
        return self._client

    @property
    def dimensions(self) -> int:
        return self._dimensions

    @property
    def model_name(self) -> str:
        return self._model

    def is_ready(self) -> bool:
        if self._api_key:
            return True
        import os

        return bool(os.getenv("OPENAI_API_KEY"))

    async def text_to_vector(self, text: str) -> list[float]:
        """
        Embed a single text.

        Args:
            text: Text to embed

        Returns:
            Embedding vector
        """
        start = time.perf_counter_ns()
        client = self._get_client()

        # LangChain's embed_query is synchronous, run in thread pool
        embedding = await asyncio.to_thread(client.embed_query, text)

        input_tokens = count_text_tokens(text, self._model)
        cost, pricing_found = estimate_embedding_cost_usd(self._model, input_tokens=input_tokens)
        record_usage(
            CostUsageRecord(
                provider="openai",
                model=self._model,
                operation="text_to_vector",
                stage=current_stage(),
                input_tokens=input_tokens,
                total_tokens=input_tokens,
                estimated_cost_usd=cost,
                latency_ms=int((time.perf_counter_ns() - start) // 1_000_000),
                estimated=True,
                metadata={"pricing_found": pricing_found},
            )
        )
        return embedding


class OpenAIEmbeddingService(EmbeddingService):
    """
    Registry exposing one OpenAIEmbedder as "default".

    Additional embedders can be registered under other names.
    """

    def __init__(
        self,
        api_key: str | None = None,
        model: str = DEFAULT_MODEL,
    ) -> None:
        self._embedders: dict[str, Embedder] = {
            "default": OpenAIEmbedder(api_key=api_key, model=model),
        }

    def register(self, name: str, embedder: Embedder) -> None:
        self._embedders[name] = embedder

    async def get(self, name: str) -> Embedder | None:
        return self._embedders.get(name)
