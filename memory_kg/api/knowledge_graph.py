"""
KnowledgeGraph - Primary Entry Point

The KnowledgeGraph class owns a DuckDB graph store plus the LLM and
embedding providers, and runs the ingestion pipeline over captured text.

A knowledge graph is a single DuckDB file (or ":memory:") holding:
    - sources: One row per remembered item
    - nodes: Entities (name, type, summary, embedding)
    - edges: Typed facts between nodes, with validity windows
    - source_nodes / source_edges: Provenance links

Example:
    >>> async with KnowledgeGraph("./memory.duckdb") as kg:
    ...     result = await kg.remember("Alice joined Acme Corp in 2020.", title="Notes")
    ...     graph = await kg.get_graph_for_page(result.created_source.target_id)

    # Or with sync API
    >>> kg = KnowledgeGraph("./memory.duckdb")
    >>> result = kg.remember_sync("Alice joined Acme Corp in 2020.", title="Notes")
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import TYPE_CHECKING, Any, Callable
from uuid import uuid4

if TYPE_CHECKING:
    from memory_kg.config.settings import KGConfig
    from memory_kg.ingestion.pipeline import KnowledgeGraphPipeline
    from memory_kg.providers.base import EmbeddingService, LLMProvider
    from memory_kg.storage.duckdb import DuckDBGraphStore
    from memory_kg.types.graph import PageGraph
    from memory_kg.types.results import ConversionProgress, KnowledgeGraphResult

logger = logging.getLogger(__name__)


class KnowledgeGraph:
    """
    A personal knowledge graph backed by DuckDB.

    Args:
        path: Database file, or ":memory:". Defaults to config.db_path.
        config: Optional configuration. Uses defaults if not provided.
        llm: Chat provider. Created from config when omitted.
        embeddings: Embedding service. Created from config when omitted.
    """

    def __init__(
        self,
        path: str | Path | None = None,
        config: "KGConfig | None" = None,
        llm: "LLMProvider | None" = None,
        embeddings: "EmbeddingService | None" = None,
    ) -> None:
        # Lazy import to avoid circular imports
        if config is None:
            from memory_kg.config import KGConfig
            config = KGConfig()
        self._config = config
        self._path = str(path) if path is not None else config.db_path

        # Lazy-initialized components
        self._storage: "DuckDBGraphStore | None" = None
        self._llm = llm
        self._embeddings = embeddings
        self._pipeline: "KnowledgeGraphPipeline | None" = None
        self._initialized = False

    async def _ensure_initialized(self) -> None:
        """Lazy initialization of storage and providers on first use."""
        if self._initialized:
            return

        from memory_kg.ingestion.pipeline import KnowledgeGraphPipeline
        from memory_kg.storage.duckdb import DuckDBGraphStore

        self._storage = DuckDBGraphStore(self._path)
        await self._storage.initialize()

        if self._llm is None:
            self._llm = self._create_llm_provider()
        if self._embeddings is None:
            self._embeddings = self._create_embedding_service()

        from memory_kg.config.pricing import unpriced_models

        for model in unpriced_models(self._config):
            logger.warning(f"No rate for configured model '{model}'; cost estimates will be 0.0")

        self._pipeline = KnowledgeGraphPipeline(
            self._llm,
            self._storage,
            self._embeddings,
            self._config,
        )
        self._initialized = True

    def _create_llm_provider(self) -> "LLMProvider":
        """Create LLM provider based on config."""
        provider = self._config.llm_provider.lower()

        if provider == "openai":
            from memory_kg.providers.llm.openai import OpenAILLMProvider
            return OpenAILLMProvider(
                api_key=self._config.openai_api_key,
                model=self._config.llm_model,
                max_model_tokens=self._config.llm_max_model_tokens,
            )
        else:
            raise ValueError(f"Unknown LLM provider: {provider}")

    def _create_embedding_service(self) -> "EmbeddingService":
        """Create embedding service based on config."""
        provider = self._config.embedding_provider.lower()

        if provider == "openai":
            from memory_kg.providers.embedding.openai import OpenAIEmbeddingService
            return OpenAIEmbeddingService(
                api_key=self._config.openai_api_key,
                model=self._config.embedding_model,
            )
        else:
            raise ValueError(f"Unknown embedding provider: {provider}")

    # === Lifecycle ===

    async def __aenter__(self) -> "KnowledgeGraph":
        """Async context manager entry."""
        await self._ensure_initialized()
        return self

    async def __aexit__(self, *args: Any) -> None:
        """Async context manager exit."""
        await self.close()

    async def close(self) -> None:
        """Release the database connection."""
        if self._storage is not None:
            await self._storage.close()
            self._storage = None
        self._pipeline = None
        self._initialized = False

    # === Properties ===

    @property
    def path(self) -> str:
        """Database file path, or ":memory:"."""
        return self._path

    @property
    def config(self) -> "KGConfig":
        """Current configuration."""
        return self._config

    @property
    def is_initialized(self) -> bool:
        """Whether storage and providers have been set up."""
        return self._initialized

    # === Ingestion ===

    async def remember(
        self,
        content: str,
        title: str,
        page_id: str | None = None,
        url: str = "",
        source_type: str = "webpage",
        metadata: dict[str, Any] | None = None,
        previous_messages: str | None = None,
        reference_timestamp: str | None = None,
        cancel_event: asyncio.Event | None = None,
        on_progress: Callable[["ConversionProgress"], None] | None = None,
        cost_debug: bool = False,
    ) -> "KnowledgeGraphResult":
        """
        Extract entities and facts from content and add them to the graph.

        Args:
            content: Captured text
            title: Page or note title
            page_id: Identifier for the captured item (random UUID when omitted)
            url: Origin URL, if any
            source_type: webpage, selection, user_input or raw_text
            metadata: Extra key/values stored on the source
            previous_messages: Prior conversation context
            reference_timestamp: ISO-8601 "now" for relative dates (defaults to now)
            cancel_event: Set to stop before the next LLM stage
            on_progress: Called with a ConversionProgress after each stage
            cost_debug: Attach a per-stage usage report to the result

        Returns:
            KnowledgeGraphResult with created nodes/edges and a final message
        """
        await self._ensure_initialized()
        assert self._pipeline is not None

        from memory_kg.types.results import KnowledgeGraphInput
        from memory_kg.utils.cost_telemetry import CostCollector, telemetry_collector

        fields: dict[str, Any] = {
            "content": content,
            "title": title,
            "page_id": page_id or str(uuid4()),
            "url": url,
            "source_type": source_type,
            "metadata": metadata,
            "previous_messages": previous_messages,
        }
        if reference_timestamp:
            fields["reference_timestamp"] = reference_timestamp
        data = KnowledgeGraphInput(**fields)

        collector = (
            CostCollector(warn_threshold_usd=self._config.cost_debug_warn_threshold_usd)
            if cost_debug
            else None
        )
        with telemetry_collector(collector):
            result = await self._pipeline.run(data, cancel_event=cancel_event, on_progress=on_progress)

        if collector is not None:
            result.cost_debug = collector.summary()
            for warning in result.cost_debug.warnings:
                logger.warning(warning)
        return result

    def remember_sync(self, content: str, title: str, **kwargs: Any) -> "KnowledgeGraphResult":
        """Sync wrapper for remember."""
        return asyncio.run(self._run_then_close(self.remember(content, title, **kwargs)))

    async def _run_then_close(self, coro: Any) -> Any:
        # The store's asyncio.Lock is bound to the loop that asyncio.run creates
        try:
            return await coro
        finally:
            await self.close()

    # === Navigation ===

    async def get_graph_for_page(self, page_id: str) -> "PageGraph | None":
        """Nodes and edges linked to the most recent source for page_id."""
        await self._ensure_initialized()
        assert self._storage is not None

        from memory_kg.ingestion.assembly.assembler import SOURCE_TARGET_TYPE

        source = await self._storage.get_source_by_target(SOURCE_TARGET_TYPE, page_id)
        if source is None:
            return None
        return await self._storage.get_graph_for_source(source.id)

    # === Statistics ===

    async def stats(self) -> dict[str, int]:
        """Row counts per table."""
        await self._ensure_initialized()
        assert self._storage is not None
        return await self._storage.count()

    def stats_sync(self) -> dict[str, int]:
        """Sync wrapper for stats."""
        return asyncio.run(self._run_then_close(self.stats()))
