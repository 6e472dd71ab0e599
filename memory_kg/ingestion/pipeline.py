"""
Ingestion Pipeline

Orchestrates the stages that turn one captured text into graph updates.

Stage order:
    1. extract_entities   - LLM: named entities in the text
    2. load_entities      - storage: candidate nodes for resolution
    3. resolve_entities   - exact match, then LLM, against candidate nodes
    4. extract_facts      - LLM: relationships between resolved entities
    5. load_facts         - storage: candidate edges for resolution
    6. resolve_facts      - exact match, then LLM, against candidate edges
    7. extract_temporal   - LLM: validity windows for new facts
    8. save_to_database   - persist source, new nodes and new edges

Each stage takes the accumulated state and returns a partial patch that is
merged with explicit per-field rules (see memory_kg.types.state). A stage
that raises is recorded as an error and the pipeline moves on.

Example:
    >>> pipeline = KnowledgeGraphPipeline(llm, storage, embeddings)
    >>> result = await pipeline.run(KnowledgeGraphInput(content=..., title=..., page_id=...))
    >>> print(result.final_message)
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING

from memory_kg.config import KGConfig
from memory_kg.ingestion.assembly.assembler import FAILURE_MESSAGE, GraphAssembler
from memory_kg.ingestion.candidates import load_entities, load_facts
from memory_kg.ingestion.context import is_cancelled
from memory_kg.ingestion.extraction.entities import extract_entities
from memory_kg.ingestion.extraction.facts import extract_facts
from memory_kg.ingestion.resolution.entity_resolution import resolve_entities
from memory_kg.ingestion.resolution.fact_resolution import resolve_facts
from memory_kg.ingestion.temporal import extract_temporal
from memory_kg.types.results import (
    Action,
    ConversionProgress,
    ConversionStatus,
    KnowledgeGraphInput,
    KnowledgeGraphResult,
)
from memory_kg.types.state import IngestionState, StatePatch, merge_patch
from memory_kg.utils.cost_telemetry import telemetry_stage

if TYPE_CHECKING:
    from memory_kg.providers.base import EmbeddingService, LLMProvider
    from memory_kg.storage.base import GraphStorage

logger = logging.getLogger(__name__)

CANCELLED_ERROR = "Ingestion cancelled"

StageFn = Callable[[IngestionState, "asyncio.Event | None"], Awaitable[StatePatch]]
ProgressCallback = Callable[[ConversionProgress], None]


@dataclass(frozen=True)
class StageInfo:
    """Static description of one pipeline stage."""

    name: str
    label: str
    uses_llm: bool
    next_processing_stage: str
    status: ConversionStatus
    progress: int
    progress_message: str


STAGES: tuple[StageInfo, ...] = (
    StageInfo(
        "extract_entities", "Entity Extraction", True, "entity_resolution",
        ConversionStatus.EXTRACTING_ENTITIES, 30, "Extracting entities...",
    ),
    StageInfo(
        "load_entities", "Load Entities", False, "entity_resolution",
        ConversionStatus.LOADING_EXISTING_DATA, 25, "Loading related entities...",
    ),
    StageInfo(
        "resolve_entities", "Entity Resolution", True, "fact_extraction",
        ConversionStatus.RESOLVING_ENTITIES, 45, "Resolving entities...",
    ),
    StageInfo(
        "extract_facts", "Fact Extraction", True, "fact_resolution",
        ConversionStatus.EXTRACTING_FACTS, 60, "Extracting facts...",
    ),
    StageInfo(
        "load_facts", "Load Facts", False, "fact_resolution",
        ConversionStatus.LOADING_EXISTING_DATA, 70, "Loading related facts...",
    ),
    StageInfo(
        "resolve_facts", "Fact Resolution", True, "temporal_extraction",
        ConversionStatus.RESOLVING_FACTS, 75, "Resolving facts...",
    ),
    StageInfo(
        "extract_temporal", "Temporal Extraction", True, "database_operations",
        ConversionStatus.EXTRACTING_TEMPORAL, 85, "Extracting temporal information...",
    ),
    StageInfo(
        "save_to_database", "Database Save", False, "completed",
        ConversionStatus.COMPLETED, 100, "Completed successfully",
    ),
)
STAGE_NAMES = tuple(stage.name for stage in STAGES)


class KnowledgeGraphPipeline:
    """
    Runs the ingestion stages over one input.

    Args:
        llm: Chat provider for the LLM stages
        storage: Graph storage (initialized by the caller)
        embeddings: Optional embedding service for vectors and vector search
        config: Limits, thresholds and owner name (defaults to KGConfig())
    """

    def __init__(
        self,
        llm: "LLMProvider",
        storage: "GraphStorage",
        embeddings: "EmbeddingService | None" = None,
        config: KGConfig | None = None,
    ):
        self.llm = llm
        self.storage = storage
        self.embeddings = embeddings
        self.config = config or KGConfig()
        self.assembler = GraphAssembler(storage, embeddings)
        self._stage_fns: dict[str, StageFn] = {
            "extract_entities": lambda s, c: extract_entities(s, self.llm, self.config, c),
            "load_entities": lambda s, c: load_entities(s, self.storage, self.embeddings, self.config),
            "resolve_entities": lambda s, c: resolve_entities(s, self.llm, self.config, c),
            "extract_facts": lambda s, c: extract_facts(s, self.llm, self.config, c),
            "load_facts": lambda s, c: load_facts(s, self.storage, self.embeddings, self.config),
            "resolve_facts": lambda s, c: resolve_facts(s, self.llm, self.config, c),
            "extract_temporal": lambda s, c: extract_temporal(s, self.llm, self.config, c),
            "save_to_database": lambda s, c: self.assembler.persist(s),
        }

    async def _run_stage(
        self,
        stage: StageInfo,
        state: IngestionState,
        cancel_event: asyncio.Event | None,
    ) -> StatePatch:
        """Run one stage, turning an unexpected exception into an error patch."""
        logger.info(f"Stage {stage.name} starting")
        try:
            with telemetry_stage(stage.name):
                patch = await self._stage_fns[stage.name](state, cancel_event)
        except Exception as e:
            message = str(e) or f"{stage.label} failed"
            logger.error(f"Stage {stage.name} failed: {message}", exc_info=True)
            return {
                "errors": [message],
                "actions": [Action(name=f"{stage.label} Failed", description=message)],
            }
        return dict(patch)

    async def stream(
        self,
        data: KnowledgeGraphInput,
        cancel_event: asyncio.Event | None = None,
    ) -> AsyncIterator[tuple[str, StatePatch, IngestionState]]:
        """
        Run the pipeline, yielding (stage_name, patch, state) after each stage.

        Once cancel_event is set the remaining LLM and loading stages are
        skipped (not yielded); save_to_database always runs.
        """
        state = IngestionState.from_input(data)
        logger.info(
            f"Ingesting {state.title!r} (page {state.page_id!r}, source type {state.source_type})"
        )

        for stage in STAGES:
            if stage.name != "save_to_database" and is_cancelled(cancel_event):
                if not state.cancelled:
                    logger.info(f"Ingestion cancelled before {stage.name}")
                    state = merge_patch(state, {"cancelled": True, "errors": [CANCELLED_ERROR]})
                continue

            patch = await self._run_stage(stage, state, cancel_event)

            if stage.name == "save_to_database":
                final_message = patch.get("final_message") or state.final_message
                patch["final_message"] = final_message or FAILURE_MESSAGE
                patch["processing_stage"] = (
                    "completed" if patch.get("created_source") is not None else "database_operations"
                )
                if is_cancelled(cancel_event) and not state.cancelled:
                    patch["cancelled"] = True
                    patch["errors"] = [*patch.get("errors", []), CANCELLED_ERROR]
            else:
                patch.setdefault("processing_stage", stage.next_processing_stage)

            state = merge_patch(state, patch)
            yield stage.name, patch, state

    async def run(
        self,
        data: KnowledgeGraphInput,
        cancel_event: asyncio.Event | None = None,
        on_progress: ProgressCallback | None = None,
    ) -> KnowledgeGraphResult:
        """
        Run the whole pipeline and return its result.

        Args:
            data: Ingestion input
            cancel_event: Set to cancel; persistence still runs
            on_progress: Called with a ConversionProgress after each stage
        """

        def report(status: ConversionStatus, stage: str, progress: int, error: str | None = None) -> None:
            if on_progress is None:
                return
            on_progress(
                ConversionProgress(
                    page_id=data.page_id,
                    page_title=data.title,
                    status=status,
                    stage=stage,
                    progress=progress,
                    error=error,
                )
            )

        report(ConversionStatus.PENDING, "Initializing...", 0)

        state = IngestionState.from_input(data)
        by_name = {stage.name: stage for stage in STAGES}
        async for stage_name, _patch, state in self.stream(data, cancel_event):
            info = by_name[stage_name]
            if stage_name == "save_to_database" and state.created_source is None:
                report(ConversionStatus.FAILED, "Failed", info.progress, state.final_message)
            else:
                report(info.status, info.progress_message, info.progress)

        result = state.to_result()
        logger.info(
            f"Ingestion finished: {len(result.created_nodes)} nodes, "
            f"{len(result.created_edges)} edges, {len(result.errors)} error(s)"
        )
        return result
