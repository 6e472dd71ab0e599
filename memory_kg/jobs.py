"""
Job Registry

Maps a job kind to the code that runs it. A host (worker, queue consumer,
CLI) hands the registry a kind, a JSON-like payload and the services it
owns; the registry validates the payload, runs the handler and validates
the result.

Collaborators are passed in through JobServices on every call. The
registry holds no providers or storage of its own.

Example:
    >>> registry = default_registry()
    >>> services = JobServices(llm=llm, storage=store, embeddings=embeddings)
    >>> result = await registry.run("knowledge-graph", {"content": "...", "title": "Notes", "page_id": "p1"}, services)
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, ValidationError

from memory_kg.config import KGConfig
from memory_kg.errors import JobValidationError, UnknownJobKindError
from memory_kg.types.results import ConversionProgress, KnowledgeGraphInput, KnowledgeGraphResult

if TYPE_CHECKING:
    from memory_kg.providers.base import EmbeddingService, LLMProvider
    from memory_kg.storage.base import GraphStorage

logger = logging.getLogger(__name__)

KNOWLEDGE_GRAPH_JOB = "knowledge-graph"

JobHandler = Callable[[BaseModel], Awaitable[Any]]


@dataclass
class JobServices:
    """
    Collaborators injected into job handlers.

    Attributes:
        llm: Chat provider
        storage: Initialized graph storage
        embeddings: Optional embedding service
        config: Pipeline configuration
        cancel_event: Set to cancel a running job
        on_progress: Progress callback for long-running jobs
    """

    llm: "LLMProvider"
    storage: "GraphStorage"
    embeddings: "EmbeddingService | None" = None
    config: KGConfig = field(default_factory=KGConfig)
    cancel_event: asyncio.Event | None = None
    on_progress: Callable[[ConversionProgress], None] | None = None


@dataclass(frozen=True)
class JobSpec:
    """
    One registered job kind.

    Attributes:
        kind: Registry key (e.g. "knowledge-graph")
        input_model: Model the payload is validated into
        output_model: Model the handler result is validated into
        factory: Builds a handler bound to the given services
    """

    kind: str
    input_model: type[BaseModel]
    output_model: type[BaseModel]
    factory: Callable[[JobServices], JobHandler]


class JobRegistry:
    """Registry of job kinds."""

    def __init__(self) -> None:
        self._specs: dict[str, JobSpec] = {}

    def register(self, spec: JobSpec) -> None:
        """
        Register a job kind.

        Raises:
            ValueError: If the kind is already registered
        """
        if spec.kind in self._specs:
            raise ValueError(f"Job kind already registered: {spec.kind}")
        self._specs[spec.kind] = spec
        logger.debug(f"Registered job kind {spec.kind!r}")

    def get(self, kind: str) -> JobSpec:
        spec = self._specs.get(kind)
        if spec is None:
            raise UnknownJobKindError(f"No handler registered for job kind: {kind}")
        return spec

    @property
    def kinds(self) -> list[str]:
        return list(self._specs)

    def __contains__(self, kind: object) -> bool:
        return kind in self._specs

    def create(self, kind: str, services: JobServices) -> JobHandler:
        """Build the handler for kind, bound to services."""
        return self.get(kind).factory(services)

    async def run(
        self,
        kind: str,
        payload: BaseModel | dict[str, Any],
        services: JobServices,
    ) -> BaseModel:
        """
        Validate payload, run the handler and validate its result.

        Raises:
            UnknownJobKindError: If kind is not registered
            JobValidationError: If the payload or the result does not validate
        """
        spec = self.get(kind)
        raw = payload.model_dump() if isinstance(payload, BaseModel) else payload
        try:
            job_input = spec.input_model.model_validate(raw)
        except ValidationError as e:
            raise JobValidationError(f"Invalid payload for job {kind!r}: {e}") from e

        handler = spec.factory(services)
        logger.info(f"Running job {kind!r}")
        output = await handler(job_input)

        raw_output = output.model_dump() if isinstance(output, BaseModel) else output
        try:
            return spec.output_model.model_validate(raw_output)
        except ValidationError as e:
            raise JobValidationError(f"Invalid result from job {kind!r}: {e}") from e


def _knowledge_graph_factory(services: JobServices) -> JobHandler:
    from memory_kg.ingestion.pipeline import KnowledgeGraphPipeline

    pipeline = KnowledgeGraphPipeline(
        services.llm,
        services.storage,
        services.embeddings,
        services.config,
    )

    async def handle(job_input: BaseModel) -> KnowledgeGraphResult:
        if not isinstance(job_input, KnowledgeGraphInput):
            raise JobValidationError(
                f"Job {KNOWLEDGE_GRAPH_JOB!r} expects KnowledgeGraphInput, got {type(job_input).__name__}"
            )
        return await pipeline.run(
            job_input,
            cancel_event=services.cancel_event,
            on_progress=services.on_progress,
        )

    return handle


def default_registry() -> JobRegistry:
    """A registry with the built-in job kinds."""
    registry = JobRegistry()
    registry.register(
        JobSpec(
            kind=KNOWLEDGE_GRAPH_JOB,
            input_model=KnowledgeGraphInput,
            output_model=KnowledgeGraphResult,
            factory=_knowledge_graph_factory,
        )
    )
    return registry
