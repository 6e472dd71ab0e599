"""
Result Types

Types for ingestion input/output, progress reporting, and cost telemetry.

API Models:
    - KnowledgeGraphInput: One ingestion request
    - KnowledgeGraphResult: Summary of an ingestion
    - Action: Human-readable log entry produced by a stage
    - ConversionProgress: Progress snapshot reported after each stage

Telemetry Models:
    - CostUsageRecord: One provider call
    - StageCostBreakdown / CostBreakdown / CostDebugReport: Aggregates
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, model_validator

from memory_kg.types.graph import Edge, Node, Source

PERSONAL_NOTE_SOURCE_TYPE = "user_input"


def _utcnow_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# -----------------------------------------------------------------------------
# API Models
# -----------------------------------------------------------------------------


class SourceType(str, Enum):
    """Known kinds of captured text."""

    WEBPAGE = "webpage"
    SELECTION = "selection"
    USER_INPUT = "user_input"
    RAW_TEXT = "raw_text"


class Action(BaseModel):
    """A human-readable record of something a stage did."""

    id: str = Field(default_factory=lambda: str(uuid4()))
    name: str
    description: str = ""
    metadata: dict[str, Any] = Field(default_factory=dict)


class KnowledgeGraphInput(BaseModel):
    """
    One ingestion request.

    Attributes:
        content: Raw captured text
        title: Page or note title (required for persistence)
        url: Origin URL, if any
        page_id: Caller's identifier for the captured item (required for persistence)
        reference_timestamp: ISO-8601 time relative dates are resolved against
        metadata: Extra key/values stored on the Source
        previous_messages: Prior conversation context, if any
        current_message: The text to extract from; built from title/content when empty
        source_type: webpage, selection, user_input or raw_text
    """

    content: str = ""
    title: str = ""
    url: str = ""
    page_id: str = ""
    reference_timestamp: str = Field(default_factory=_utcnow_iso)
    metadata: dict[str, Any] | None = None
    previous_messages: str | None = None
    current_message: str = ""
    source_type: str = SourceType.WEBPAGE.value

    @model_validator(mode="after")
    def _default_current_message(self) -> "KnowledgeGraphInput":
        if not self.current_message:
            self.current_message = f"Title: {self.title}\n\nContent:\n{self.content}"
        return self

    @property
    def is_personal_note(self) -> bool:
        return self.source_type == PERSONAL_NOTE_SOURCE_TYPE


class KnowledgeGraphResult(BaseModel):
    """
    Summary of one ingestion.

    Attributes:
        created_nodes: Nodes inserted by this ingestion
        created_edges: Edges inserted by this ingestion
        created_source: The Source row, when persistence got that far
        final_message: Human-readable outcome (always set)
        actions: Log of what each stage did
        errors: Non-fatal errors collected along the way
        processing_stage: Last stage reached
        cancelled: True when the ingestion was cancelled
        cost_debug: Usage report when cost debugging was requested
    """

    created_nodes: list[Node] = Field(default_factory=list)
    created_edges: list[Edge] = Field(default_factory=list)
    created_source: Source | None = None
    final_message: str = ""
    actions: list[Action] = Field(default_factory=list)
    errors: list[str] = Field(default_factory=list)
    processing_stage: str = "entity_extraction"
    cancelled: bool = False
    cost_debug: "CostDebugReport | None" = None

    @property
    def success(self) -> bool:
        return self.created_source is not None and not self.cancelled


class ConversionStatus(str, Enum):
    """Coarse status reported through progress callbacks."""

    PENDING = "pending"
    LOADING_EXISTING_DATA = "loading_existing_data"
    EXTRACTING_ENTITIES = "extracting_entities"
    RESOLVING_ENTITIES = "resolving_entities"
    EXTRACTING_FACTS = "extracting_facts"
    RESOLVING_FACTS = "resolving_facts"
    EXTRACTING_TEMPORAL = "extracting_temporal"
    SAVING_TO_DATABASE = "saving_to_database"
    COMPLETED = "completed"
    FAILED = "failed"


class ConversionProgress(BaseModel):
    """Progress snapshot for one ingestion."""

    page_id: str
    page_title: str
    status: ConversionStatus
    stage: str
    progress: int = Field(ge=0, le=100)
    error: str | None = None


# -----------------------------------------------------------------------------
# Telemetry Models
# -----------------------------------------------------------------------------


class CostUsageRecord(BaseModel):
    """Usage for one provider call."""

    model_config = ConfigDict(protected_namespaces=())

    provider: str
    model: str
    operation: str
    stage: str = "unknown"
    input_tokens: int = 0
    output_tokens: int = 0
    total_tokens: int = 0
    estimated_cost_usd: float = 0.0
    latency_ms: int = 0
    estimated: bool = False
    metadata: dict[str, Any] = Field(default_factory=dict)


class StageCostBreakdown(BaseModel):
    """Aggregated usage for one pipeline stage."""

    stage: str
    calls: int = 0
    input_tokens: int = 0
    output_tokens: int = 0
    total_tokens: int = 0
    estimated_cost_usd: float = 0.0
    total_latency_ms: int = 0


class CostBreakdown(BaseModel):
    """Aggregated usage across all stages."""

    total_calls: int = 0
    total_input_tokens: int = 0
    total_output_tokens: int = 0
    total_tokens: int = 0
    total_estimated_cost_usd: float = 0.0
    total_latency_ms: int = 0
    by_stage: list[StageCostBreakdown] = Field(default_factory=list)


class CostDebugReport(BaseModel):
    """Usage report attached to a result when cost debugging is enabled."""

    enabled: bool = False
    pricing_version: str = ""
    breakdown: CostBreakdown = Field(default_factory=CostBreakdown)
    warnings: list[str] = Field(default_factory=list)


KnowledgeGraphResult.model_rebuild()
