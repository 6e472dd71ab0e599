"""
Pipeline State

The accumulated state passed through the ingestion pipeline, and the rules
used to merge each stage's partial patch into it.

Every stage returns a StatePatch (a plain dict of field -> value). Fields
listed as "append" in STATE_MERGE_RULES are concatenated onto the current
value; every other field replaces it.
"""

from typing import Any, Literal

from pydantic import BaseModel, Field

from memory_kg.types.entities import ExtractedEntity, ResolvedEntity
from memory_kg.types.facts import EnrichedFact, ExtractedFact, ResolvedFact
from memory_kg.types.graph import Edge, Node, Source
from memory_kg.types.results import (
    Action,
    KnowledgeGraphInput,
    KnowledgeGraphResult,
    PERSONAL_NOTE_SOURCE_TYPE,
)

StatePatch = dict[str, Any]

MergeRule = Literal["append", "replace"]

PROCESSING_STAGES = (
    "entity_extraction",
    "entity_resolution",
    "fact_extraction",
    "fact_resolution",
    "temporal_extraction",
    "database_operations",
    "completed",
)


class IngestionState(BaseModel):
    """Accumulated state for one ingestion."""

    # Input
    content: str = ""
    title: str = ""
    url: str = ""
    page_id: str = ""
    reference_timestamp: str = ""
    metadata: dict[str, Any] | None = None
    previous_messages: str | None = None
    current_message: str = ""
    source_type: str = "webpage"

    # Extraction and resolution results
    extracted_entities: list[ExtractedEntity] = Field(default_factory=list)
    resolved_entities: list[ResolvedEntity] = Field(default_factory=list)
    extracted_facts: list[ExtractedFact] = Field(default_factory=list)
    resolved_facts: list[ResolvedFact] = Field(default_factory=list)
    enriched_facts: list[EnrichedFact] = Field(default_factory=list)

    # Candidates loaded from storage
    existing_nodes: list[Node] = Field(default_factory=list)
    existing_edges: list[Edge] = Field(default_factory=list)

    # Database operations
    created_nodes: list[Node] = Field(default_factory=list)
    created_edges: list[Edge] = Field(default_factory=list)
    created_source: Source | None = None

    # Status
    processing_stage: str = "entity_extraction"
    final_message: str = ""
    actions: list[Action] = Field(default_factory=list)
    errors: list[str] = Field(default_factory=list)
    cancelled: bool = False

    @classmethod
    def from_input(cls, data: KnowledgeGraphInput) -> "IngestionState":
        return cls(**data.model_dump())

    @property
    def is_personal_note(self) -> bool:
        return self.source_type == PERSONAL_NOTE_SOURCE_TYPE

    def to_result(self) -> KnowledgeGraphResult:
        return KnowledgeGraphResult(
            created_nodes=list(self.created_nodes),
            created_edges=list(self.created_edges),
            created_source=self.created_source,
            final_message=self.final_message,
            actions=list(self.actions),
            errors=list(self.errors),
            processing_stage=self.processing_stage,
            cancelled=self.cancelled,
        )


STATE_MERGE_RULES: dict[str, MergeRule] = {
    name: "replace" for name in IngestionState.model_fields
}
STATE_MERGE_RULES.update(
    {
        "created_nodes": "append",
        "created_edges": "append",
        "errors": "append",
        "actions": "append",
    }
)


def merge_patch(state: IngestionState, patch: StatePatch) -> IngestionState:
    """
    Merge a stage patch into the state, returning a new state.

    Raises:
        KeyError: If the patch names a field with no merge rule
    """
    updates: dict[str, Any] = {}
    for key, value in patch.items():
        rule = STATE_MERGE_RULES.get(key)
        if rule is None:
            raise KeyError(f"Unknown state field in patch: {key}")
        if rule == "append":
            updates[key] = [*getattr(state, key), *(value or [])]
        else:
            updates[key] = value
    return state.model_copy(update=updates)
