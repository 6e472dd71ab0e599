"""
Fact Types

Facts are directed, typed relationships between two extracted entities.
They become edges in the knowledge graph.

Extraction Models (used during ingestion):
    - ExtractedFact: Raw fact referencing ExtractedEntity uuids
    - ResolvedFact: Fact after matching against stored edges
    - TemporalInfo: Validity window inferred for a fact
    - EnrichedFact: Resolved fact with temporal info attached
"""

from typing import Any
from uuid import uuid4

from pydantic import BaseModel, Field, model_validator


def _new_uuid() -> str:
    return str(uuid4())


class ExtractedFact(BaseModel):
    """
    A single relationship extracted from text.

    source_entity_id and destination_entity_id are ExtractedEntity uuids.
    """

    uuid: str = Field(default_factory=_new_uuid)
    source_entity_id: str
    destination_entity_id: str
    relation_type: str = "RELATED_TO"
    fact_text: str
    attributes: dict[str, Any] = Field(default_factory=dict)


class ResolvedFact(ExtractedFact):
    """An extracted fact after resolution against stored edges."""

    is_existing: bool = False
    existing_id: str | None = None

    @model_validator(mode="after")
    def _check_existing(self) -> "ResolvedFact":
        if self.is_existing and not self.existing_id:
            raise ValueError("is_existing=True requires a non-empty existing_id")
        return self

    @classmethod
    def as_new(cls, fact: ExtractedFact) -> "ResolvedFact":
        """Wrap an extracted fact as a new (unmatched) fact."""
        return cls(**fact.model_dump(include=set(ExtractedFact.model_fields)), is_existing=False)

    @classmethod
    def as_existing(cls, fact: ExtractedFact, existing_id: str) -> "ResolvedFact":
        """Wrap an extracted fact as a duplicate of a stored edge."""
        return cls(
            **fact.model_dump(include=set(ExtractedFact.model_fields)),
            is_existing=True,
            existing_id=existing_id,
        )


class TemporalInfo(BaseModel):
    """When a fact became true and when it stopped being true (ISO-8601)."""

    valid_at: str | None = None
    invalid_at: str | None = None


class EnrichedFact(ResolvedFact):
    """A resolved fact with temporal information."""

    temporal: TemporalInfo = Field(default_factory=TemporalInfo)

    @classmethod
    def from_resolved(
        cls, fact: ResolvedFact, temporal: TemporalInfo | None = None
    ) -> "EnrichedFact":
        return cls(
            **fact.model_dump(include=set(ResolvedFact.model_fields)),
            temporal=temporal or TemporalInfo(),
        )
