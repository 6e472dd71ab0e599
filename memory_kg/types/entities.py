"""
Entity Types

Entities are the named things (people, companies, projects, places) that
become nodes in the knowledge graph.

Extraction Models (used during ingestion):
    - ExtractedEntity: Raw entity produced by the extraction stage
    - ResolvedEntity: Entity after matching against stored nodes
"""

from typing import Any
from uuid import uuid4

from pydantic import BaseModel, Field, model_validator


def _new_uuid() -> str:
    return str(uuid4())


class ExtractedEntity(BaseModel):
    """
    An entity extracted from text, before resolution.

    The uuid is assigned at extraction time and never changes; facts refer
    to entities by it.
    """

    uuid: str = Field(default_factory=_new_uuid)
    name: str
    summary: str | None = None
    node_type: str = "OTHER"
    attributes: dict[str, Any] = Field(default_factory=dict)


class ResolvedEntity(ExtractedEntity):
    """
    An extracted entity after resolution.

    Attributes:
        is_existing: True when the entity matches a stored node
        existing_id: Id of the matched node (required when is_existing)
        final_name: Canonical name used for persistence and fact lookup
    """

    is_existing: bool = False
    existing_id: str | None = None
    final_name: str = ""

    @model_validator(mode="after")
    def _check_existing(self) -> "ResolvedEntity":
        if self.is_existing and not self.existing_id:
            raise ValueError("is_existing=True requires a non-empty existing_id")
        if not self.final_name:
            self.final_name = self.name
        return self

    @classmethod
    def as_new(cls, entity: ExtractedEntity) -> "ResolvedEntity":
        """Wrap an extracted entity as a new (unmatched) entity."""
        return cls(
            **entity.model_dump(include=set(ExtractedEntity.model_fields)),
            is_existing=False,
            final_name=entity.name,
        )

    @classmethod
    def as_existing(
        cls, entity: ExtractedEntity, existing_id: str, final_name: str
    ) -> "ResolvedEntity":
        """Wrap an extracted entity as a match for a stored node."""
        return cls(
            **entity.model_dump(include=set(ExtractedEntity.model_fields)),
            is_existing=True,
            existing_id=existing_id,
            final_name=final_name or entity.name,
        )
