"""
Graph Types

Persisted rows of the knowledge graph and their insert payloads.

Storage Models:
    - Node: Entity node
    - Edge: Directed, typed relationship between two nodes
    - Source: One ingestion event (a remembered page, note or message)
    - SourceNode: Provenance link Source -> Node
    - SourceEdge: Provenance link Source -> Edge
    - PageGraph: Everything recorded for one source

Insert Models:
    - NewNode, NewEdge, NewSource: payloads without storage-assigned fields
"""

from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, Field


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# -----------------------------------------------------------------------------
# Insert Models
# -----------------------------------------------------------------------------


class NewNode(BaseModel):
    """Node insert payload."""

    node_type: str
    name: str
    summary: str | None = None
    attributes: dict[str, Any] = Field(default_factory=dict)
    name_embedding: list[float] | None = None


class NewEdge(BaseModel):
    """Edge insert payload."""

    source_id: str
    destination_id: str
    edge_type: str
    fact_text: str
    valid_at: datetime | None = None
    invalid_at: datetime | None = None
    recorded_at: datetime = Field(default_factory=_utcnow)
    attributes: dict[str, Any] = Field(default_factory=dict)
    fact_embedding: list[float] | None = None
    type_embedding: list[float] | None = None


class NewSource(BaseModel):
    """Source insert payload."""

    target_type: str
    target_id: str
    name: str
    metadata: dict[str, Any] = Field(default_factory=dict)
    reference_time: datetime = Field(default_factory=_utcnow)
    weight: float = 1.0


# -----------------------------------------------------------------------------
# Storage Models
# -----------------------------------------------------------------------------


class Node(NewNode):
    """
    A persisted entity node.

    Attributes:
        id: Storage-assigned uuid
        node_type: Upper-case type label (PERSON, ORGANIZATION, USER, ...)
        name: Canonical display name
        summary: Short description, if known
        attributes: Free-form key/value details
        name_embedding: Vector for the name, when an embedder was available
        created_at: Insert time (UTC)
    """

    id: str
    created_at: datetime = Field(default_factory=_utcnow)


class Edge(NewEdge):
    """
    A persisted, directed relationship.

    valid_at/invalid_at bound when the fact held; recorded_at is when it was
    learned.
    """

    id: str
    created_at: datetime = Field(default_factory=_utcnow)


class Source(NewSource):
    """A persisted ingestion event."""

    id: str
    created_at: datetime = Field(default_factory=_utcnow)


class SourceNode(BaseModel):
    """Provenance link from a source to a node it mentioned."""

    source_id: str
    node_id: str
    relation: str = "MENTIONED_IN"


class SourceEdge(BaseModel):
    """Provenance link from a source to an edge extracted from it."""

    source_id: str
    edge_id: str
    relation: str = "EXTRACTED_FROM"
    link_weight: float = 1.0


class PageGraph(BaseModel):
    """Nodes and edges linked to one source."""

    source: Source
    nodes: list[Node] = Field(default_factory=list)
    edges: list[Edge] = Field(default_factory=list)
