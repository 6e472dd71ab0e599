"""
Abstract Storage Interface

Defines the contract for graph storage backends.
"""

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from memory_kg.types import (
        Edge,
        NewEdge,
        NewNode,
        NewSource,
        Node,
        PageGraph,
        Source,
        SourceEdge,
        SourceNode,
    )


class GraphStorage(ABC):
    """
    Abstract interface for graph storage backends.

    Rows are created once and never mutated by the ingestion pipeline.

    Lifecycle:
        storage = DuckDBGraphStore(path)
        await storage.initialize()
        # ... operations ...
        await storage.close()

    Or using context manager:
        async with DuckDBGraphStore(path) as storage:
            await storage.create_node(node)
    """

    @abstractmethod
    async def initialize(self) -> None:
        """Initialize storage (open connection, create tables)."""
        ...

    @abstractmethod
    async def close(self) -> None:
        """Close storage and release resources."""
        ...

    async def __aenter__(self) -> "GraphStorage":
        await self.initialize()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    # -------------------------------------------------------------------------
    # Write Operations
    # -------------------------------------------------------------------------

    @abstractmethod
    async def create_source(self, source: "NewSource") -> "Source":
        """Insert a source and return the stored row."""
        ...

    @abstractmethod
    async def create_node(self, node: "NewNode") -> "Node":
        """Insert a node and return the stored row."""
        ...

    @abstractmethod
    async def create_edge(self, edge: "NewEdge") -> "Edge":
        """Insert an edge and return the stored row."""
        ...

    @abstractmethod
    async def link_source_node(self, link: "SourceNode") -> None:
        """Record that a source mentioned a node."""
        ...

    @abstractmethod
    async def link_source_edge(self, link: "SourceEdge") -> None:
        """Record that an edge was extracted from a source."""
        ...

    # -------------------------------------------------------------------------
    # Read Operations
    # -------------------------------------------------------------------------

    @abstractmethod
    async def get_source_by_target(self, target_type: str, target_id: str) -> "Source | None":
        """Most recent source for a target."""
        ...

    @abstractmethod
    async def list_sources(self, limit: int = 50) -> list["Source"]:
        """Most recent sources first."""
        ...

    @abstractmethod
    async def get_node(self, node_id: str) -> "Node | None":
        ...

    @abstractmethod
    async def get_nodes(self, node_ids: list[str]) -> list["Node"]:
        ...

    @abstractmethod
    async def existing_node_ids(self, node_ids: list[str]) -> set[str]:
        """Subset of node_ids that exist in storage."""
        ...

    @abstractmethod
    async def get_edges_for_nodes(self, node_ids: list[str], limit: int) -> list["Edge"]:
        """Edges with at least one endpoint in node_ids."""
        ...

    @abstractmethod
    async def get_edges_between(self, node_ids: list[str], limit: int) -> list["Edge"]:
        """Edges with both endpoints in node_ids."""
        ...

    @abstractmethod
    async def get_graph_for_source(self, source_id: str) -> "PageGraph | None":
        """Nodes and edges linked to a source."""
        ...

    @abstractmethod
    async def count(self) -> dict[str, int]:
        """Row counts per table."""
        ...

    # -------------------------------------------------------------------------
    # Search Operations
    # -------------------------------------------------------------------------

    @abstractmethod
    async def search_nodes_text(self, terms: list[str], limit: int) -> list["Node"]:
        """Case-insensitive substring match on name or summary."""
        ...

    @abstractmethod
    async def search_nodes_fuzzy(
        self, terms: list[str], threshold: float, limit: int
    ) -> list["Node"]:
        """Jaro-Winkler name similarity >= threshold, best first."""
        ...

    @abstractmethod
    async def search_nodes_vector(
        self, vector: list[float], threshold: float, limit: int
    ) -> list["Node"]:
        """Cosine similarity on name embeddings >= threshold, best first."""
        ...

    @abstractmethod
    async def search_edges_fuzzy(
        self, terms: list[str], threshold: float, limit: int
    ) -> list["Edge"]:
        """Jaro-Winkler similarity on "edge_type fact_text" >= threshold, best first."""
        ...

    @abstractmethod
    async def search_edges_vector(
        self, vector: list[float], threshold: float, limit: int
    ) -> list["Edge"]:
        """Cosine similarity on fact embeddings >= threshold, best first."""
        ...
