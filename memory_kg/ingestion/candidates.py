"""
Candidate Loading

Loads the bounded slice of the stored graph each resolution stage compares
against, so resolution never has to look at the whole graph.

Search mix per stage (limits from KGConfig):
    - Substring search: 60% of the limit
    - Fuzzy search (Jaro-Winkler): 40% of the limit
    - Vector search: only when the first two return less than half the
      limit, filling up to min(remaining room, 40% of the limit)

Results are de-duplicated by id, keeping the first occurrence
(substring, then fuzzy, then vector).
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Sequence
from typing import TYPE_CHECKING, TypeVar

from memory_kg.types.graph import Edge, Node
from memory_kg.types.results import Action
from memory_kg.types.state import IngestionState, StatePatch

if TYPE_CHECKING:
    from memory_kg.config import KGConfig
    from memory_kg.providers.base import Embedder, EmbeddingService
    from memory_kg.storage.base import GraphStorage

logger = logging.getLogger(__name__)

T = TypeVar("T")

TEXT_SHARE = 0.6
FUZZY_SHARE = 0.4
VECTOR_SHARE = 0.4
VECTOR_FALLBACK_RATIO = 0.5
UNRESOLVED_NODE_LIMIT = 200


def combine_unique(
    groups: Iterable[Sequence[T]],
    key: Callable[[T], str],
    limit: int,
) -> list[T]:
    """Concatenate groups, dropping repeated keys, capped at limit."""
    seen: set[str] = set()
    combined: list[T] = []
    for group in groups:
        for item in group:
            item_key = key(item)
            if item_key in seen:
                continue
            seen.add(item_key)
            combined.append(item)
            if len(combined) >= limit:
                return combined
    return combined


async def _ready_embedder(embeddings: "EmbeddingService | None") -> "Embedder | None":
    if embeddings is None:
        return None
    embedder = await embeddings.get("default")
    if embedder is None or not embedder.is_ready():
        return None
    return embedder


def _vector_limit(total_limit: int, found: int) -> int:
    """Room for vector results, 0 when substring + fuzzy found enough."""
    if found >= total_limit * VECTOR_FALLBACK_RATIO:
        return 0
    return min(total_limit - found, int(total_limit * VECTOR_SHARE))


async def _vector_nodes(
    embedder: "Embedder",
    storage: "GraphStorage",
    terms: Sequence[str],
    threshold: float,
    limit: int,
) -> list[Node]:
    results: list[Node] = []
    for term in terms:
        vector = await embedder.text_to_vector(term)
        results.extend(await storage.search_nodes_vector(vector, threshold, limit))
    return combine_unique([results], lambda node: node.id, limit)


async def _vector_edges(
    embedder: "Embedder",
    storage: "GraphStorage",
    terms: Sequence[str],
    threshold: float,
    limit: int,
) -> list[Edge]:
    results: list[Edge] = []
    for term in terms:
        vector = await embedder.text_to_vector(term)
        results.extend(await storage.search_edges_vector(vector, threshold, limit))
    return combine_unique([results], lambda edge: edge.id, limit)


# -----------------------------------------------------------------------------
# Stages
# -----------------------------------------------------------------------------


async def load_entities(
    state: IngestionState,
    storage: "GraphStorage",
    embeddings: "EmbeddingService | None",
    config: "KGConfig",
) -> StatePatch:
    """
    Load candidate nodes for entity resolution.

    Returns:
        Patch with existing_nodes and an emptied existing_edges. On failure,
        empty candidates and an error.
    """
    names = [entity.name for entity in state.extracted_entities if entity.name.strip()]
    if not names:
        return {"existing_nodes": [], "existing_edges": []}

    total_limit = config.candidate_node_limit
    try:
        text_results = await storage.search_nodes_text(names, int(total_limit * TEXT_SHARE))
        fuzzy_results: list[Node] = []
        try:
            fuzzy_results = await storage.search_nodes_fuzzy(
                names, config.fuzzy_threshold, int(total_limit * FUZZY_SHARE)
            )
        except Exception as e:
            logger.error(f"Fuzzy node search failed: {e}")

        vector_results: list[Node] = []
        room = _vector_limit(total_limit, len(text_results) + len(fuzzy_results))
        if room > 0:
            try:
                embedder = await _ready_embedder(embeddings)
                if embedder is not None:
                    vector_results = await _vector_nodes(
                        embedder, storage, names, config.vector_threshold, room
                    )
            except Exception as e:
                logger.error(f"Vector node search fallback failed: {e}")

        nodes = combine_unique(
            [text_results, fuzzy_results, vector_results], lambda node: node.id, total_limit
        )
    except Exception as e:
        logger.error(f"Loading candidate nodes failed: {e}", exc_info=True)
        return {
            "existing_nodes": [],
            "existing_edges": [],
            "errors": [f"Failed to load existing nodes: {e}"],
        }

    logger.info(
        f"Loaded {len(nodes)} candidate nodes ({len(text_results)} text, "
        f"{len(fuzzy_results)} fuzzy, {len(vector_results)} vector)"
    )
    return {
        "existing_nodes": nodes,
        "existing_edges": [],
        "actions": [
            Action(
                name="Existing Nodes Loaded",
                description=(
                    f"Loaded {len(nodes)} related nodes for entity resolution "
                    f"({len(text_results)} text + {len(fuzzy_results)} fuzzy + "
                    f"{len(vector_results)} vector)"
                ),
                metadata={
                    "node_count": len(nodes),
                    "text_count": len(text_results),
                    "fuzzy_count": len(fuzzy_results),
                    "vector_count": len(vector_results),
                },
            )
        ],
    }


async def load_facts(
    state: IngestionState,
    storage: "GraphStorage",
    embeddings: "EmbeddingService | None",
    config: "KGConfig",
) -> StatePatch:
    """
    Load candidate edges for fact resolution.

    Endpoint nodes of the loaded edges that are not yet candidates are
    fetched and appended to existing_nodes.

    Returns:
        Patch with existing_edges and existing_nodes. On failure, empty
        edges and an error.
    """
    if not state.extracted_facts:
        return {"existing_edges": []}

    total_limit = config.candidate_edge_limit
    try:
        candidate_ids: dict[str, None] = {}
        for entity in state.resolved_entities:
            if entity.is_existing and entity.existing_id:
                candidate_ids.setdefault(entity.existing_id)
        unresolved_names = [
            entity.final_name
            for entity in state.resolved_entities
            if not (entity.is_existing and entity.existing_id)
        ]
        if unresolved_names:
            for node in await storage.search_nodes_text(unresolved_names, UNRESOLVED_NODE_LIMIT):
                candidate_ids.setdefault(node.id)
        id_list = list(candidate_ids)

        text_results: list[Edge] = []
        if id_list:
            text_results = await storage.get_edges_for_nodes(id_list, int(total_limit * TEXT_SHARE))

        terms = [
            f"{fact.relation_type} {fact.fact_text or ''}".strip() for fact in state.extracted_facts
        ]
        terms = [term for term in terms if term]

        fuzzy_results: list[Edge] = []
        if terms:
            try:
                fuzzy_results = await storage.search_edges_fuzzy(
                    terms, config.fuzzy_threshold, int(total_limit * FUZZY_SHARE)
                )
            except Exception as e:
                logger.error(f"Fuzzy edge search failed: {e}")

        vector_results: list[Edge] = []
        room = _vector_limit(total_limit, len(text_results) + len(fuzzy_results))
        if room > 0 and terms:
            try:
                embedder = await _ready_embedder(embeddings)
                if embedder is not None:
                    vector_results = await _vector_edges(
                        embedder, storage, terms, config.vector_threshold, room
                    )
            except Exception as e:
                logger.error(f"Vector edge search fallback failed: {e}")

        relation_results: list[Edge] = []
        remaining = total_limit - len(text_results) - len(fuzzy_results) - len(vector_results)
        if remaining > 0 and id_list:
            relation_results = await storage.get_edges_between(id_list, remaining)

        edges = combine_unique(
            [text_results, relation_results, fuzzy_results, vector_results],
            lambda edge: edge.id,
            total_limit,
        )

        known_ids = {node.id for node in state.existing_nodes}
        missing: dict[str, None] = {}
        for edge in edges:
            for node_id in (edge.source_id, edge.destination_id):
                if node_id not in known_ids:
                    missing.setdefault(node_id)
        extra_nodes = await storage.get_nodes(list(missing)) if missing else []
    except Exception as e:
        logger.error(f"Loading candidate edges failed: {e}", exc_info=True)
        return {"existing_edges": [], "errors": [f"Failed to load existing edges: {e}"]}

    logger.info(
        f"Loaded {len(edges)} candidate edges ({len(text_results)} text, "
        f"{len(fuzzy_results)} fuzzy, {len(vector_results)} vector, "
        f"{len(relation_results)} relations)"
    )
    return {
        "existing_edges": edges,
        "existing_nodes": [*state.existing_nodes, *extra_nodes],
        "actions": [
            Action(
                name="Existing Edges Loaded",
                description=(
                    f"Loaded {len(edges)} related edges for fact resolution "
                    f"({len(text_results)} text + {len(fuzzy_results)} fuzzy + "
                    f"{len(vector_results)} vector + {len(relation_results)} relations)"
                ),
                metadata={
                    "edge_count": len(edges),
                    "text_count": len(text_results),
                    "fuzzy_count": len(fuzzy_results),
                    "vector_count": len(vector_results),
                    "relation_count": len(relation_results),
                },
            )
        ],
    }
