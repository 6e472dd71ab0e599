"""
Graph Assembler

Final stage that writes one ingestion's results to storage.

Write order:
    1. Source - one row per ingestion, keyed by the caller's page id
    2. Nodes - one per new entity, each linked to the source (MENTIONED_IN)
    3. Edges - one per new, valid fact whose endpoints resolve to stored
       nodes, each linked to the source (EXTRACTED_FROM)

Only the source is all-or-nothing. Every node and edge is written
independently: a failure skips that item and is summarized in one warning.
Embeddings are best effort and never block a write.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import TYPE_CHECKING

from memory_kg.errors import PersistenceValidationError
from memory_kg.types.entities import ResolvedEntity
from memory_kg.types.facts import EnrichedFact
from memory_kg.types.graph import (
    Edge,
    NewEdge,
    NewNode,
    NewSource,
    Node,
    Source,
    SourceEdge,
    SourceNode,
)
from memory_kg.types.results import Action
from memory_kg.types.state import IngestionState, StatePatch
from memory_kg.utils.dates import parse_iso_datetime
from memory_kg.utils.matching import find_node_id, is_valid_uuid

if TYPE_CHECKING:
    from memory_kg.providers.base import EmbeddingService
    from memory_kg.storage.base import GraphStorage

logger = logging.getLogger(__name__)

SOURCE_TARGET_TYPE = "remembered_pages"
FAILURE_MESSAGE = "Knowledge graph creation failed during database save operation."


async def safe_text_to_vector(
    embeddings: "EmbeddingService | None",
    text: str | None,
    context: str,
) -> list[float] | None:
    """
    Embed text with the default embedder, or None.

    Returns None for blank text, a missing service, or a missing/unready
    default embedder. Embedding errors are logged and swallowed so storage
    continues without the vector.
    """
    if not text or not text.strip() or embeddings is None:
        return None
    try:
        embedder = await embeddings.get("default")
        if embedder is None or not embedder.is_ready():
            return None
        return await embedder.text_to_vector(text)
    except Exception as e:
        logger.error(
            f"[{context}] Embedding failed, continuing without vector: {e} "
            f"(text length {len(text)})"
        )
        return None


class GraphAssembler:
    """
    Persists an ingestion state to graph storage.

    Usage:
        assembler = GraphAssembler(storage, embeddings)
        patch = await assembler.persist(state)
    """

    def __init__(
        self,
        storage: "GraphStorage",
        embeddings: "EmbeddingService | None" = None,
    ):
        self.storage = storage
        self.embeddings = embeddings

    async def persist(self, state: IngestionState) -> StatePatch:
        """
        Write source, new nodes and new edges for one ingestion.

        Returns:
            Patch with created_source, created_nodes, created_edges,
            final_message and an action. On a validation or source-write
            failure: errors, the failure message and a failure action.
        """
        logger.info(
            f"Saving knowledge graph for page {state.page_id!r} ({state.title!r})"
        )
        try:
            self._validate(state)
            source = await self._create_source(state)
        except Exception as e:
            logger.error(f"Database save failed: {e}", exc_info=True)
            return {
                "errors": [str(e) or "Failed to save to database"],
                "final_message": FAILURE_MESSAGE,
                "actions": [
                    Action(name="Database Save Failed", description=str(e) or "Unknown error")
                ],
            }
        logger.info(f"Source created: {source.id}")

        nodes = await self._create_nodes(state, source)
        edges = await self._create_edges(state, source, nodes)
        logger.info(f"Saved {len(nodes)} nodes and {len(edges)} edges")

        return {
            "created_source": source,
            "created_nodes": nodes,
            "created_edges": edges,
            "final_message": (
                f"Knowledge graph creation completed. Created {len(nodes)} new nodes "
                f'and {len(edges)} new edges from "{state.title}".'
            ),
            "actions": [
                Action(
                    name="Knowledge Graph Saved",
                    description=(
                        f"Successfully created knowledge graph with {len(nodes)} nodes "
                        f"and {len(edges)} edges"
                    ),
                    metadata={
                        "source_id": source.id,
                        "node_count": len(nodes),
                        "edge_count": len(edges),
                    },
                )
            ],
        }

    # -------------------------------------------------------------------------
    # Source
    # -------------------------------------------------------------------------

    @staticmethod
    def _validate(state: IngestionState) -> None:
        if not state.page_id or not state.page_id.strip():
            raise PersistenceValidationError(
                "Invalid or missing page_id - cannot create source without valid target ID"
            )
        if not state.title or not state.title.strip():
            raise PersistenceValidationError(
                "Invalid or missing title - cannot create source without name"
            )

    async def _create_source(self, state: IngestionState) -> Source:
        reference_time = parse_iso_datetime(state.reference_timestamp) or datetime.now(timezone.utc)
        return await self.storage.create_source(
            NewSource(
                target_type=SOURCE_TARGET_TYPE,
                target_id=state.page_id.strip(),
                name=state.title.strip(),
                metadata=dict(state.metadata or {}),
                reference_time=reference_time,
                weight=1.0,
            )
        )

    # -------------------------------------------------------------------------
    # Nodes
    # -------------------------------------------------------------------------

    async def _create_nodes(self, state: IngestionState, source: Source) -> list[Node]:
        created: list[Node] = []
        skipped: list[ResolvedEntity] = []

        for entity in state.resolved_entities:
            if entity.is_existing:
                continue
            try:
                name_embedding = await safe_text_to_vector(
                    self.embeddings, entity.final_name, f"NODE_EMBEDDING:{entity.final_name[:50]}"
                )
                node = await self.storage.create_node(
                    NewNode(
                        node_type=entity.node_type,
                        name=entity.final_name,
                        summary=entity.summary,
                        attributes=dict(entity.attributes),
                        name_embedding=name_embedding,
                    )
                )
                logger.debug(f"Created node {node.id} for entity {entity.final_name!r}")
                created.append(node)
                await self.storage.link_source_node(SourceNode(source_id=source.id, node_id=node.id))
            except Exception as e:
                skipped.append(entity)
                logger.error(f"Failed to create node for entity {entity.final_name!r}: {e}")

        if skipped:
            logger.warning(
                f"Skipped {len(skipped)} node(s) that could not be stored: "
                f"{[(entity.final_name, entity.node_type, entity.uuid) for entity in skipped]}"
            )
        return created

    # -------------------------------------------------------------------------
    # Edges
    # -------------------------------------------------------------------------

    @staticmethod
    def _facts_to_persist(state: IngestionState) -> list[EnrichedFact]:
        if state.enriched_facts:
            facts = state.enriched_facts
        else:
            facts = [EnrichedFact.from_resolved(fact) for fact in state.resolved_facts]
        return [fact for fact in facts if not fact.is_existing]

    @staticmethod
    def _node_id_for(entity: ResolvedEntity, nodes: list[Node]) -> str | None:
        if entity.is_existing and entity.existing_id:
            return entity.existing_id
        return find_node_id(entity.final_name, nodes)

    async def _create_edges(
        self,
        state: IngestionState,
        source: Source,
        created_nodes: list[Node],
    ) -> list[Edge]:
        facts = self._facts_to_persist(state)
        entities = {entity.uuid: entity for entity in state.resolved_entities}
        all_nodes = [*created_nodes, *state.existing_nodes]
        created: list[Edge] = []
        skipped: list[EnrichedFact] = []

        logger.debug(f"Persisting up to {len(facts)} edge(s)")

        for fact in facts:
            try:
                edge = await self._create_edge(fact, entities, all_nodes)
            except Exception as e:
                logger.error(
                    f"Failed to create edge for fact "
                    f"{fact.source_entity_id} -> {fact.destination_entity_id}: {e}"
                )
                edge = None
            if edge is None:
                skipped.append(fact)
                continue

            created.append(edge)
            try:
                await self.storage.link_source_edge(SourceEdge(source_id=source.id, edge_id=edge.id))
            except Exception as e:
                # The edge itself is stored; only provenance is missing
                logger.error(f"Failed to link edge {edge.id} to source {source.id}: {e}")

        if skipped:
            logger.warning(
                f"Skipped {len(skipped)} edge(s) that could not be stored: "
                f"{[(fact.relation_type, fact.fact_text) for fact in skipped]}"
            )
        return created

    async def _create_edge(
        self,
        fact: EnrichedFact,
        entities: dict[str, ResolvedEntity],
        nodes: list[Node],
    ) -> Edge | None:
        """Insert one edge; None when its endpoints cannot be resolved."""
        source_entity = entities.get(fact.source_entity_id)
        destination_entity = entities.get(fact.destination_entity_id)
        if source_entity is None or destination_entity is None:
            logger.error(
                f"Could not find entities for fact: "
                f"{fact.source_entity_id} -> {fact.destination_entity_id}"
            )
            return None

        source_id = self._node_id_for(source_entity, nodes)
        destination_id = self._node_id_for(destination_entity, nodes)
        if not source_id or not destination_id:
            logger.error(
                f"Could not resolve node ids for {source_entity.final_name!r} -> "
                f"{destination_entity.final_name!r}"
            )
            return None

        if not is_valid_uuid(source_id) or not is_valid_uuid(destination_id):
            logger.error(
                f"Invalid UUID format for node ids: source={source_id}, dest={destination_id}"
            )
            return None

        stored = await self.storage.existing_node_ids([source_id, destination_id])
        if source_id not in stored or destination_id not in stored:
            logger.error(
                f"Node id missing from storage for edge {source_id} -> {destination_id}"
            )
            return None

        fact_embedding = await safe_text_to_vector(
            self.embeddings, fact.fact_text, f"FACT_EMBEDDING:{fact.fact_text[:50]}"
        )
        type_embedding = await safe_text_to_vector(
            self.embeddings, fact.relation_type, f"TYPE_EMBEDDING:{fact.relation_type}"
        )

        return await self.storage.create_edge(
            NewEdge(
                source_id=source_id,
                destination_id=destination_id,
                edge_type=fact.relation_type,
                fact_text=fact.fact_text,
                valid_at=parse_iso_datetime(fact.temporal.valid_at),
                invalid_at=parse_iso_datetime(fact.temporal.invalid_at),
                attributes=dict(fact.attributes),
                fact_embedding=fact_embedding,
                type_embedding=type_embedding,
            )
        )
