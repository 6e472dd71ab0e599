"""
Fact Resolution

Matches extracted facts against candidate edges already in the graph so a
relationship learned twice is stored once.

Facts whose endpoints are not among the resolved entities are invalid:
they pass through as new and are never turned into edges.

Two phases for valid facts:
    1. Deterministic: both endpoints resolved to stored nodes and a
       candidate edge connects those nodes with the same type
       (either direction when fact_match_bidirectional is on).
    2. LLM: the remaining facts are listed as numbered NEW EDGES next to the
       EXISTING EDGES and the model flags duplicates.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence
from typing import TYPE_CHECKING

from memory_kg.ingestion.context import error_block, json_retry_handler, numbered_indices
from memory_kg.ingestion.map_refine import MapRefineOptions, map_refine
from memory_kg.types.entities import ResolvedEntity
from memory_kg.types.facts import ExtractedFact, ResolvedFact
from memory_kg.types.graph import Edge, Node
from memory_kg.types.results import Action
from memory_kg.types.state import IngestionState, StatePatch
from memory_kg.utils.parsing import as_bool, parse_json_array

if TYPE_CHECKING:
    from memory_kg.config import KGConfig
    from memory_kg.providers.base import LLMProvider

logger = logging.getLogger(__name__)

MAX_MODEL_TOKENS = 10000
MAX_RESPONSE_TOKENS = 6144
LISTING_LABEL = "Source"


_FACT_RESOLUTION_SYSTEM_PROMPT = """\
Given EXISTING EDGES and NEW EDGES, decide for EACH new edge whether it
expresses the same information as one of the existing edges.

For each new edge return:
1. is_duplicate: true when an existing edge states the same fact
2. existing_id: the ID of that existing edge (null otherwise)

## Guidelines
1. Facts do not need identical wording to be duplicates, only the same information
2. Answer for every new edge in the chunk, in the order listed

Return a JSON array, one object per new edge:
[
  {
    "is_duplicate": false,
    "existing_id": "uuid or null"
  }
]"""

_JSON_HINT = "Please ensure the response is a valid JSON array with is_duplicate and existing_id fields."


# -----------------------------------------------------------------------------
# Helper Functions
# -----------------------------------------------------------------------------


def split_valid_facts(
    facts: Sequence[ExtractedFact],
    entities: Sequence[ResolvedEntity],
) -> tuple[list[ExtractedFact], list[ExtractedFact]]:
    """Split facts into (valid, invalid) by whether both endpoints are resolved entities."""
    known = {entity.uuid for entity in entities}
    valid: list[ExtractedFact] = []
    invalid: list[ExtractedFact] = []
    for fact in facts:
        if fact.source_entity_id in known and fact.destination_entity_id in known:
            valid.append(fact)
        else:
            logger.warning(
                f"Could not find entities for fact: "
                f"{fact.source_entity_id} -> {fact.destination_entity_id}"
            )
            invalid.append(fact)
    return valid, invalid


def match_existing_edges(
    facts: Sequence[ExtractedFact],
    entities: Sequence[ResolvedEntity],
    existing_edges: Sequence[Edge],
    bidirectional: bool = True,
) -> tuple[list[ResolvedFact], list[ExtractedFact]]:
    """
    Resolve facts whose endpoints and type match a candidate edge.

    Returns:
        (matched facts, facts still needing resolution)
    """
    node_ids = {
        entity.uuid: entity.existing_id
        for entity in entities
        if entity.is_existing and entity.existing_id
    }
    edge_index: dict[tuple[str, str, str], Edge] = {}
    for edge in existing_edges:
        edge_index.setdefault((edge.source_id, edge.destination_id, edge.edge_type.upper()), edge)

    matched: list[ResolvedFact] = []
    pending: list[ExtractedFact] = []
    for fact in facts:
        source_id = node_ids.get(fact.source_entity_id)
        destination_id = node_ids.get(fact.destination_entity_id)
        edge = None
        if source_id and destination_id:
            edge_type = fact.relation_type.upper()
            edge = edge_index.get((source_id, destination_id, edge_type))
            if edge is None and bidirectional:
                edge = edge_index.get((destination_id, source_id, edge_type))
        if edge is None:
            pending.append(fact)
        else:
            matched.append(ResolvedFact.as_existing(fact, edge.id))
    return matched, pending


def _format_existing(edges: Sequence[Edge], nodes: Sequence[Node]) -> str:
    if not edges:
        return "No existing edges"
    names = {node.id: node.name for node in nodes}
    return "\n".join(
        f"ID: {edge.id}, Source: {names.get(edge.source_id, 'Unknown')}, "
        f"Destination: {names.get(edge.destination_id, 'Unknown')}, "
        f"Type: {edge.edge_type}, Fact: {edge.fact_text}"
        for edge in edges
    )


def _format_pending(facts: Sequence[ExtractedFact], entities: Sequence[ResolvedEntity]) -> str:
    names = {entity.uuid: entity.final_name for entity in entities}
    return "\n".join(
        f"{index}. {LISTING_LABEL}: {names.get(fact.source_entity_id, 'Unknown')}, "
        f"Destination: {names.get(fact.destination_entity_id, 'Unknown')}, "
        f"Type: {fact.relation_type}, Fact: {fact.fact_text}"
        for index, fact in enumerate(facts, 1)
    )


class _ChunkResolver:
    """Index-aligned build_user/parse pair, as in entity resolution."""

    def __init__(self, pending: Sequence[ExtractedFact], candidate_ids: set[str]) -> None:
        self._pending = list(pending)
        self._candidate_ids = candidate_ids
        self._indices: list[int] = []

    def build_user(
        self,
        chunk: str,
        previous: Sequence[ResolvedFact],
        error_context: str | None,
    ) -> str:
        self._indices = numbered_indices(chunk, LISTING_LABEL, len(self._pending))
        if previous:
            summary = ", ".join(
                f"{i}. {fact.relation_type} ({'existing' if fact.is_existing else 'new'})"
                for i, fact in enumerate(previous, 1)
            )
        else:
            summary = "No previous results"
        prompt = f"<PREVIOUS RESULTS>\n{summary}\n</PREVIOUS RESULTS>\n\n<CHUNK>\n{chunk}\n</CHUNK>"
        return prompt + error_block(
            error_context,
            "Please fix the JSON format and ensure all fact resolutions are properly structured.",
        )

    def parse(self, content: str) -> list[ResolvedFact]:
        facts = [self._pending[i] for i in self._indices]
        result = parse_json_array(content)
        if not result.ok:
            logger.error(f"Fact resolution response unparsable, keeping facts as new: {result.error}")
            return [ResolvedFact.as_new(fact) for fact in facts]

        resolved: list[ResolvedFact] = []
        for position, fact in enumerate(facts):
            item = result.items[position] if position < len(result.items) else None
            existing_id = item.get("existing_id") if isinstance(item, dict) else None
            if (
                isinstance(item, dict)
                and as_bool(item.get("is_duplicate"))
                and isinstance(existing_id, str)
                and existing_id in self._candidate_ids
            ):
                resolved.append(ResolvedFact.as_existing(fact, existing_id))
            else:
                resolved.append(ResolvedFact.as_new(fact))
        return resolved


# -----------------------------------------------------------------------------
# Stage
# -----------------------------------------------------------------------------


async def resolve_facts(
    state: IngestionState,
    llm: "LLMProvider",
    config: "KGConfig",
    cancel_event: asyncio.Event | None = None,
) -> StatePatch:
    """
    Resolve extracted facts against the candidate edges.

    Returns:
        Patch with resolved_facts (deterministic, then LLM, then invalid
        facts), an action, and an error when the LLM was unavailable
    """
    if not state.extracted_facts:
        return {
            "resolved_facts": [],
            "actions": [
                Action(
                    name="Fact Resolution Skipped",
                    description="No facts to resolve",
                    metadata={"total_facts": 0},
                )
            ],
        }

    valid, invalid = split_valid_facts(state.extracted_facts, state.resolved_entities)
    matched, pending = match_existing_edges(
        valid,
        state.resolved_entities,
        state.existing_edges,
        bidirectional=config.fact_match_bidirectional,
    )
    logger.info(
        f"Fact resolution: {len(matched)} deterministic match(es), "
        f"{len(pending)} need LLM resolution, {len(invalid)} invalid"
    )

    errors: list[str] = []
    ai_resolved: list[ResolvedFact] = []
    if pending and not state.existing_edges:
        ai_resolved = [ResolvedFact.as_new(fact) for fact in pending]
    elif pending and not llm.is_ready():
        message = "LLM service is not ready, keeping unmatched facts as new"
        logger.error(message)
        errors.append(message)
        ai_resolved = [ResolvedFact.as_new(fact) for fact in pending]
    elif pending:
        source_text = (
            f"<EXISTING EDGES>\n{_format_existing(state.existing_edges, state.existing_nodes)}\n"
            f"</EXISTING EDGES>\n"
            f"<NEW EDGES>\n{_format_pending(pending, state.resolved_entities)}\n</NEW EDGES>"
        )
        resolver = _ChunkResolver(pending, {edge.id for edge in state.existing_edges})
        ai_resolved = await map_refine(
            llm,
            _FACT_RESOLUTION_SYSTEM_PROMPT,
            resolver.build_user,
            resolver.parse,
            source_text,
            MapRefineOptions(
                max_model_tokens=MAX_MODEL_TOKENS,
                max_response_tokens=MAX_RESPONSE_TOKENS,
                temperature=0.0,
                max_retries=config.map_refine_max_retries,
                dedupe_by=lambda f: f"{f.source_entity_id}|{f.destination_entity_id}|{f.relation_type}",
                on_error=json_retry_handler("fact_resolution", _JSON_HINT),
                cancel_event=cancel_event,
            ),
        )
        seen = {fact.uuid for fact in ai_resolved}
        unresolved = [fact for fact in pending if fact.uuid not in seen]
        if unresolved:
            logger.warning(f"{len(unresolved)} facts were not resolved by the LLM, keeping them as new")
            ai_resolved.extend(ResolvedFact.as_new(fact) for fact in unresolved)

    resolved = [*matched, *ai_resolved, *(ResolvedFact.as_new(fact) for fact in invalid)]
    existing_count = sum(1 for fact in resolved if fact.is_existing)
    logger.info(f"Resolved {len(resolved)} facts")

    patch: StatePatch = {
        "resolved_facts": resolved,
        "actions": [
            Action(
                name="Fact Resolution Complete",
                description=(
                    f"Resolved {len(resolved)} facts. {existing_count} existing, "
                    f"{len(resolved) - existing_count} new"
                ),
                metadata={
                    "total_facts": len(resolved),
                    "existing_facts": existing_count,
                    "new_facts": len(resolved) - existing_count,
                    "manual_matches": len(matched),
                    "invalid_facts": len(invalid),
                },
            )
        ],
    }
    if errors:
        patch["errors"] = errors
    return patch
