"""
Entity Resolution

Matches freshly extracted entities against candidate nodes already in the
graph so re-ingesting known things reuses their nodes.

Two phases:
    1. Deterministic: exact (case-insensitive, trimmed) name match against
       the candidate nodes. No LLM call.
    2. LLM: the remaining entities are listed as numbered NEW NODES next to
       the EXISTING NODES and the model decides, per entity, whether it is a
       duplicate and of which node.

Every extracted entity comes out resolved: anything the LLM phase could
not decide is kept as a new entity.

Example:
    >>> patch = await resolve_entities(state, llm, config)
    >>> for entity in patch["resolved_entities"]:
    ...     print(entity.final_name, entity.is_existing)
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence
from typing import TYPE_CHECKING

from memory_kg.errors import LLMNotReadyError
from memory_kg.ingestion.context import (
    build_content_section,
    error_block,
    json_retry_handler,
    numbered_indices,
)
from memory_kg.ingestion.map_refine import MapRefineOptions, map_refine
from memory_kg.types.entities import ExtractedEntity, ResolvedEntity
from memory_kg.types.graph import Node
from memory_kg.types.results import Action
from memory_kg.types.state import IngestionState, StatePatch
from memory_kg.utils.parsing import as_bool, parse_json_array

if TYPE_CHECKING:
    from memory_kg.config import KGConfig
    from memory_kg.providers.base import LLMProvider

logger = logging.getLogger(__name__)

MAX_RESPONSE_TOKENS = 4096
LISTING_LABEL = "Name"


# -----------------------------------------------------------------------------
# LLM Prompts
# -----------------------------------------------------------------------------

_RESOLUTION_SYSTEM_PROMPT = """\
Given EXISTING NODES and NEW NODES, decide for EACH new node whether it is
the same real-world entity as one of the existing nodes.

For each new node return:
1. is_duplicate: true when it is the same entity as an existing node
2. existing_id: the ID of that existing node (null otherwise)
3. final_name: the most complete and accurate name to use

## Guidelines
1. Compare both names and summaries
2. Duplicates can have different names ("Dr. Smith" = "John Smith",
   "Google" = "Google Inc.")
3. The same page usually refers to one entity consistently
4. Organizations: consider alternate names, not parents or subsidiaries
5. People: consider titles, nicknames, formal and informal names
6. When in doubt, mark as NOT duplicate
7. Answer for every new node in the chunk, in the order listed

Return a JSON array, one object per new node:
[
  {
    "is_duplicate": false,
    "existing_id": "uuid or null",
    "final_name": "Name to use"
  }
]"""

_JSON_HINT = (
    "Please ensure the response is a valid JSON array with is_duplicate, "
    "existing_id, and final_name fields."
)


# -----------------------------------------------------------------------------
# Helper Functions
# -----------------------------------------------------------------------------


def _name_key(name: str) -> str:
    return name.lower().strip()


def match_exact_names(
    entities: Sequence[ExtractedEntity],
    existing_nodes: Sequence[Node],
) -> tuple[list[ResolvedEntity], list[ExtractedEntity]]:
    """
    Resolve entities whose name exactly matches a candidate node.

    Returns:
        (matched entities, entities still needing resolution)
    """
    by_name: dict[str, Node] = {}
    for node in existing_nodes:
        by_name[_name_key(node.name)] = node

    matched: list[ResolvedEntity] = []
    pending: list[ExtractedEntity] = []
    for entity in entities:
        node = by_name.get(_name_key(entity.name))
        if node is None:
            pending.append(entity)
            continue
        matched.append(ResolvedEntity.as_existing(entity, node.id, node.name))
        logger.debug(f'Exact match: "{entity.name}" -> "{node.name}" ({node.id})')
    return matched, pending


def _format_existing(nodes: Sequence[Node]) -> str:
    if not nodes:
        return "No existing nodes"
    return "\n".join(
        f"ID: {node.id}, Name: {node.name}, Summary: {node.summary or 'No summary'}, Type: {node.node_type}"
        for node in nodes
    )


def _format_pending(entities: Sequence[ExtractedEntity]) -> str:
    return "\n".join(
        f"{index}. {LISTING_LABEL}: {entity.name}, "
        f"Summary: {entity.summary or 'No summary'}, Type: {entity.node_type}"
        for index, entity in enumerate(entities, 1)
    )


class _ChunkResolver:
    """
    build_user/parse pair for one map_refine run.

    build_user records which numbered entities the current chunk lists;
    parse aligns the response entries to exactly those entities.
    """

    def __init__(self, pending: Sequence[ExtractedEntity], candidate_ids: set[str]) -> None:
        self._pending = list(pending)
        self._candidate_ids = candidate_ids
        self._indices: list[int] = []

    def build_user(
        self,
        chunk: str,
        previous: Sequence[ResolvedEntity],
        error_context: str | None,
    ) -> str:
        self._indices = numbered_indices(chunk, LISTING_LABEL, len(self._pending))
        if previous:
            summary = ", ".join(
                f"{i}. {entity.final_name} ({'existing' if entity.is_existing else 'new'})"
                for i, entity in enumerate(previous, 1)
            )
        else:
            summary = "No previous results"
        prompt = f"<PREVIOUS RESULTS>\n{summary}\n</PREVIOUS RESULTS>\n\n<CHUNK>\n{chunk}\n</CHUNK>"
        return prompt + error_block(
            error_context,
            "Please fix the JSON format and ensure all entity resolutions are properly structured.",
        )

    def parse(self, content: str) -> list[ResolvedEntity]:
        entities = [self._pending[i] for i in self._indices]
        result = parse_json_array(content)
        if not result.ok:
            logger.error(f"Entity resolution response unparsable, keeping entities as new: {result.error}")
            return [ResolvedEntity.as_new(entity) for entity in entities]

        resolved: list[ResolvedEntity] = []
        for position, entity in enumerate(entities):
            item = result.items[position] if position < len(result.items) else None
            resolved.append(self._resolve_one(entity, item))
        return resolved

    def _resolve_one(self, entity: ExtractedEntity, item: object) -> ResolvedEntity:
        if not isinstance(item, dict) or not as_bool(item.get("is_duplicate")):
            return ResolvedEntity.as_new(entity)

        existing_id = item.get("existing_id")
        if not isinstance(existing_id, str) or existing_id not in self._candidate_ids:
            logger.debug(f'Ignoring duplicate claim for "{entity.name}": unknown id {existing_id!r}')
            return ResolvedEntity.as_new(entity)

        final_name = item.get("final_name")
        if not isinstance(final_name, str) or not final_name.strip():
            final_name = entity.name
        return ResolvedEntity.as_existing(entity, existing_id, final_name.strip())


# -----------------------------------------------------------------------------
# Stage
# -----------------------------------------------------------------------------


async def resolve_entities(
    state: IngestionState,
    llm: "LLMProvider",
    config: "KGConfig",
    cancel_event: asyncio.Event | None = None,
) -> StatePatch:
    """
    Resolve extracted entities against the candidate nodes.

    Returns:
        Patch with resolved_entities (deterministic matches first) and an action

    Raises:
        LLMNotReadyError: If LLM resolution is needed and the provider is not ready
    """
    extracted = state.extracted_entities
    if not extracted:
        return {
            "resolved_entities": [],
            "actions": [
                Action(
                    name="Entity Resolution Skipped",
                    description="No entities to resolve",
                    metadata={"total_entities": 0},
                )
            ],
        }

    matched, pending = match_exact_names(extracted, state.existing_nodes)
    logger.info(
        f"Entity resolution: {len(matched)} exact match(es), {len(pending)} need LLM resolution"
    )

    if not pending:
        return {
            "resolved_entities": matched,
            "actions": [
                Action(
                    name="Entity Resolution Complete (Manual Only)",
                    description=f"Resolved {len(matched)} entities via exact name matching",
                    metadata={
                        "total_entities": len(matched),
                        "manual_matches": len(matched),
                        "ai_resolved": 0,
                    },
                )
            ],
        }

    if not state.existing_nodes:
        # No candidate a duplicate claim could name
        ai_resolved = [ResolvedEntity.as_new(entity) for entity in pending]
        return _complete_patch(matched, ai_resolved)

    if not llm.is_ready():
        raise LLMNotReadyError("LLM service is not ready")

    source_text = (
        f"{build_content_section(state)}\n\n"
        f"<EXISTING NODES>\n{_format_existing(state.existing_nodes)}\n</EXISTING NODES>\n"
        f"<NEW NODES>\n{_format_pending(pending)}\n</NEW NODES>"
    )
    resolver = _ChunkResolver(pending, {node.id for node in state.existing_nodes})

    ai_resolved = await map_refine(
        llm,
        _RESOLUTION_SYSTEM_PROMPT,
        resolver.build_user,
        resolver.parse,
        source_text,
        MapRefineOptions(
            max_model_tokens=await llm.get_max_model_tokens(),
            max_response_tokens=MAX_RESPONSE_TOKENS,
            temperature=0.0,
            max_retries=config.map_refine_max_retries,
            dedupe_by=lambda entity: f"{entity.name.lower()}|{entity.node_type}",
            on_error=json_retry_handler("entity_resolution", _JSON_HINT),
            cancel_event=cancel_event,
        ),
    )

    seen = {entity.uuid for entity in ai_resolved}
    unresolved = [entity for entity in pending if entity.uuid not in seen]
    if unresolved:
        logger.warning(f"{len(unresolved)} entities were not resolved by the LLM, keeping them as new")
        ai_resolved.extend(ResolvedEntity.as_new(entity) for entity in unresolved)

    return _complete_patch(matched, ai_resolved)


def _complete_patch(
    matched: list[ResolvedEntity],
    ai_resolved: list[ResolvedEntity],
) -> StatePatch:
    resolved = [*matched, *ai_resolved]
    existing_count = sum(1 for entity in resolved if entity.is_existing)
    new_count = len(resolved) - existing_count
    logger.info(
        f"Resolved {len(resolved)} entities ({len(matched)} manual, {len(ai_resolved)} LLM)"
    )

    return {
        "resolved_entities": resolved,
        "actions": [
            Action(
                name="Entity Resolution Complete",
                description=(
                    f"Resolved {len(resolved)} entities. {existing_count} existing, {new_count} new "
                    f"({len(matched)} manual matches, {len(ai_resolved)} AI resolved)"
                ),
                metadata={
                    "total_entities": len(resolved),
                    "existing_entities": existing_count,
                    "new_entities": new_count,
                    "manual_matches": len(matched),
                    "ai_resolved": len(ai_resolved),
                },
            )
        ],
    }
