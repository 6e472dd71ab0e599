"""
Fact Extraction

Extracts directed relationships between the resolved entities.

Two passes:
    1. Primary: every entity is listed and the model extracts as many
       relationships between them as it can find.
    2. Unconnected: entities that ended up with no relationship are listed
       in a narrower prompt asking specifically for their connections.

Facts are keyed on (source, destination, relation). A repeated key merges
into the earlier fact: fact texts are joined and attributes shallow-merged.

Example:
    >>> patch = await extract_facts(state, llm, config)
    >>> for fact in patch["extracted_facts"]:
    ...     print(fact.relation_type, fact.fact_text)
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence
from typing import TYPE_CHECKING, Any

from memory_kg.errors import LLMNotReadyError
from memory_kg.ingestion.context import (
    build_content_section,
    error_block,
    json_retry_handler,
)
from memory_kg.ingestion.map_refine import MapRefineOptions, map_refine
from memory_kg.types.entities import ResolvedEntity
from memory_kg.types.facts import ExtractedFact
from memory_kg.types.results import Action
from memory_kg.types.state import IngestionState, StatePatch
from memory_kg.utils.parsing import parse_json_array
from memory_kg.utils.text import normalize_relation_type

if TYPE_CHECKING:
    from memory_kg.config import KGConfig
    from memory_kg.providers.base import LLMProvider

logger = logging.getLogger(__name__)

PRIMARY_MAX_MODEL_TOKENS = 10000
PRIMARY_MAX_RESPONSE_TOKENS = 4096
UNCONNECTED_MAX_MODEL_TOKENS = 8000
UNCONNECTED_MAX_RESPONSE_TOKENS = 3000


# -----------------------------------------------------------------------------
# LLM Prompts
# -----------------------------------------------------------------------------

_RESPONSE_FORMAT = """\
Return a JSON array:
[
  {
    "source_entity": "Exact Entity Name From List",
    "destination_entity": "Exact Entity Name From List",
    "relation_type": "RELATION_TYPE",
    "fact_text": "Complete description of the relationship with context",
    "attributes": {}
  }
]"""

_FACT_SYSTEM_PROMPT = """\
Extract ALL factual relationships between the provided ENTITIES from the
given CONTENT. Aim for as many well-founded edges as possible.

## Entity names
1. source_entity and destination_entity MUST be names copied EXACTLY from
   the ENTITIES list
2. Never abbreviate, paraphrase or re-case a name
   ("Apple Inc." stays "Apple Inc.", not "Apple" or "apple inc.")
3. If unsure, pick the closest exact name from the list

## Relationships
1. Only between two DISTINCT entities from the list
2. Direct relationships (explicitly stated) and indirect ones (implied by context)
3. relation_type is a short UPPER_SNAKE_CASE label
   (WORKS_FOR, CREATED_BY, LOCATED_IN, FOUNDED, ACQUIRED, MENTIONED_WITH, RELATED_TO)
4. fact_text is a complete sentence with the relevant context
5. Keep temporal wording in fact_text; dates are processed separately
6. Entities appearing together with no explicit link can be MENTIONED_WITH

""" + _RESPONSE_FORMAT

_UNCONNECTED_SYSTEM_PROMPT = """\
Relationships were already extracted, but some entities still have NO
connections. Find any relationship for these unconnected entities.

UNCONNECTED ENTITIES:
{nodes}

## Requirements
1. Focus on the unconnected entities above
2. Use EXACT names from the ENTITIES list
3. Connect them to ANY other entity in the list
4. Explicit, implicit, contextual, topical or temporal links all count
5. Entities in the same context can be MENTIONED_WITH or RELATED_TO

"""

_JSON_HINT = (
    "Please ensure the response is a valid JSON array with source_entity, "
    "destination_entity, relation_type, and fact_text fields."
)
_UNCONNECTED_JSON_HINT = "Please ensure valid JSON format and focus on unconnected entities."


# -----------------------------------------------------------------------------
# Helper Functions
# -----------------------------------------------------------------------------


def build_name_lookup(entities: Sequence[ResolvedEntity]) -> dict[str, str]:
    """
    Map lower-cased entity names to entity uuids.

    final_name keys always win; original names and trimmed variants only
    claim keys nobody has taken yet.
    """
    lookup: dict[str, str] = {}
    for entity in entities:
        lookup[entity.final_name.lower()] = entity.uuid
    for entity in entities:
        for key in (
            entity.name.lower(),
            entity.final_name.strip().lower(),
            entity.name.strip().lower(),
        ):
            lookup.setdefault(key, entity.uuid)
    return lookup


def _format_entities(entities: Sequence[ResolvedEntity]) -> str:
    return "\n".join(
        f"- {entity.final_name}: {entity.summary or 'No description'}" for entity in entities
    )


class FactAccumulator:
    """
    Merged fact set for one extraction.

    Facts are keyed on (source uuid, destination uuid, relation type).
    """

    def __init__(self, name_lookup: dict[str, str]) -> None:
        self._lookup = name_lookup
        self._facts: dict[tuple[str, str, str], ExtractedFact] = {}

    def __len__(self) -> int:
        return len(self._facts)

    @property
    def facts(self) -> list[ExtractedFact]:
        return list(self._facts.values())

    def resolve_name(self, name: str | None) -> str | None:
        if not name:
            return None
        return self._lookup.get(name.lower()) or self._lookup.get(name.strip().lower())

    def add(
        self,
        source: str | None,
        destination: str | None,
        relation: str | None,
        fact_text: str | None = None,
        attributes: dict[str, Any] | None = None,
    ) -> ExtractedFact | None:
        """
        Add or merge one fact given entity names.

        Returns:
            The new fact, or None when it was merged or names an unknown entity
        """
        source_id = self.resolve_name(source)
        destination_id = self.resolve_name(destination)
        if source_id is None or destination_id is None:
            logger.debug(f"Dropping fact with unknown entity: {source!r} -> {destination!r}")
            return None

        relation_type = normalize_relation_type(relation)
        text = fact_text.strip() if isinstance(fact_text, str) and fact_text.strip() else ""
        if not text:
            text = f"{source} {relation_type} {destination}"
        attrs = attributes if isinstance(attributes, dict) else {}

        key = (source_id, destination_id, relation_type)
        existing = self._facts.get(key)
        if existing is not None:
            merged_text = (
                existing.fact_text if text in existing.fact_text else f"{existing.fact_text}. {text}"
            )
            self._facts[key] = existing.model_copy(
                update={"fact_text": merged_text, "attributes": {**existing.attributes, **attrs}}
            )
            return None

        fact = ExtractedFact(
            source_entity_id=source_id,
            destination_entity_id=destination_id,
            relation_type=relation_type,
            fact_text=text,
            attributes=attrs,
        )
        self._facts[key] = fact
        return fact

    def merge(self, fact: ExtractedFact) -> bool:
        """Merge an already-keyed fact; True when it added a new key."""
        key = (fact.source_entity_id, fact.destination_entity_id, fact.relation_type)
        existing = self._facts.get(key)
        if existing is None:
            self._facts[key] = fact
            return True
        if fact.fact_text not in existing.fact_text:
            self._facts[key] = existing.model_copy(
                update={
                    "fact_text": f"{existing.fact_text}. {fact.fact_text}",
                    "attributes": {**existing.attributes, **fact.attributes},
                }
            )
        return False

    def parse(self, content: str) -> list[ExtractedFact]:
        """
        Parse a fact-extraction response into the accumulator.

        Returns:
            Facts whose key was seen for the first time

        Raises:
            ResponseParseError: If the response holds no JSON array
        """
        added: list[ExtractedFact] = []
        for item in parse_json_array(content).unwrap():
            if not isinstance(item, dict):
                continue
            fact = self.add(
                item.get("source_entity"),
                item.get("destination_entity"),
                item.get("relation_type"),
                item.get("fact_text"),
                item.get("attributes"),
            )
            if fact is not None:
                added.append(fact)
        return added


def _fact_key(fact: ExtractedFact) -> str:
    return f"{fact.source_entity_id}|{fact.relation_type}|{fact.destination_entity_id}"


# -----------------------------------------------------------------------------
# Passes
# -----------------------------------------------------------------------------


async def _extract_unconnected(
    unconnected: Sequence[ResolvedEntity],
    llm: "LLMProvider",
    config: "KGConfig",
    source_text: str,
    entities_text: str,
    name_lookup: dict[str, str],
    cancel_event: asyncio.Event | None,
) -> list[ExtractedFact]:
    """Facts touching at least one unconnected entity."""
    names = ", ".join(entity.final_name for entity in unconnected)
    system_prompt = (
        _UNCONNECTED_SYSTEM_PROMPT.format(nodes=_format_entities(unconnected)) + _RESPONSE_FORMAT
    )
    accumulator = FactAccumulator(name_lookup)

    def build_user(chunk: str, previous: Sequence[ExtractedFact], error_context: str | None) -> str:
        prompt = (
            f"Focus on finding relationships for these unconnected entities: {names}\n\n"
            f"<CONTENT>\n{chunk}\n</CONTENT>\n\n<ENTITIES>\n{entities_text}\n</ENTITIES>\n\n"
            "REMINDER: Create connections specifically for the unconnected entities "
            "listed above using EXACT entity names."
        )
        return prompt + error_block(
            error_context, "Please fix the JSON format and focus on the unconnected entities."
        )

    await map_refine(
        llm,
        system_prompt,
        build_user,
        accumulator.parse,
        source_text,
        MapRefineOptions(
            max_model_tokens=UNCONNECTED_MAX_MODEL_TOKENS,
            max_response_tokens=UNCONNECTED_MAX_RESPONSE_TOKENS,
            temperature=0.2,
            max_retries=config.map_refine_max_retries,
            dedupe_by=_fact_key,
            on_error=json_retry_handler("unconnected_extraction", _UNCONNECTED_JSON_HINT),
            cancel_event=cancel_event,
        ),
    )

    unconnected_ids = {entity.uuid for entity in unconnected}
    return [
        fact
        for fact in accumulator.facts
        if fact.source_entity_id in unconnected_ids or fact.destination_entity_id in unconnected_ids
    ]


# -----------------------------------------------------------------------------
# Stage
# -----------------------------------------------------------------------------


async def extract_facts(
    state: IngestionState,
    llm: "LLMProvider",
    config: "KGConfig",
    cancel_event: asyncio.Event | None = None,
) -> StatePatch:
    """
    Extract relationships between the resolved entities.

    Returns:
        Patch with extracted_facts and an action

    Raises:
        LLMNotReadyError: If the provider is not ready
    """
    if not llm.is_ready():
        raise LLMNotReadyError("LLM service is not ready")

    entities = state.resolved_entities
    logger.info(f"Starting fact extraction over {len(entities)} entities")

    entities_text = _format_entities(entities)
    source_text = f"{build_content_section(state)}\n\n<ENTITIES>\n{entities_text}\n</ENTITIES>"
    final_names = {entity.uuid: entity.final_name for entity in entities}
    name_lookup = build_name_lookup(entities)
    accumulator = FactAccumulator(name_lookup)

    def build_user(chunk: str, previous: Sequence[ExtractedFact], error_context: str | None) -> str:
        summary = ", ".join(
            f"{final_names.get(fact.source_entity_id, '')} {fact.relation_type} "
            f"{final_names.get(fact.destination_entity_id, '')}"
            for fact in previous
        )
        prompt = (
            f"<PREVIOUS RESULT>\n{summary}\n</PREVIOUS RESULT>\n<CHUNK>\n{chunk}\n</CHUNK>\n\n"
            f"<ENTITIES>\n{entities_text}\n</ENTITIES>\n\n"
            "REMINDER: Use entity names EXACTLY as they appear in the ENTITIES list above. "
            "Extract as many relationships as possible between these entities."
        )
        return prompt + error_block(
            error_context,
            "Please fix the JSON format and ensure all facts are properly extracted "
            "with EXACT entity name matching from the ENTITIES list.",
        )

    await map_refine(
        llm,
        _FACT_SYSTEM_PROMPT,
        build_user,
        accumulator.parse,
        source_text,
        MapRefineOptions(
            max_model_tokens=PRIMARY_MAX_MODEL_TOKENS,
            max_response_tokens=PRIMARY_MAX_RESPONSE_TOKENS,
            temperature=0.1,
            max_retries=config.map_refine_max_retries,
            dedupe_by=_fact_key,
            on_error=json_retry_handler("fact_extraction", _JSON_HINT),
            cancel_event=cancel_event,
        ),
    )
    initial_count = len(accumulator)

    connected: set[str] = set()
    for fact in accumulator.facts:
        connected.add(fact.source_entity_id)
        connected.add(fact.destination_entity_id)
    unconnected = [entity for entity in entities if entity.uuid not in connected]

    additional_count = 0
    if unconnected and not (cancel_event is not None and cancel_event.is_set()):
        logger.info(
            f"{len(unconnected)} entities without connections: "
            f"{[entity.final_name for entity in unconnected]}"
        )
        try:
            additional = await _extract_unconnected(
                unconnected, llm, config, source_text, entities_text, name_lookup, cancel_event
            )
        except Exception as e:
            logger.error(f"Error generating facts for unconnected entities: {e}", exc_info=True)
            additional = []
        for fact in additional:
            if accumulator.merge(fact):
                additional_count += 1

    facts = accumulator.facts
    logger.info(
        f"Extracted {len(facts)} facts ({initial_count} initial + {additional_count} additional)"
    )

    return {
        "extracted_facts": facts,
        "actions": [
            Action(
                name="Fact Extraction Complete",
                description=(
                    f"Extracted {len(facts)} facts from content "
                    f"({additional_count} additional for unconnected entities)"
                ),
                metadata={
                    "fact_count": len(facts),
                    "initial_facts": initial_count,
                    "additional_facts": additional_count,
                    "unconnected_entities_found": len(unconnected),
                },
            )
        ],
    }
