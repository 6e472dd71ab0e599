"""
Temporal Enrichment

Asks the LLM when each new relationship became true (valid_at) and when it
stopped being true (invalid_at), resolving relative dates against the
ingestion's reference timestamp.

Only new, valid facts are sent. Facts matched to stored edges and facts
with unresolved endpoints pass through with empty temporal info, as does
any fact whose chunk could not be processed.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence
from typing import TYPE_CHECKING

from memory_kg.ingestion.context import (
    build_content_section,
    error_block,
    json_retry_handler,
    numbered_indices,
)
from memory_kg.ingestion.map_refine import MapRefineOptions, map_refine
from memory_kg.types.entities import ResolvedEntity
from memory_kg.types.facts import EnrichedFact, ResolvedFact, TemporalInfo
from memory_kg.types.results import Action
from memory_kg.types.state import IngestionState, StatePatch
from memory_kg.utils.dates import normalize_iso_datetime
from memory_kg.utils.parsing import parse_json_array

if TYPE_CHECKING:
    from memory_kg.config import KGConfig
    from memory_kg.providers.base import LLMProvider

logger = logging.getLogger(__name__)

MAX_MODEL_TOKENS = 10000
MAX_RESPONSE_TOKENS = 4096
LISTING_LABEL = "Source"

_TEMPORAL_SYSTEM_PROMPT = """\
Extract dates and times directly tied to when the relationships in the
provided facts were established, changed or ended.

Only use time information stated in relation to the fact. Do not guess.

Definitions:
- valid_at: when the relationship became true or was established
- invalid_at: when the relationship stopped being true or ended

## Rules
1. ISO 8601 datetimes (YYYY-MM-DDTHH:MM:SS.SSSSSSZ)
2. The REFERENCE TIMESTAMP is "now" for relative references
   ("2 years ago", "last month")
3. A present-tense relationship with no explicit date is valid_at the
   reference timestamp
4. Date without time: midnight. Year only: January 1st at midnight
5. Always include a time zone offset (Z when none is given)
6. No temporal information: both fields null
7. One entry per fact, in the order listed

Return a JSON array:
[
  {
    "valid_at": "YYYY-MM-DDTHH:MM:SS.SSSSSSZ or null",
    "invalid_at": "YYYY-MM-DDTHH:MM:SS.SSSSSSZ or null"
  }
]"""

_JSON_HINT = (
    "Please ensure the response is a valid JSON array with valid_at and "
    "invalid_at fields in ISO 8601 format."
)


def _is_valid(fact: ResolvedFact, entity_ids: set[str]) -> bool:
    return fact.source_entity_id in entity_ids and fact.destination_entity_id in entity_ids


def _format_facts(facts: Sequence[ResolvedFact], entities: Sequence[ResolvedEntity]) -> str:
    names = {entity.uuid: entity.final_name for entity in entities}
    return "\n".join(
        f"{index}. {LISTING_LABEL}: {names.get(fact.source_entity_id, 'Unknown')}, "
        f"Destination: {names.get(fact.destination_entity_id, 'Unknown')}, "
        f"Relation: {fact.relation_type}, Fact Text: {fact.fact_text}"
        for index, fact in enumerate(facts, 1)
    )


class _ChunkEnricher:
    """Index-aligned build_user/parse pair over the numbered fact listing."""

    def __init__(self, facts: Sequence[ResolvedFact], context: str) -> None:
        self._facts = list(facts)
        self._context = context
        self._indices: list[int] = []

    def build_user(
        self,
        chunk: str,
        previous: Sequence[EnrichedFact],
        error_context: str | None,
    ) -> str:
        self._indices = numbered_indices(chunk, LISTING_LABEL, len(self._facts))
        prompt = f"{self._context}\n<FACTS>\n{chunk}\n</FACTS>"
        return prompt + error_block(
            error_context,
            "Please fix the JSON format and ensure all temporal information is properly extracted.",
        )

    def parse(self, content: str) -> list[EnrichedFact]:
        items = parse_json_array(content).unwrap()
        enriched: list[EnrichedFact] = []
        for position, index in enumerate(self._indices):
            item = items[position] if position < len(items) else None
            temporal = TemporalInfo()
            if isinstance(item, dict):
                temporal = TemporalInfo(
                    valid_at=normalize_iso_datetime(item.get("valid_at")),
                    invalid_at=normalize_iso_datetime(item.get("invalid_at")),
                )
            enriched.append(EnrichedFact.from_resolved(self._facts[index], temporal))
        return enriched


async def extract_temporal(
    state: IngestionState,
    llm: "LLMProvider",
    config: "KGConfig",
    cancel_event: asyncio.Event | None = None,
) -> StatePatch:
    """
    Attach temporal info to every resolved fact.

    Returns:
        Patch with enriched_facts (one per resolved fact, same order) and an action
    """
    facts = state.resolved_facts
    if not facts:
        return {
            "enriched_facts": [],
            "actions": [
                Action(
                    name="Temporal Extraction Skipped",
                    description="No facts to process for temporal information",
                    metadata={"total_facts": 0},
                )
            ],
        }

    entity_ids = {entity.uuid for entity in state.resolved_entities}
    targets = [fact for fact in facts if not fact.is_existing and _is_valid(fact, entity_ids)]
    invalid_count = sum(1 for fact in facts if not _is_valid(fact, entity_ids))
    temporal_by_uuid: dict[str, TemporalInfo] = {}
    errors: list[str] = []

    if targets and not llm.is_ready():
        message = "LLM service is not ready, skipping temporal extraction"
        logger.error(message)
        errors.append(message)
    elif targets:
        context = (
            f"{build_content_section(state)}\n\n"
            f"<REFERENCE TIMESTAMP>\n{state.reference_timestamp}\n</REFERENCE TIMESTAMP>"
        )
        enricher = _ChunkEnricher(targets, context)
        enriched_targets = await map_refine(
            llm,
            _TEMPORAL_SYSTEM_PROMPT,
            enricher.build_user,
            enricher.parse,
            _format_facts(targets, state.resolved_entities),
            MapRefineOptions(
                max_model_tokens=MAX_MODEL_TOKENS,
                max_response_tokens=MAX_RESPONSE_TOKENS,
                temperature=0.0,
                max_retries=config.map_refine_max_retries,
                dedupe_by=lambda fact: fact.uuid,
                on_error=json_retry_handler("temporal_extraction", _JSON_HINT),
                cancel_event=cancel_event,
            ),
        )
        temporal_by_uuid = {fact.uuid: fact.temporal for fact in enriched_targets}

    enriched = [
        EnrichedFact.from_resolved(fact, temporal_by_uuid.get(fact.uuid)) for fact in facts
    ]
    with_temporal = sum(
        1 for fact in enriched if fact.temporal.valid_at or fact.temporal.invalid_at
    )
    logger.info(
        f"Enriched {len(enriched)} facts. {with_temporal} have temporal information"
    )

    patch: StatePatch = {
        "enriched_facts": enriched,
        "actions": [
            Action(
                name="Temporal Extraction Complete",
                description=(
                    f"Processed {len(enriched)} facts. {with_temporal} have temporal information"
                ),
                metadata={
                    "total_facts": len(enriched),
                    "facts_with_temporal": with_temporal,
                    "invalid_facts": invalid_count,
                },
            )
        ],
    }
    if errors:
        patch["errors"] = errors
    return patch
