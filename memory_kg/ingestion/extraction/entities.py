"""
Entity Extraction

First stage of the ingestion pipeline. Runs the captured text through
map_refine and returns the named entities it mentions.

Two prompt variants:
    - Standard: precise, clean identifiers for web pages, selections and raw text
    - Personal note (source_type "user_input"): maximal extraction, with
      first-person pronouns mapped onto the graph owner entity

Example:
    >>> patch = await extract_entities(state, llm, config)
    >>> print(len(patch["extracted_entities"]))
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence
from typing import TYPE_CHECKING, Any

from memory_kg.errors import LLMNotReadyError, ResponseParseError
from memory_kg.ingestion.context import (
    build_content_section,
    error_block,
    json_retry_handler,
)
from memory_kg.ingestion.map_refine import MapRefineOptions, map_refine
from memory_kg.types.entities import ExtractedEntity
from memory_kg.types.results import Action
from memory_kg.types.state import IngestionState, StatePatch
from memory_kg.utils.parsing import extract_field_values, parse_json_array
from memory_kg.utils.text import clean_entity_name, is_first_person

if TYPE_CHECKING:
    from memory_kg.config import KGConfig
    from memory_kg.providers.base import LLMProvider

logger = logging.getLogger(__name__)

MAX_MODEL_TOKENS = 10000
MAX_RESPONSE_TOKENS = 4096
USER_NODE_TYPE = "USER"


# -----------------------------------------------------------------------------
# LLM Prompts
# -----------------------------------------------------------------------------

_STANDARD_SYSTEM_PROMPT = """\
You extract entities for a knowledge graph. Pull clean, precise entity nodes
out of the provided CONTENT.

## Naming rules
1. Names are bare identifiers with no descriptive wrapper text.
   Bad: "the company Apple", "a person named John", "repository called MyProject"
   Good: "Apple", "John Smith", "MyProject"
2. Drop articles ("the", "a", "an"), classifying prefixes and introductory
   phrases such as "named", "called" or "known as".
3. Use the most recognized official name. Prefer full names over
   abbreviations when the full form is better known. For URLs or paths keep
   only the meaningful identifier.

## Node types
- UPPER_SNAKE_CASE labels that are specific but reusable
  (PERSON, COMPANY, PROGRAMMING_LANGUAGE, RESEARCH_PAPER, CITY, CONFERENCE)
- Invent a new type when no common one fits

## Guidelines
1. Extract every significant entity mentioned or implied
2. Web content: authors, companies, technologies, tools
3. Conversations: speakers, topics, technologies discussed
4. Do not extract actions, relationships or dates
5. Use full names, never pronouns
6. Put disambiguating context in the summary

Return a JSON array:
[
  {
    "name": "Clean Entity Name",
    "summary": "Brief description with context",
    "nodeType": "CATEGORY_TYPE",
    "attributes": {}
  }
]"""

_PERSONAL_SYSTEM_PROMPT = """\
You extract entities for a PERSONAL knowledge graph. The content is something
{owner} wants to remember, so extract as much knowledge as possible.

## First-person references
- "I", "me", "my", "myself" and "mine" refer to "{owner}"
- Always include a "{owner}" entity with nodeType "USER" when the text
  speaks in the first person

## Be comprehensive
- People, organizations, places, concepts, technologies, tools, methods
- Preferences, opinions, feelings, goals, skills, experiences, memories
- Products, brands and services used or mentioned
- Activities, hobbies, interests and projects
- Implicit entities that are implied but not stated

## Personal node types
USER, PREFERENCE, EXPERIENCE, SKILL, GOAL, OPINION, MEMORY, RELATIONSHIP,
plus any UPPER_SNAKE_CASE type that fits better.

Return a JSON array:
[
  {{
    "name": "Clean Entity Name",
    "summary": "Brief description with personal context",
    "nodeType": "CATEGORY_TYPE",
    "attributes": {{}}
  }}
]"""

_PERSONAL_INSTRUCTION = (
    "This is a note the owner wants to remember. Extract maximum knowledge "
    'and convert "I/me/my" references to "{owner}".'
)

_JSON_HINT = "Please ensure the response is a valid JSON array with proper syntax and structure."


def system_prompt_for(personal: bool, owner_name: str) -> str:
    if personal:
        return _PERSONAL_SYSTEM_PROMPT.format(owner=owner_name)
    return _STANDARD_SYSTEM_PROMPT


# -----------------------------------------------------------------------------
# Parsing
# -----------------------------------------------------------------------------


def _to_entity(
    raw_name: str,
    summary: Any,
    node_type: Any,
    attributes: Any,
    *,
    personal: bool,
    owner_name: str,
) -> ExtractedEntity | None:
    """Clean one parsed entity; None when nothing is left of its name."""
    name = clean_entity_name(raw_name, personal=personal, owner_name=owner_name)
    if not name:
        return None

    if personal and is_first_person(raw_name):
        label = USER_NODE_TYPE
    elif isinstance(node_type, str) and node_type.strip():
        label = node_type.strip().upper()
    else:
        label = "OTHER"

    return ExtractedEntity(
        name=name,
        summary=summary if isinstance(summary, str) and summary.strip() else None,
        node_type=label,
        attributes=attributes if isinstance(attributes, dict) else {},
    )


def parse_entities(
    content: str,
    *,
    personal: bool = False,
    owner_name: str = "Graph Owner",
) -> list[ExtractedEntity]:
    """
    Parse an entity-extraction response.

    JSON array first; if that fails, any `name` fields recoverable from the
    text become OTHER entities.

    Raises:
        ResponseParseError: If neither tier recovers anything
    """
    result = parse_json_array(content)
    entities: list[ExtractedEntity] = []

    if result.ok:
        for item in result.items:
            if not isinstance(item, dict):
                continue
            raw_name = item.get("name") or "Unknown Entity"
            entity = _to_entity(
                str(raw_name),
                item.get("summary"),
                item.get("nodeType") or item.get("node_type"),
                item.get("attributes"),
                personal=personal,
                owner_name=owner_name,
            )
            if entity is not None:
                entities.append(entity)
        return entities

    names = extract_field_values(content, "name")
    if not names:
        raise ResponseParseError(result.error or "No entities found in response")

    logger.debug(f"Entity response was not valid JSON, recovered {len(names)} name(s)")
    for raw_name in names:
        entity = _to_entity(
            raw_name, None, None, None, personal=personal, owner_name=owner_name
        )
        if entity is not None:
            entities.append(entity)
    return entities


# -----------------------------------------------------------------------------
# Stage
# -----------------------------------------------------------------------------


def _build_user_prompt(
    chunk: str,
    previous: Sequence[ExtractedEntity],
    error_context: str | None,
    *,
    personal: bool,
    owner_name: str,
) -> str:
    previous_names = "\n".join(f" * {entity.name}" for entity in previous)
    prompt = f"<PREVIOUS RESULT>\n{previous_names}\n</PREVIOUS RESULT>\n<CHUNK>\n{chunk}\n</CHUNK>"

    if personal:
        prompt += (
            "\n\nREMINDER: This is a personal note. Extract maximum entities and "
            f'convert "I/me/my" to "{owner_name}".'
        )

    hint = "Please fix the JSON format and ensure all entities are properly extracted."
    if personal:
        hint += f" Remember to convert first-person pronouns to '{owner_name}'."
    return prompt + error_block(error_context, hint)


async def extract_entities(
    state: IngestionState,
    llm: "LLMProvider",
    config: "KGConfig",
    cancel_event: asyncio.Event | None = None,
) -> StatePatch:
    """
    Extract entities from the captured text.

    Args:
        state: Current ingestion state
        llm: Chat provider
        config: Owner name and retry settings
        cancel_event: Stops map_refine before its next LLM call

    Returns:
        Patch with extracted_entities and an action

    Raises:
        LLMNotReadyError: If the provider is not ready
    """
    if not llm.is_ready():
        raise LLMNotReadyError("LLM service is not ready")

    personal = state.is_personal_note
    owner_name = config.owner_entity_name
    logger.info(
        f"Starting entity extraction ({'personal note' if personal else 'standard'} mode)"
    )

    instruction = _PERSONAL_INSTRUCTION.format(owner=owner_name) if personal else None
    source_text = build_content_section(state, instruction)

    entities = await map_refine(
        llm,
        system_prompt_for(personal, owner_name),
        lambda chunk, previous, error_context: _build_user_prompt(
            chunk, previous, error_context, personal=personal, owner_name=owner_name
        ),
        lambda content: parse_entities(content, personal=personal, owner_name=owner_name),
        source_text,
        MapRefineOptions(
            max_model_tokens=MAX_MODEL_TOKENS,
            max_response_tokens=MAX_RESPONSE_TOKENS,
            temperature=0.2 if personal else 0.1,
            max_retries=config.map_refine_max_retries,
            dedupe_by=lambda entity: entity.name.lower(),
            on_error=json_retry_handler("entity_extraction", _JSON_HINT),
            cancel_event=cancel_event,
        ),
    )

    logger.info(f"Extracted {len(entities)} entities")

    return {
        "extracted_entities": entities,
        "actions": [
            Action(
                name="Entity Extraction Complete",
                description=f"Extracted {len(entities)} entities from content",
                metadata={"entity_count": len(entities)},
            )
        ],
    }
