"""
Prompt Context Helpers

Shared pieces of the LLM prompts built by every ingestion stage: the
tagged content section describing the captured text, the retry error
handler handed to map_refine, and the tagged error-context block.
"""

from __future__ import annotations

import asyncio
import logging
import re
from collections.abc import Callable

from memory_kg.types.state import IngestionState

logger = logging.getLogger(__name__)


def build_content_section(
    state: IngestionState,
    instruction: str | None = None,
) -> str:
    """
    Build the tagged description of the captured text.

    Layout (blocks omitted when empty):

        <METADATA>      Title: ... / Source: ...
        <CONTEXT>       previous messages
        <CONTENT>       current message
        <INSTRUCTION>   stage-specific instruction
    """
    section = f"<CONTENT>\n{state.current_message}\n</CONTENT>"

    if state.previous_messages and state.previous_messages.strip():
        section = f"<CONTEXT>\n{state.previous_messages}\n</CONTEXT>\n\n{section}"

    if state.url or state.title:
        metadata = []
        if state.title:
            metadata.append(f"Title: {state.title}")
        if state.url:
            metadata.append(f"Source: {state.url}")
        section = "<METADATA>\n" + "\n".join(metadata) + f"\n</METADATA>\n\n{section}"

    if instruction:
        section += f"\n\n<INSTRUCTION>\n{instruction}\n</INSTRUCTION>"

    return section


def error_block(error_context: str | None, hint: str) -> str:
    """Tagged error context appended to a retried prompt ("" when none)."""
    if not error_context:
        return ""
    return f"\n\n<ERROR_CONTEXT>\n{error_context}\n{hint}\n</ERROR_CONTEXT>"


def json_retry_handler(
    stage: str,
    json_hint: str,
) -> Callable[[Exception, int, str], str]:
    """
    Build a map_refine on_error handler.

    JSON/parse failures get json_hint; anything else gets a generic retry
    message naming the attempt.
    """

    def on_error(error: Exception, attempt: int, chunk: str) -> str:
        logger.warning(f"[{stage}] Parse error on attempt {attempt}: {error}")
        message = str(error)
        if "JSON" in message or "parse" in message.lower():
            return f"JSON parsing failed: {message}. {json_hint}"
        return (
            f"Processing failed on attempt {attempt}: {message}. "
            "Please retry with correct format."
        )

    return on_error


def is_cancelled(cancel_event: asyncio.Event | None) -> bool:
    return cancel_event is not None and cancel_event.is_set()


def numbered_indices(chunk: str, label: str, total: int) -> list[int]:
    """
    Zero-based indices of the `N. {label}:` lines present in a chunk.

    Responses for numbered listings are aligned to these indices so a
    listing split across chunks keeps one-to-one correspondence. A chunk
    holding none of the listing (e.g. only page content) aligns to nothing.
    """
    pattern = re.compile(rf"^(\d+)\. {re.escape(label)}:", re.MULTILINE)
    found: dict[int, None] = {}
    for match in pattern.finditer(chunk):
        index = int(match.group(1)) - 1
        if 0 <= index < total:
            found.setdefault(index)
    return list(found)
