"""
Map-Refine Engine

Generic token-budgeted loop every LLM stage is built on:

1. Split the source text into overlapping chunks that fit the model window.
2. For each chunk, in order, ask the LLM for items, passing the items found
   so far so the model can refine rather than repeat them.
3. Merge each chunk's items into the running result (first-seen key wins
   when a dedupe key is given).

Failures never escape: LLM and parse errors are retried with an error
context fed back into the prompt, and a chunk that keeps failing is
abandoned (logged) while the loop moves on. Prompts that would overflow
the window are shrunk by truncating the previous results or by splitting
the chunk further.
"""

from __future__ import annotations

import asyncio
import json
import logging
import math
import re
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

from pydantic import BaseModel

from memory_kg.errors import ResponseParseError
from memory_kg.providers.base import ChatMessage, LLMProvider
from memory_kg.utils.token_count import estimate_tokens

logger = logging.getLogger(__name__)

T = TypeVar("T")

BuildUser = Callable[[str, Sequence[T], str | None], str]
ParseFn = Callable[[str], list[T]]
OnError = Callable[[Exception, int, str], str | None]

PROMPT_RESERVE_RATIO = 0.25
MIN_CHUNK_BUDGET = 256
SMALL_CHUNK_TOKENS = 100
SAFETY_MARGIN_TOKENS = 100
MAX_SPLIT_OVERLAP_TOKENS = 32
CHARS_PER_TOKEN = 4

_WHITESPACE_SPLIT = re.compile(r"(\s+)")


@dataclass
class MapRefineOptions(Generic[T]):
    """
    Options for one map_refine run.

    Attributes:
        max_model_tokens: Total model window (prompt + response)
        max_response_tokens: Tokens reserved for the response
        overlap_tokens: Overlap between consecutive chunks
        temperature: Sampling temperature for every call
        dedupe_by: Merge key; first item seen with a key wins
        max_retries: Retries per chunk (attempts = max_retries + 1)
        on_error: Called as on_error(error, attempt, chunk) before a retry;
            returning None abandons the chunk, a string becomes the next
            attempt's error context
        cancel_event: Stop before the next LLM call once set
    """

    max_model_tokens: int
    max_response_tokens: int = 512
    overlap_tokens: int = 64
    temperature: float = 0.1
    dedupe_by: Callable[[T], str] | None = None
    max_retries: int = 2
    on_error: OnError | None = None
    cancel_event: asyncio.Event | None = None


def chunk_by_tokens(
    text: str,
    max_model_tokens: int,
    max_response_tokens: int = 512,
    overlap_tokens: int = 64,
) -> list[str]:
    """
    Split text into chunks that fit the prompt budget.

    budget = max(256, max_model_tokens - max_response_tokens - ceil(0.25 * max_model_tokens))

    Whitespace is kept so chunks concatenate back to the input. Each chunk
    after the first starts with the last overlap_tokens * 4 characters of
    the previous chunk, unless that tail would be the whole previous chunk.
    """
    if not text:
        return []

    reserved = math.ceil(max_model_tokens * PROMPT_RESERVE_RATIO)
    budget = max(MIN_CHUNK_BUDGET, max_model_tokens - max_response_tokens - reserved)
    overlap_chars = max(0, overlap_tokens) * CHARS_PER_TOKEN

    chunks: list[str] = []
    current: list[str] = []
    current_tokens = 0

    for piece in _WHITESPACE_SPLIT.split(text):
        if not piece:
            continue
        piece_tokens = estimate_tokens(piece)
        if current_tokens + piece_tokens > budget and current:
            chunk = "".join(current)
            chunks.append(chunk)
            tail = chunk[max(0, len(chunk) - overlap_chars):]
            # A tail covering the whole chunk would re-emit it in the next chunk
            if len(tail) == len(chunk):
                tail = ""
            current = [tail] if tail else []
            current_tokens = estimate_tokens(tail)
        current.append(piece)
        current_tokens += piece_tokens

    if current:
        chunks.append("".join(current))
    return chunks


def _summarize(item: Any, dedupe_by: Callable[[Any], str] | None) -> str:
    if dedupe_by is not None:
        return dedupe_by(item)
    if isinstance(item, BaseModel):
        return item.model_dump_json()
    return json.dumps(item, default=str)


def _truncate_previous(
    results: list[T],
    budget: int,
    dedupe_by: Callable[[T], str] | None,
) -> list[T]:
    """Keep the newest results whose summaries fit within budget tokens."""
    kept: list[T] = []
    used = 0
    for item in reversed(results):
        cost = estimate_tokens(_summarize(item, dedupe_by))
        if used + cost > budget:
            break
        kept.append(item)
        used += cost
    kept.reverse()
    return kept


def merge_results(
    existing: list[T],
    new_items: list[T],
    dedupe_by: Callable[[T], str] | None = None,
) -> list[T]:
    """Append new_items to existing; with dedupe_by, first-seen key wins."""
    if dedupe_by is None:
        return [*existing, *new_items]

    seen = {dedupe_by(item) for item in existing}
    merged = list(existing)
    for item in new_items:
        key = dedupe_by(item)
        if key not in seen:
            seen.add(key)
            merged.append(item)
    return merged


async def _complete(
    llm: LLMProvider,
    system_prompt: str,
    user_prompt: str,
    parse: ParseFn[T],
    max_tokens: int,
    temperature: float,
) -> list[T]:
    messages = [
        ChatMessage(role="system", content=system_prompt),
        ChatMessage(role="user", content=user_prompt),
    ]
    response = await llm.chat_completions(
        messages,
        max_tokens=max_tokens,
        temperature=temperature,
        stream=False,
    )
    content = response.content if response is not None else None
    if not content:
        raise ResponseParseError("Invalid LLM response format: no content")
    return parse(content)


async def map_refine(
    llm: LLMProvider,
    system_prompt: str,
    build_user: BuildUser[T],
    parse: ParseFn[T],
    source_text: str,
    options: MapRefineOptions[T],
) -> list[T]:
    """
    Run the map-refine loop over source_text.

    Args:
        llm: Chat provider
        system_prompt: System message for every call
        build_user: build_user(chunk, previous_results, error_context) -> user prompt
        parse: Turns response content into items; raises on bad output
        source_text: Text to process
        options: Budget, retry and merge settings

    Returns:
        Items merged across all successfully processed chunks
    """
    max_model = options.max_model_tokens
    max_response = options.max_response_tokens
    chunks = chunk_by_tokens(source_text, max_model, max_response, options.overlap_tokens)
    system_tokens = estimate_tokens(system_prompt)
    results: list[T] = []

    logger.debug(
        f"map_refine: {len(chunks)} chunk(s), system prompt ~{system_tokens} tokens, "
        f"window {max_model}/{max_response}"
    )

    index = 0
    while index < len(chunks):
        chunk = chunks[index]
        error_context: str | None = None
        attempt = 0

        while True:
            if options.cancel_event is not None and options.cancel_event.is_set():
                logger.info(f"map_refine cancelled before chunk {index}")
                return results

            previous: list[T] = results
            user_prompt = build_user(chunk, previous, error_context)

            if system_tokens + estimate_tokens(user_prompt) + max_response > max_model:
                chunk_tokens = estimate_tokens(chunk)
                fits = False
                if chunk_tokens < SMALL_CHUNK_TOKENS and results:
                    budget = (
                        max_model - max_response - system_tokens - chunk_tokens
                        - SAFETY_MARGIN_TOKENS
                    )
                    previous = _truncate_previous(results, budget, options.dedupe_by)
                    user_prompt = build_user(chunk, previous, error_context)
                    fits = system_tokens + estimate_tokens(user_prompt) + max_response <= max_model

                if not fits:
                    if chunk_tokens < SMALL_CHUNK_TOKENS:
                        split_budget = (
                            max_model - system_tokens - max_response - SAFETY_MARGIN_TOKENS
                        )
                    else:
                        split_budget = (max_model - system_tokens - max_response) // 2
                    sub_chunks = chunk_by_tokens(
                        chunk,
                        split_budget,
                        max_response_tokens=0,
                        overlap_tokens=min(options.overlap_tokens, MAX_SPLIT_OVERLAP_TOKENS),
                    )
                    shrinks = all(len(sub) < len(chunk) for sub in sub_chunks)
                    if len(sub_chunks) > 1 and shrinks:
                        chunks[index:index + 1] = sub_chunks
                        chunk = chunks[index]
                        error_context = None
                        attempt = 0
                        continue
                    logger.warning(
                        f"Abandoning chunk {index}: prompt exceeds {max_model} tokens "
                        "and the chunk cannot be split further"
                    )
                    break

            try:
                items = await _complete(
                    llm, system_prompt, user_prompt, parse, max_response, options.temperature
                )
            except Exception as e:
                attempt += 1
                logger.debug(f"map_refine chunk {index} attempt {attempt} failed: {e}")
                if attempt > options.max_retries:
                    logger.warning(
                        f"Abandoning chunk {index} after {attempt} failed attempt(s): {e}"
                    )
                    break
                if options.on_error is not None:
                    error_context = options.on_error(e, attempt, chunk)
                    if error_context is None:
                        logger.warning(f"Abandoning chunk {index}: error handler declined retry")
                        break
                else:
                    error_context = f"Previous attempt failed with error: {e}"
                continue

            results = merge_results(results, items, options.dedupe_by)
            break

        index += 1

    return results
