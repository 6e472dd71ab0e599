"""
Token counting.

Two estimators live here:

- estimate_tokens: the cheap ceil(chars / 4) estimate used for every
  token budget in the pipeline (chunking, overflow checks). It must stay
  deterministic and provider-independent.
- count_text_tokens / count_chat_tokens: tiktoken-backed counts used only
  for usage telemetry when a provider response carries no usage metadata.
"""

from __future__ import annotations

import math
from collections.abc import Iterable


def estimate_tokens(text: str | None) -> int:
    """Budget estimate: ceil(len(text) / 4), 0 for empty text."""
    if not text:
        return 0
    return math.ceil(len(text) / 4)


def _count_with_tiktoken(text: str, model: str) -> int | None:
    """Count tokens using tiktoken, returning None if unavailable."""
    try:
        import tiktoken
    except ImportError:
        return None

    try:
        encoding = tiktoken.encoding_for_model(model)
    except KeyError:
        encoding = tiktoken.get_encoding("cl100k_base")

    return len(encoding.encode(text))


def count_text_tokens(text: str, model: str) -> int:
    """
    Count tokens for plain text with the model's tokenizer.

    Falls back to the budget estimate when the tokenizer is unavailable.
    """
    tk_count = _count_with_tiktoken(text, model)
    if tk_count is not None:
        return tk_count
    return estimate_tokens(text)


def count_chat_tokens(messages: Iterable[str], model: str) -> int:
    """
    Count tokens for chat-style inputs.

    Adds a small fixed overhead per message for role/control tokens.
    """
    total = 0
    message_count = 0
    for message in messages:
        total += count_text_tokens(message, model)
        message_count += 1

    return total + (message_count * 4)
