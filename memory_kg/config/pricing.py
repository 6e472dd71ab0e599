"""
Model rates for usage telemetry.

Rates are estimated USD per 1M tokens for the OpenAI models memory-kg can be
configured with (KGConfig.llm_model / KGConfig.embedding_model). Dated
snapshot names reported by the API ("gpt-4o-mini-2024-07-18") are priced as
their base model. Unpriced models cost 0.0 but still report token usage.
"""

from __future__ import annotations

import re
from typing import TYPE_CHECKING, NamedTuple

if TYPE_CHECKING:
    from memory_kg.config.settings import KGConfig

PRICING_VERSION = "2026-10-estimate-v2"


class ModelRate(NamedTuple):
    input_per_million: float
    output_per_million: float = 0.0


# Chat models used for extraction, resolution and temporal enrichment
CHAT_RATES: dict[str, ModelRate] = {
    "gpt-4o-mini": ModelRate(0.15, 0.6),
    "gpt-4o": ModelRate(2.5, 10.0),
    "gpt-4.1-mini": ModelRate(0.4, 1.6),
    "gpt-4.1": ModelRate(2.0, 8.0),
}

# Embedding models used for node names and fact texts
EMBEDDING_RATES: dict[str, ModelRate] = {
    "text-embedding-3-small": ModelRate(0.02),
    "text-embedding-3-large": ModelRate(0.13),
}

_SNAPSHOT_SUFFIX = re.compile(r"-\d{4}-\d{2}-\d{2}$")


def rate_for(model: str, rates: dict[str, ModelRate]) -> ModelRate | None:
    """Rate for model, falling back to its base name for dated snapshots."""
    name = model.strip().lower()
    rate = rates.get(name)
    if rate is None:
        rate = rates.get(_SNAPSHOT_SUFFIX.sub("", name))
    return rate


def estimate_llm_cost_usd(
    model: str,
    *,
    input_tokens: int,
    output_tokens: int,
) -> tuple[float, bool]:
    """
    Estimate the cost of one chat completion.

    Returns:
        (cost_usd, priced) where priced=False means the model has no rate
    """
    rate = rate_for(model, CHAT_RATES)
    if rate is None:
        return 0.0, False
    return (
        input_tokens * rate.input_per_million + output_tokens * rate.output_per_million
    ) / 1_000_000, True


def estimate_embedding_cost_usd(model: str, *, input_tokens: int) -> tuple[float, bool]:
    rate = rate_for(model, EMBEDDING_RATES)
    if rate is None:
        return 0.0, False
    return input_tokens * rate.input_per_million / 1_000_000, True


def unpriced_models(config: "KGConfig") -> list[str]:
    """Configured OpenAI models with no rate; their usage is reported at 0.0 USD."""
    missing: list[str] = []
    if config.llm_provider.lower() == "openai" and rate_for(config.llm_model, CHAT_RATES) is None:
        missing.append(config.llm_model)
    if (
        config.embedding_provider.lower() == "openai"
        and rate_for(config.embedding_model, EMBEDDING_RATES) is None
    ):
        missing.append(config.embedding_model)
    return missing
