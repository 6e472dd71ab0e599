"""
OpenAI LLM Provider (LangChain-based)

Implements LLMProvider using LangChain's ChatOpenAI.

Models:
    - gpt-4o-mini: Fast and cheap, the default for ingestion
    - gpt-4o: Higher quality extraction

Example:
    >>> provider = OpenAILLMProvider(api_key="sk-...", model="gpt-4o-mini")
    >>> completion = await provider.chat_completions(
    ...     [ChatMessage(role="user", content="What is 2+2?")],
    ...     max_tokens=16,
    ...     temperature=0.0,
    ... )
    >>> print(completion.content)
    "4"
"""

from __future__ import annotations

import time
from typing import TYPE_CHECKING, Any

from memory_kg.config.pricing import estimate_llm_cost_usd
from memory_kg.providers.base import ChatCompletion, ChatMessage, LLMProvider
from memory_kg.types.results import CostUsageRecord
from memory_kg.utils.cost_telemetry import current_stage, record_usage
from memory_kg.utils.token_count import count_chat_tokens, count_text_tokens

if TYPE_CHECKING:
    from langchain_core.messages import BaseMessage
    from langchain_openai import ChatOpenAI

DEFAULT_MODEL = "gpt-4o-mini"
DEFAULT_MAX_MODEL_TOKENS = 16000


def _as_int(value: Any) -> int | None:
    """Best-effort int coercion."""
    if value is None:
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _extract_token_usage(response: Any) -> tuple[int | None, int | None, int | None]:
    """
    Extract token usage from LangChain response metadata.

    Returns:
        (input_tokens, output_tokens, total_tokens)
    """
    if response is None:
        return None, None, None

    usage = getattr(response, "usage_metadata", None)
    if isinstance(usage, dict):
        input_tokens = _as_int(usage.get("input_tokens"))
        output_tokens = _as_int(usage.get("output_tokens"))
        total_tokens = _as_int(usage.get("total_tokens"))
        if any(v is not None for v in (input_tokens, output_tokens, total_tokens)):
            return input_tokens, output_tokens, total_tokens

    response_metadata = getattr(response, "response_metadata", None)
    if isinstance(response_metadata, dict):
        token_usage = response_metadata.get("token_usage") or response_metadata.get("usage")
        if isinstance(token_usage, dict):
            input_tokens = _as_int(token_usage.get("prompt_tokens"))
            output_tokens = _as_int(token_usage.get("completion_tokens"))
            total_tokens = _as_int(token_usage.get("total_tokens"))
            if any(v is not None for v in (input_tokens, output_tokens, total_tokens)):
                return input_tokens, output_tokens, total_tokens

    return None, None, None


def _get_chat_openai(
    api_key: str | None = None,
    model: str = DEFAULT_MODEL,
    temperature: float = 0.0,
) -> "ChatOpenAI":
    """
    Get a ChatOpenAI instance.

    Uses lazy import so the package imports without langchain-openai loaded.

    Raises:
        ImportError: If langchain-openai package is not installed
    """
    try:
        from langchain_openai import ChatOpenAI
    except ImportError:
        raise ImportError(
            "OpenAI provider requires the 'langchain-openai' package. "
            "Install with: pip install memory-kg"
        )

    kwargs: dict[str, Any] = {"model": model, "temperature": temperature}
    if api_key:
        kwargs["api_key"] = api_key

    return ChatOpenAI(**kwargs)


def _to_langchain_messages(messages: list[ChatMessage]) -> list["BaseMessage"]:
    from langchain_core.messages import AIMessage, HumanMessage, SystemMessage

    converted: list[BaseMessage] = []
    for message in messages:
        if message.role == "system":
            converted.append(SystemMessage(content=message.content))
        elif message.role == "assistant":
            converted.append(AIMessage(content=message.content))
        else:
            converted.append(HumanMessage(content=message.content))
    return converted


class OpenAILLMProvider(LLMProvider):
    """
    OpenAI chat provider implemented on LangChain's ChatOpenAI.

    Args:
        api_key: OpenAI API key. If None, uses OPENAI_API_KEY environment variable.
        model: Model to use (default: "gpt-4o-mini")
        max_model_tokens: Context window reported to token-budgeted stages
    """

    def __init__(
        self,
        api_key: str | None = None,
        model: str = DEFAULT_MODEL,
        max_model_tokens: int = DEFAULT_MAX_MODEL_TOKENS,
    ) -> None:
        self._api_key = api_key
        self._model = model
        self._max_model_tokens = max_model_tokens

    @property
    def model_name(self) -> str:
        return self._model

    def is_ready(self) -> bool:
        """Ready when an API key is configured (explicitly or via env)."""
        if self._api_key:
            return True
        import os

        return bool(os.getenv("OPENAI_API_KEY"))

    async def get_max_model_tokens(self) -> int:
        return self._max_model_tokens

    async def chat_completions(
        self,
        messages: list[ChatMessage],
        *,
        max_tokens: int,
        temperature: float,
        stream: bool = False,
    ) -> ChatCompletion:
        """
        Run one chat completion.

        Streaming is not used by the pipeline; stream=True still returns the
        complete response.
        """
        start = time.perf_counter_ns()

        base_client = _get_chat_openai(
            api_key=self._api_key,
            model=self._model,
            temperature=temperature,
        )
        client = base_client.bind(max_tokens=max_tokens)

        response = await client.ainvoke(_to_langchain_messages(messages))
        output_text = str(response.content)

        input_tokens, output_tokens, total_tokens = _extract_token_usage(response)
        estimated = False

        if input_tokens is None:
            input_tokens = count_chat_tokens((m.content for m in messages), self._model)
            estimated = True

        if output_tokens is None:
            output_tokens = count_text_tokens(output_text, self._model)
            estimated = True

        if total_tokens is None:
            total_tokens = input_tokens + output_tokens

        estimated_cost, pricing_found = estimate_llm_cost_usd(
            self._model,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
        )
        elapsed_ms = (time.perf_counter_ns() - start) // 1_000_000

        record_usage(
            CostUsageRecord(
                provider="openai",
                model=self._model,
                operation="chat_completions",
                stage=current_stage(),
                input_tokens=input_tokens,
                output_tokens=output_tokens,
                total_tokens=total_tokens,
                estimated_cost_usd=estimated_cost,
                latency_ms=int(elapsed_ms),
                estimated=estimated,
                metadata={
                    "temperature": temperature,
                    "max_tokens": max_tokens,
                    "pricing_found": pricing_found,
                },
            )
        )
        return ChatCompletion.from_text(output_text, model=self._model)
