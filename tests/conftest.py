"""Shared fixtures: a scripted chat LLM, a deterministic embedder and an in-memory store."""

from __future__ import annotations

import string
from collections.abc import Iterable

import pytest
import pytest_asyncio

from memory_kg.config import KGConfig
from memory_kg.providers.base import (
    ChatCompletion,
    ChatMessage,
    Embedder,
    EmbeddingService,
    LLMProvider,
)
from memory_kg.storage.duckdb import DuckDBGraphStore
from memory_kg.types.results import KnowledgeGraphInput
from memory_kg.types.state import IngestionState


class ScriptedLLM(LLMProvider):
    """
    LLMProvider returning queued responses in order.

    A queued Exception is raised instead of returned. Once the queue is
    empty every call answers with `default`.
    """

    def __init__(
        self,
        responses: Iterable[str | Exception] = (),
        *,
        ready: bool = True,
        max_model_tokens: int = 16000,
        default: str = "[]",
    ) -> None:
        self.responses = list(responses)
        self.ready = ready
        self.max_model_tokens = max_model_tokens
        self.default = default
        self.calls: list[dict] = []

    @property
    def model_name(self) -> str:
        return "scripted"

    def is_ready(self) -> bool:
        return self.ready

    async def get_max_model_tokens(self) -> int:
        return self.max_model_tokens

    async def chat_completions(
        self,
        messages: list[ChatMessage],
        *,
        max_tokens: int,
        temperature: float,
        stream: bool = False,
    ) -> ChatCompletion:
        self.calls.append(
            {
                "system": messages[0].content,
                "user": messages[-1].content,
                "max_tokens": max_tokens,
                "temperature": temperature,
            }
        )
        response = self.responses.pop(0) if self.responses else self.default
        if isinstance(response, Exception):
            raise response
        return ChatCompletion.from_text(response, model=self.model_name)


class LetterEmbedder(Embedder):
    """Letter-frequency vectors: similar spellings give similar vectors."""

    def __init__(self, ready: bool = True, fail: bool = False) -> None:
        self.ready = ready
        self.fail = fail
        self.texts: list[str] = []

    def is_ready(self) -> bool:
        return self.ready

    async def text_to_vector(self, text: str) -> list[float]:
        if self.fail:
            raise RuntimeError("embedding backend unavailable")
        self.texts.append(text)
        lowered = text.lower()
        return [float(lowered.count(letter)) for letter in string.ascii_lowercase] + [1.0]


class FakeEmbeddingService(EmbeddingService):
    def __init__(self, embedder: Embedder | None = None) -> None:
        self.embedder = embedder

    async def get(self, name: str) -> Embedder | None:
        return self.embedder if name == "default" else None


@pytest.fixture
def config() -> KGConfig:
    return KGConfig(owner_entity_name="Graph Owner", map_refine_max_retries=2)


@pytest.fixture
def embeddings() -> FakeEmbeddingService:
    return FakeEmbeddingService(LetterEmbedder())


@pytest_asyncio.fixture
async def store():
    graph_store = DuckDBGraphStore(":memory:")
    await graph_store.initialize()
    yield graph_store
    await graph_store.close()


def make_state(content: str = "", title: str = "Test Page", **kwargs) -> IngestionState:
    """Ingestion state built the way the pipeline builds it."""
    kwargs.setdefault("page_id", "page-1")
    kwargs.setdefault("reference_timestamp", "2024-03-01T12:00:00+00:00")
    return IngestionState.from_input(KnowledgeGraphInput(content=content, title=title, **kwargs))
