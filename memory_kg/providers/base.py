"""
Abstract Provider Interfaces

Base classes for the collaborators the pipeline is given: a chat LLM and a
named registry of text embedders.
"""

from abc import ABC, abstractmethod
from typing import Literal

from pydantic import BaseModel, Field

Role = Literal["system", "user", "assistant"]


class ChatMessage(BaseModel):
    """One chat message."""

    role: Role
    content: str


class ChatChoice(BaseModel):
    index: int = 0
    message: ChatMessage
    finish_reason: str | None = None


class ChatCompletion(BaseModel):
    """Chat completion response; content lives in choices[0].message.content."""

    model: str = ""
    choices: list[ChatChoice] = Field(default_factory=list)

    @property
    def content(self) -> str | None:
        if not self.choices:
            return None
        return self.choices[0].message.content

    @classmethod
    def from_text(cls, text: str, model: str = "") -> "ChatCompletion":
        return cls(
            model=model,
            choices=[ChatChoice(message=ChatMessage(role="assistant", content=text))],
        )


class LLMProvider(ABC):
    """Abstract interface for chat LLM providers."""

    @abstractmethod
    def is_ready(self) -> bool:
        """Whether the provider can serve requests right now."""
        ...

    @abstractmethod
    async def chat_completions(
        self,
        messages: list[ChatMessage],
        *,
        max_tokens: int,
        temperature: float,
        stream: bool = False,
    ) -> ChatCompletion:
        """Run one chat completion."""
        ...

    @abstractmethod
    async def get_max_model_tokens(self) -> int:
        """Context window size in tokens."""
        ...

    @property
    @abstractmethod
    def model_name(self) -> str:
        """Current model name."""
        ...


class Embedder(ABC):
    """Abstract interface for a single text embedder."""

    @abstractmethod
    def is_ready(self) -> bool:
        ...

    @abstractmethod
    async def text_to_vector(self, text: str) -> list[float]:
        """Embed one text."""
        ...


class EmbeddingService(ABC):
    """Named registry of embedders; the pipeline uses get("default")."""

    @abstractmethod
    async def get(self, name: str) -> Embedder | None:
        ...
