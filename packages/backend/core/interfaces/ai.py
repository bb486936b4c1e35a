"""Inference engine interface definitions.

This module defines the contract between the model lifecycle manager and
the native inference engine, allowing different engines (llama.cpp local,
test fakes, etc.) to be swapped transparently.

Resources form a strict ownership chain: an engine loads model handles, a
model handle creates inference and embedding contexts, and an inference
context hosts a chat session. Each link must be disposed before the link
it was created from.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import AsyncIterator


@dataclass
class ChatMessage:
    """A message in a chat conversation."""

    role: str  # system, user, assistant
    content: str


@dataclass
class ChatOptions:
    """Generation options. Unset fields fall back to configured defaults."""

    max_tokens: int | None = None
    temperature: float | None = None
    top_p: float | None = None

    def resolved(self, defaults: "ChatOptions") -> "ChatOptions":
        """Return a copy with unset fields taken from ``defaults``."""
        return ChatOptions(
            max_tokens=self.max_tokens if self.max_tokens is not None else defaults.max_tokens,
            temperature=self.temperature if self.temperature is not None else defaults.temperature,
            top_p=self.top_p if self.top_p is not None else defaults.top_p,
        )


class IChatSession(ABC):
    """Conversation bound to one inference context.

    Holds the system prompt and the accumulated turns.
    """

    @abstractmethod
    async def prompt(self, text: str, options: ChatOptions) -> str:
        """Send a user turn and return the full assistant reply."""
        ...

    @abstractmethod
    def prompt_stream(self, text: str, options: ChatOptions) -> AsyncIterator[str]:
        """Send a user turn and yield reply fragments in order."""
        ...

    @abstractmethod
    async def dispose(self) -> None:
        ...


class IInferenceContext(ABC):
    """Generation context created from a model handle."""

    @abstractmethod
    async def create_chat_session(self, system_prompt: str) -> IChatSession:
        ...

    @abstractmethod
    async def dispose(self) -> None:
        ...


class IEmbeddingContext(ABC):
    """Short-lived embedding-mode context."""

    @abstractmethod
    async def embed(self, text: str) -> list[float]:
        """Compute one dense vector for ``text``."""
        ...

    @abstractmethod
    async def dispose(self) -> None:
        ...


class IModelHandle(ABC):
    """A model materialized by the engine from an artifact on disk."""

    @abstractmethod
    async def create_context(self, context_size: int) -> IInferenceContext:
        """Create a generation context with the given window size."""
        ...

    @abstractmethod
    async def create_embedding_context(self) -> IEmbeddingContext:
        ...

    @abstractmethod
    async def dispose(self) -> None:
        ...


class IInferenceEngine(ABC):
    """Interface for a native inference engine.

    Implementations can wrap:
    - llama.cpp (local)
    - in-memory fakes for tests
    """

    @abstractmethod
    async def initialize(self) -> None:
        """Prepare the engine backend. Safe to call more than once.

        Raises:
            EngineError: If the backend cannot be initialized
        """
        ...

    @abstractmethod
    async def load_model(self, model_path: Path, gpu_layers: int) -> IModelHandle:
        """Materialize a model handle from an artifact.

        Args:
            model_path: Path to the model weights
            gpu_layers: Layers to offload (-1 = all, 0 = CPU only)

        Returns:
            Loaded model handle

        Raises:
            EngineError: If the artifact cannot be loaded
        """
        ...

    @abstractmethod
    def is_available(self) -> bool:
        """Check whether the engine backend is installed."""
        ...

    @abstractmethod
    async def close(self) -> None:
        """Release engine-wide resources."""
        ...
