"""Llama.cpp inference engine adapter.

Implements IInferenceEngine for local LLM inference using llama-cpp-python.
Uses create_chat_completion() for correct chat template handling.

llama-cpp-python bundles weights and KV cache into one ``Llama`` object, so
the chain is mapped as follows:
- model handle: a vocab-only ``Llama`` that validates the GGUF and provides
  the tokenizer
- inference context: a full ``Llama`` with the requested context window
- embedding context: a throwaway ``Llama`` opened with ``embedding=True``
"""

import asyncio
import gc
import logging
from collections.abc import AsyncIterator
from dataclasses import asdict
from pathlib import Path
from typing import Any

from core.exceptions import EngineError
from core.interfaces import (
    ChatMessage,
    ChatOptions,
    IChatSession,
    IEmbeddingContext,
    IInferenceContext,
    IInferenceEngine,
    IModelHandle,
)

logger = logging.getLogger(__name__)

# Tokens reserved per message for chat template framing
_MESSAGE_OVERHEAD_TOKENS = 8


def _release(llm: Any) -> None:
    """Free a Llama instance and its native buffers."""
    if llm is None:
        return
    close = getattr(llm, "close", None)
    if close is not None:
        try:
            close()
        except Exception:
            logger.warning("Failed to close llama.cpp instance cleanly", exc_info=True)
    del llm
    gc.collect()


def _count_tokens(llm: Any, text: str) -> int:
    """Count tokens with the model's tokenizer, else estimate.

    Uses a conservative 1 token ≈ 3 chars estimate as fallback.
    """
    if llm is not None:
        try:
            return len(llm.tokenize(text.encode("utf-8"), add_bos=False))
        except Exception:
            pass
    return len(text) // 3 + 1


class LlamaCppChatSession(IChatSession):
    """Chat session holding the system prompt and accumulated turns.

    When the history no longer fits the context window the oldest turns
    are dropped; the system prompt and the newest user turn always stay.
    """

    def __init__(self, llm: Any, n_ctx: int, system_prompt: str):
        self._llm = llm
        self._n_ctx = n_ctx
        self._messages: list[ChatMessage] = [
            ChatMessage(role="system", content=system_prompt),
        ]

    def _ensure_open(self) -> Any:
        if self._llm is None:
            raise EngineError("Chat session has been disposed")
        return self._llm

    def _fit_history(self, max_tokens: int) -> None:
        budget = self._n_ctx - max_tokens

        def total() -> int:
            return sum(
                _count_tokens(self._llm, m.content) + _MESSAGE_OVERHEAD_TOKENS
                for m in self._messages
            )

        dropped = 0
        while len(self._messages) > 2 and total() > budget:
            del self._messages[1]
            dropped += 1
        if dropped:
            logger.debug("Dropped %d oldest chat turns to fit %d-token context", dropped, self._n_ctx)

    def _begin_turn(self, text: str, options: ChatOptions) -> Any:
        llm = self._ensure_open()
        self._messages.append(ChatMessage(role="user", content=text))
        self._fit_history(options.max_tokens or 0)
        return llm

    async def prompt(self, text: str, options: ChatOptions) -> str:
        llm = self._begin_turn(text, options)
        try:
            result = await asyncio.to_thread(
                llm.create_chat_completion,
                messages=[asdict(m) for m in self._messages],
                max_tokens=options.max_tokens,
                temperature=options.temperature,
                top_p=options.top_p,
            )
        except Exception as e:
            self._messages.pop()
            raise EngineError(f"Generation failed: {e}") from e

        content = result["choices"][0]["message"]["content"] or ""
        self._messages.append(ChatMessage(role="assistant", content=content))
        return content

    async def prompt_stream(self, text: str, options: ChatOptions) -> AsyncIterator[str]:
        llm = self._begin_turn(text, options)

        try:
            # Create the streaming generator in a thread-safe way
            stream = await asyncio.to_thread(
                llm.create_chat_completion,
                messages=[asdict(m) for m in self._messages],
                max_tokens=options.max_tokens,
                temperature=options.temperature,
                top_p=options.top_p,
                stream=True,
            )
        except Exception as e:
            self._messages.pop()
            raise EngineError(f"Generation failed: {e}") from e

        # Iterate over the synchronous generator using to_thread for each chunk
        def _next_chunk(iterator):
            try:
                return next(iterator)
            except StopIteration:
                return None

        pieces: list[str] = []
        try:
            while True:
                try:
                    chunk = await asyncio.to_thread(_next_chunk, stream)
                except Exception as e:
                    raise EngineError(f"Generation failed mid-stream: {e}") from e
                if chunk is None:
                    break

                delta = chunk["choices"][0].get("delta", {})
                content = delta.get("content") or ""
                if content:
                    pieces.append(content)
                    yield content
        finally:
            # Keep user/assistant turns paired even when the consumer stops early
            self._messages.append(ChatMessage(role="assistant", content="".join(pieces)))

    async def dispose(self) -> None:
        self._messages.clear()
        self._llm = None


class LlamaCppContext(IInferenceContext):
    """Full llama.cpp instance with a pre-allocated KV cache."""

    def __init__(self, llm: Any, n_ctx: int):
        self._llm = llm
        self._n_ctx = n_ctx

    async def create_chat_session(self, system_prompt: str) -> IChatSession:
        if self._llm is None:
            raise EngineError("Inference context has been disposed")
        return LlamaCppChatSession(self._llm, self._n_ctx, system_prompt)

    async def dispose(self) -> None:
        llm, self._llm = self._llm, None
        await asyncio.to_thread(_release, llm)


class LlamaCppEmbeddingContext(IEmbeddingContext):
    """Embedding-mode llama.cpp instance, opened for a single call."""

    def __init__(self, llm: Any):
        self._llm = llm

    async def embed(self, text: str) -> list[float]:
        if self._llm is None:
            raise EngineError("Embedding context has been disposed")
        try:
            vector = await asyncio.to_thread(self._llm.embed, text)
        except Exception as e:
            raise EngineError(f"Embedding failed: {e}") from e

        # Models without pooling return one vector per token; use the mean
        if vector and isinstance(vector[0], list):
            count = len(vector)
            vector = [sum(column) / count for column in zip(*vector)]
        return [float(x) for x in vector]

    async def dispose(self) -> None:
        llm, self._llm = self._llm, None
        await asyncio.to_thread(_release, llm)


class LlamaCppModel(IModelHandle):
    """Model handle backed by a vocab-only llama.cpp instance."""

    def __init__(self, llama_cls: Any, model_path: Path, gpu_layers: int, vocab: Any):
        self._llama_cls = llama_cls
        self._model_path = model_path
        self._gpu_layers = gpu_layers
        self._vocab = vocab

    @property
    def model_path(self) -> Path:
        return self._model_path

    def count_tokens(self, text: str) -> int:
        return _count_tokens(self._vocab, text)

    async def create_context(self, context_size: int) -> IInferenceContext:
        ctx_kb = context_size / 1024
        logger.info(
            "Creating llama.cpp context: %s (context=%.1fK tokens, gpu_layers=%d)",
            self._model_path.name,
            ctx_kb,
            self._gpu_layers,
        )
        try:
            llm = await asyncio.to_thread(
                self._llama_cls,
                model_path=str(self._model_path),
                n_ctx=context_size,
                n_gpu_layers=self._gpu_layers,
                verbose=False,
            )
        except Exception as e:
            raise EngineError(f"Failed to create context for {self._model_path.name}: {e}") from e

        logger.info(
            "Context ready (%d tokens). KV cache is pre-allocated; memory usage is expected.",
            context_size,
        )
        return LlamaCppContext(llm, context_size)

    async def create_embedding_context(self) -> IEmbeddingContext:
        try:
            llm = await asyncio.to_thread(
                self._llama_cls,
                model_path=str(self._model_path),
                embedding=True,
                n_gpu_layers=self._gpu_layers,
                verbose=False,
            )
        except Exception as e:
            raise EngineError(f"Failed to create embedding context: {e}") from e
        return LlamaCppEmbeddingContext(llm)

    async def dispose(self) -> None:
        vocab, self._vocab = self._vocab, None
        await asyncio.to_thread(_release, vocab)


class LlamaCppEngine(IInferenceEngine):
    """Llama.cpp-based inference engine.

    Uses lazy loading to avoid import errors when llama-cpp-python is not installed.
    """

    def __init__(self) -> None:
        self._llama_cls: Any = None

    def is_available(self) -> bool:
        """Check if llama-cpp-python is installed."""
        try:
            import llama_cpp  # noqa: F401
            return True
        except ImportError:
            logger.debug("llama_cpp library not installed")
            return False

    async def initialize(self) -> None:
        if self._llama_cls is not None:
            return

        try:
            from llama_cpp import Llama
        except ImportError as e:
            raise EngineError(
                "llama-cpp-python is not installed. Install with: pip install llama-cpp-python"
            ) from e

        self._llama_cls = Llama
        logger.info("Initialized llama.cpp backend")

    async def load_model(self, model_path: Path, gpu_layers: int) -> IModelHandle:
        await self.initialize()

        if not model_path.exists():
            raise EngineError(f"Model file not found: {model_path}")

        logger.info("Loading llama.cpp model: %s", model_path.name)
        try:
            vocab = await asyncio.to_thread(
                self._llama_cls,
                model_path=str(model_path),
                vocab_only=True,
                verbose=False,
            )
        except Exception as e:
            raise EngineError(f"Failed to load model {model_path.name}: {e}") from e

        return LlamaCppModel(self._llama_cls, model_path, gpu_layers, vocab)

    async def close(self) -> None:
        self._llama_cls = None
        gc.collect()
