"""Core interfaces for the adapter pattern.

These interfaces define the contract between the lifecycle manager and
the inference engine so the native backend can be swapped.
"""

from .ai import (
    ChatMessage,
    ChatOptions,
    IChatSession,
    IEmbeddingContext,
    IInferenceContext,
    IInferenceEngine,
    IModelHandle,
)

__all__ = [
    "ChatMessage",
    "ChatOptions",
    "IChatSession",
    "IEmbeddingContext",
    "IInferenceContext",
    "IInferenceEngine",
    "IModelHandle",
]
