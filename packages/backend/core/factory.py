"""Adapter factory for dependency injection.

Provides the inference engine implementation selected in configuration.
"""

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from .config import Settings

if TYPE_CHECKING:
    from core.interfaces import ChatOptions, IInferenceEngine

logger = logging.getLogger(__name__)


@dataclass
class AdapterConfig:
    """Configuration for adapter selection."""

    # Engine selection
    ai_engine: str = "llama_cpp"

    # Engine parameters
    ai_n_ctx: int = 1024
    ai_n_gpu_layers: int = -1  # -1 = all layers on GPU

    # Generation defaults
    ai_max_tokens: int = 256
    ai_temperature: float = 0.7
    ai_top_p: float = 0.9


class AdapterFactory:
    """Factory for creating adapter instances from configuration.

    Usage:
        from core.config import settings
        from core.factory import create_factory_from_settings

        factory = create_factory_from_settings(settings)
        engine = factory.create_inference_engine()
    """

    def __init__(self, config: AdapterConfig):
        """Initialize the adapter factory.

        Args:
            config: Adapter configuration
        """
        self._config = config

    @property
    def config(self) -> AdapterConfig:
        return self._config

    def create_inference_engine(self) -> "IInferenceEngine":
        """Create the configured inference engine.

        Returns:
            Inference engine instance (not yet initialized)
        """
        if self._config.ai_engine == "llama_cpp":
            from adapters.ai.llama_cpp import LlamaCppEngine

            logger.info("Creating llama.cpp inference engine")
            return LlamaCppEngine()

        raise ValueError(f"Unsupported inference engine: {self._config.ai_engine}")

    def default_chat_options(self) -> "ChatOptions":
        """Generation defaults applied when a caller leaves an option unset."""
        from core.interfaces import ChatOptions

        return ChatOptions(
            max_tokens=self._config.ai_max_tokens,
            temperature=self._config.ai_temperature,
            top_p=self._config.ai_top_p,
        )


def create_factory_from_settings(settings: Settings) -> AdapterFactory:
    """Create an AdapterFactory from application settings.

    Args:
        settings: Application settings

    Returns:
        Configured AdapterFactory
    """
    config = AdapterConfig(
        ai_engine=settings.AI_ENGINE,
        ai_n_ctx=settings.AI_N_CTX,
        ai_n_gpu_layers=settings.AI_N_GPU_LAYERS,
        ai_max_tokens=settings.AI_MAX_TOKENS,
        ai_temperature=settings.AI_TEMPERATURE,
        ai_top_p=settings.AI_TOP_P,
    )

    return AdapterFactory(config)


# Convenience function for creating adapters from global settings
def get_factory() -> AdapterFactory:
    """Get the adapter factory using global settings."""
    from .config import settings
    return create_factory_from_settings(settings)
