"""Service providers for route handlers.

The lifecycle manager is built once from settings and shared by every
request. Tests swap it out through ``app.dependency_overrides``.
"""

import logging

from fastapi import Depends

from core.config import settings
from core.events import ProgressBus
from core.factory import get_factory
from services.downloader import ModelDownloader
from services.inference import InferenceOrchestrator
from services.integrity import IntegrityChecker
from services.lifecycle import LifecycleManager

logger = logging.getLogger(__name__)

_manager: LifecycleManager | None = None


def build_lifecycle_manager() -> LifecycleManager:
    """Create a lifecycle manager wired from global settings."""
    factory = get_factory()
    checker = IntegrityChecker(
        settings.MODELS_DIR,
        min_bytes=settings.MODEL_MIN_BYTES,
        size_ratio=settings.MODEL_SIZE_RATIO,
    )
    downloader = ModelDownloader(
        checker,
        chunk_size=settings.DOWNLOAD_CHUNK_SIZE,
        max_redirects=settings.DOWNLOAD_MAX_REDIRECTS,
        connect_timeout=settings.DOWNLOAD_CONNECT_TIMEOUT,
    )
    return LifecycleManager(
        engine=factory.create_inference_engine(),
        checker=checker,
        downloader=downloader,
        bus=ProgressBus(),
        context_size=factory.config.ai_n_ctx,
        gpu_layers=factory.config.ai_n_gpu_layers,
        system_prompt=settings.AI_SYSTEM_PROMPT,
    )


def get_lifecycle_manager() -> LifecycleManager:
    global _manager
    if _manager is None:
        logger.info("Creating lifecycle manager (models_dir=%s)", settings.MODELS_DIR)
        _manager = build_lifecycle_manager()
    return _manager


def get_orchestrator(
    manager: LifecycleManager = Depends(get_lifecycle_manager),
) -> InferenceOrchestrator:
    return InferenceOrchestrator(manager, get_factory().default_chat_options())


async def shutdown_services() -> None:
    """Release the shared manager, if one was created."""
    global _manager
    if _manager is not None:
        await _manager.shutdown()
        _manager = None
