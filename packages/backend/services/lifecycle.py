"""Model lifecycle manager.

Owns the single "current model" slot: the model handle, its inference
context and the chat session bound to that context. Sequences
download -> load -> ready -> unload and rejects a second load or download
while one is in flight instead of queuing it.

Progress is reported as one percentage across the whole sequence:
download maps to 0-50, engine load to 50-100.
"""

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

from core.events import ProgressBus, ProgressEvent, ProgressEventKind
from core.exceptions import (
    AlreadyLoadingError,
    EngineError,
    LLMServiceError,
    ModelNotLoadedError,
)
from core.interfaces import IChatSession, IInferenceContext, IInferenceEngine, IModelHandle
from core.model_catalog import ModelDescriptor, get_model, list_descriptors
from services.downloader import ModelDownloader
from services.integrity import IntegrityChecker, ModelFileState

logger = logging.getLogger(__name__)

DOWNLOAD_BAND = 50.0
MODEL_LOADED_PERCENT = 80.0


class LifecycleState(str, Enum):
    UNINITIALIZED = "uninitialized"
    IDLE = "idle"
    DOWNLOADING = "downloading"
    LOADING = "loading"
    READY = "ready"
    ERROR = "error"


@dataclass(frozen=True)
class LifecycleStatus:
    """Point-in-time snapshot of the lifecycle."""

    state: LifecycleState
    initialized: bool
    model_loaded: bool
    current_model_id: str | None
    is_loading: bool
    progress_percent: float
    storage_directory: str


@dataclass(frozen=True)
class ModelListing:
    """Catalog entry merged with its on-disk state."""

    descriptor: ModelDescriptor
    file_state: ModelFileState
    is_current: bool


class LifecycleManager:
    """Sole owner of the loaded model, context and chat session."""

    def __init__(
        self,
        engine: IInferenceEngine,
        checker: IntegrityChecker,
        downloader: ModelDownloader,
        bus: ProgressBus,
        context_size: int = 1024,
        gpu_layers: int = -1,
        system_prompt: str = "You are a helpful assistant.",
    ):
        self._engine = engine
        self._checker = checker
        self._downloader = downloader
        self._bus = bus
        self._context_size = context_size
        self._gpu_layers = gpu_layers
        self._system_prompt = system_prompt

        self._state = LifecycleState.UNINITIALIZED
        self._engine_ready = False
        self._busy = False
        self._progress = 0.0
        self._current_model_id: str | None = None

        self._model: IModelHandle | None = None
        self._context: IInferenceContext | None = None
        self._session: IChatSession | None = None

        # Serialises engine access: one inference call at a time, and
        # teardown waits for an in-flight call to finish.
        self.inference_lock = asyncio.Lock()

    @property
    def bus(self) -> ProgressBus:
        return self._bus

    @property
    def state(self) -> LifecycleState:
        return self._state

    # ── Queries ─────────────────────────────────────────────────────────

    def get_status(self) -> LifecycleStatus:
        return LifecycleStatus(
            state=self._state,
            initialized=self._engine_ready,
            model_loaded=self._state == LifecycleState.READY,
            current_model_id=self._current_model_id,
            is_loading=self._busy,
            progress_percent=self._progress,
            storage_directory=str(self._checker.models_dir),
        )

    def list_models(self) -> list[ModelListing]:
        return [
            ModelListing(
                descriptor=descriptor,
                file_state=self._checker.file_state(descriptor),
                is_current=(
                    self._state == LifecycleState.READY
                    and descriptor.id == self._current_model_id
                ),
            )
            for descriptor in list_descriptors()
        ]

    def require_session(self) -> IChatSession:
        """Return the active chat session or raise ModelNotLoadedError."""
        if self._state != LifecycleState.READY or self._session is None:
            raise ModelNotLoadedError()
        return self._session

    def require_model(self) -> IModelHandle:
        """Return the loaded model handle or raise ModelNotLoadedError."""
        if self._state != LifecycleState.READY or self._model is None:
            raise ModelNotLoadedError()
        return self._model

    # ── Commands ────────────────────────────────────────────────────────

    async def initialize(self) -> None:
        """Create the models directory and initialize the engine backend.

        Raises:
            EngineError: If the engine backend cannot be initialized
        """
        self._checker.models_dir.mkdir(parents=True, exist_ok=True)
        if not self._engine_ready:
            await self._engine.initialize()
            self._engine_ready = True
            logger.info("Inference engine initialized")
        if self._state == LifecycleState.UNINITIALIZED:
            self._state = LifecycleState.IDLE

    async def request_download(self, model_id: str) -> Path:
        """Download a model without loading it.

        Holds the same guard as request_load. If a model is Ready it keeps
        serving while the download runs.

        Raises:
            UnknownModelError: Model id is not in the catalog
            AlreadyLoadingError: Another download/load is in flight
            DownloadError: Download failed
        """
        descriptor = get_model(model_id)
        if self._busy:
            raise AlreadyLoadingError()

        self._busy = True
        keep_ready = self._state == LifecycleState.READY
        if not keep_ready:
            self._state = LifecycleState.DOWNLOADING
            self._progress = 0.0

        async def on_progress(percent: int) -> None:
            if not keep_ready:
                self._progress = float(percent)
            await self._publish(ProgressEventKind.DOWNLOAD, float(percent), model_id)

        try:
            path = await self._downloader.download(descriptor, on_progress)
        except LLMServiceError as e:
            logger.error("Model download failed for %s: %s", model_id, e)
            if not keep_ready:
                self._state = LifecycleState.ERROR
                self._progress = 0.0
            await self._publish(ProgressEventKind.ERROR, 0.0, model_id, str(e))
            raise
        finally:
            self._busy = False

        if not keep_ready:
            self._state = LifecycleState.IDLE
            self._progress = 0.0
        return path

    async def request_load(self, model_id: str) -> None:
        """Make ``model_id`` the Ready model, downloading it if needed.

        Raises:
            UnknownModelError: Model id is not in the catalog
            AlreadyLoadingError: Another download/load is in flight
            DownloadError: Artifact could not be fetched or validated
            EngineError: The engine failed to load the artifact
        """
        descriptor = get_model(model_id)

        if self._state == LifecycleState.READY and self._current_model_id == model_id:
            logger.info("Model already loaded: %s", model_id)
            return

        if self._busy:
            raise AlreadyLoadingError()
        self._busy = True

        try:
            await self._load(descriptor)
        except LLMServiceError as e:
            await self._fail_load(model_id, e)
            raise
        except Exception as e:
            logger.exception("Unexpected failure while loading %s", model_id)
            error = EngineError(str(e))
            await self._fail_load(model_id, error)
            raise error from e
        finally:
            self._busy = False

    async def request_unload(self) -> None:
        """Release the session, context and model. No-op when nothing is loaded.

        Raises:
            AlreadyLoadingError: A download/load is in flight
        """
        if self._busy:
            raise AlreadyLoadingError("Cannot unload while a model is loading")
        if self._model is None and self._context is None and self._session is None:
            if self._state == LifecycleState.READY:
                self._state = LifecycleState.IDLE
            return

        await self._release_resources()
        self._state = LifecycleState.IDLE if self._engine_ready else LifecycleState.UNINITIALIZED
        self._current_model_id = None
        self._progress = 0.0
        logger.info("Model unloaded")

    async def shutdown(self) -> None:
        """Unload everything, close the engine and drop all listeners."""
        await self._release_resources()
        self._current_model_id = None
        self._progress = 0.0
        if self._engine_ready:
            await self._engine.close()
            self._engine_ready = False
        self._state = LifecycleState.UNINITIALIZED
        self._bus.clear()
        logger.info("Lifecycle manager shut down")

    # ── Internals ───────────────────────────────────────────────────────

    async def _load(self, descriptor: ModelDescriptor) -> None:
        model_id = descriptor.id

        # Never hold two models' resources at once. The outgoing model stops
        # being Ready before teardown waits on an in-flight inference call.
        if self._model is not None or self._context is not None or self._session is not None:
            self._state = LifecycleState.LOADING
            self._current_model_id = None
            await self._release_resources()

        await self.initialize()

        self._state = LifecycleState.DOWNLOADING
        self._progress = 0.0
        await self._publish(ProgressEventKind.DOWNLOAD, 0.0, model_id)

        async def on_progress(percent: int) -> None:
            self._progress = percent * DOWNLOAD_BAND / 100
            await self._publish(ProgressEventKind.DOWNLOAD, self._progress, model_id)

        path = await self._downloader.download(descriptor, on_progress)

        self._state = LifecycleState.LOADING
        self._progress = DOWNLOAD_BAND
        await self._publish(ProgressEventKind.LOADING, self._progress, model_id)

        logger.info("Loading model: %s", path)
        self._model = await self._engine.load_model(path, self._gpu_layers)

        self._progress = MODEL_LOADED_PERCENT
        await self._publish(ProgressEventKind.LOADING, self._progress, model_id)

        self._context = await self._model.create_context(self._context_size)
        self._session = await self._context.create_chat_session(self._system_prompt)

        self._current_model_id = model_id
        self._state = LifecycleState.READY
        self._progress = 100.0
        await self._publish(ProgressEventKind.LOADED, 100.0, model_id)
        logger.info("Model loaded successfully: %s", model_id)

    async def _fail_load(self, model_id: str, error: LLMServiceError) -> None:
        logger.error("Failed to load model %s: %s", model_id, error)
        await self._release_resources()
        self._state = LifecycleState.ERROR
        self._current_model_id = None
        self._progress = 0.0
        await self._publish(ProgressEventKind.ERROR, 0.0, model_id, str(error))

    async def _release_resources(self) -> None:
        """Tear down session, then context, then model.

        Waits for any in-flight inference call. Disposal errors are logged
        so that later links in the chain are still released.
        """
        async with self.inference_lock:
            session, self._session = self._session, None
            context, self._context = self._context, None
            model, self._model = self._model, None

            for name, resource in (("session", session), ("context", context), ("model", model)):
                if resource is None:
                    continue
                try:
                    await resource.dispose()
                except Exception:
                    logger.warning("Failed to dispose %s", name, exc_info=True)

    async def _publish(
        self,
        kind: ProgressEventKind,
        percent: float,
        model_id: str | None,
        error: str | None = None,
    ) -> None:
        await self._bus.publish(ProgressEvent(kind=kind, percent=percent, model_id=model_id, error=error))
