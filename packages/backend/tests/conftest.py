"""Pytest configuration and fixtures."""

import asyncio
import os
import re
import tempfile
from collections.abc import AsyncGenerator, Callable
from pathlib import Path

import httpx
import pytest
import pytest_asyncio

# Set test environment before imports
os.environ["COOLDESK_DATA_DIR"] = tempfile.mkdtemp(prefix="cooldesk-test-")

from core.events import ProgressBus, ProgressEvent
from core.interfaces import (
    ChatOptions,
    IChatSession,
    IEmbeddingContext,
    IInferenceContext,
    IInferenceEngine,
    IModelHandle,
)
from core.model_catalog import MODEL_CATALOG, ModelDescriptor
from services.downloader import ModelDownloader
from services.inference import InferenceOrchestrator
from services.integrity import IntegrityChecker
from services.lifecycle import LifecycleManager

TINY_MODEL_ID = "tiny-test.Q4_K_M.gguf"
TINY_MODEL_SIZE = 1000

SMALL_MODEL_ID = "qwen2.5-0.5b-instruct.Q4_K_M.gguf"
OTHER_MODEL_ID = "llama-3.2-1b-instruct.Q4_K_M.gguf"

DEFAULT_OPTIONS = ChatOptions(max_tokens=256, temperature=0.7, top_p=0.9)


# ── Fake inference engine ───────────────────────────────────────────────

class FakeChatSession(IChatSession):
    def __init__(self, engine: "FakeEngine", model_id: str, system_prompt: str):
        self._engine = engine
        self._model_id = model_id
        self.system_prompt = system_prompt
        self.prompts: list[str] = []
        self.options: list[ChatOptions] = []

    async def prompt(self, text: str, options: ChatOptions) -> str:
        self.prompts.append(text)
        self.options.append(options)
        self._engine.log.append("prompt:start")
        if self._engine.prompt_gate is not None:
            await self._engine.prompt_gate.wait()
        await asyncio.sleep(0)
        self._engine.log.append("prompt:end")
        reply = self._engine.responder(text)
        if isinstance(reply, Exception):
            raise reply
        return reply

    async def prompt_stream(self, text: str, options: ChatOptions):
        reply = await self.prompt(text, options)
        for piece in re.findall(r"\S+\s*", reply):
            yield piece

    async def dispose(self) -> None:
        self._engine.log.append(f"dispose:session:{self._model_id}")


class FakeContext(IInferenceContext):
    def __init__(self, engine: "FakeEngine", model_id: str):
        self._engine = engine
        self._model_id = model_id

    async def create_chat_session(self, system_prompt: str) -> IChatSession:
        session = FakeChatSession(self._engine, self._model_id, system_prompt)
        self._engine.sessions.append(session)
        return session

    async def dispose(self) -> None:
        self._engine.log.append(f"dispose:context:{self._model_id}")


class FakeEmbeddingContext(IEmbeddingContext):
    def __init__(self, engine: "FakeEngine"):
        self._engine = engine

    async def embed(self, text: str) -> list[float]:
        self._engine.embedded.append(text)
        return list(self._engine.embedding)

    async def dispose(self) -> None:
        self._engine.log.append("dispose:embedding")


class FakeModel(IModelHandle):
    def __init__(self, engine: "FakeEngine", model_id: str):
        self._engine = engine
        self._model_id = model_id

    async def create_context(self, context_size: int) -> IInferenceContext:
        self._engine.context_sizes.append(context_size)
        if self._engine.fail_context is not None:
            raise self._engine.fail_context
        return FakeContext(self._engine, self._model_id)

    async def create_embedding_context(self) -> IEmbeddingContext:
        self._engine.log.append("open:embedding")
        return FakeEmbeddingContext(self._engine)

    async def dispose(self) -> None:
        self._engine.log.append(f"dispose:model:{self._model_id}")


class FakeEngine(IInferenceEngine):
    """In-memory engine recording every call it receives."""

    def __init__(self):
        self.log: list[str] = []
        self.initialize_calls = 0
        self.load_calls: list[Path] = []
        self.context_sizes: list[int] = []
        self.sessions: list[FakeChatSession] = []
        self.embedded: list[str] = []
        self.embedding = [0.1, 0.2, 0.3]
        self.closed = False
        self.fail_initialize: Exception | None = None
        self.fail_load: Exception | None = None
        self.fail_context: Exception | None = None
        self.load_started = asyncio.Event()
        self.load_gate: asyncio.Event | None = None
        self.prompt_gate: asyncio.Event | None = None
        self.responder: Callable[[str], str | Exception] = lambda prompt: "ok"

    @property
    def session(self) -> FakeChatSession:
        return self.sessions[-1]

    def is_available(self) -> bool:
        return True

    async def initialize(self) -> None:
        self.initialize_calls += 1
        if self.fail_initialize is not None:
            raise self.fail_initialize

    async def load_model(self, model_path: Path, gpu_layers: int) -> IModelHandle:
        self.load_calls.append(model_path)
        self.log.append(f"load:{model_path.name}")
        self.load_started.set()
        if self.load_gate is not None:
            await self.load_gate.wait()
        if self.fail_load is not None:
            raise self.fail_load
        return FakeModel(self, model_path.name)

    async def close(self) -> None:
        self.closed = True


# ── Helpers ─────────────────────────────────────────────────────────────

def write_sparse(path: Path, size: int) -> Path:
    """Create a file reporting ``size`` bytes without writing them to disk."""
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "wb") as f:
        f.truncate(size)
    return path


def no_network(request: httpx.Request) -> httpx.Response:
    raise AssertionError(f"Unexpected network call: {request.url}")


# ── Fixtures ────────────────────────────────────────────────────────────

@pytest.fixture
def models_dir(tmp_path: Path) -> Path:
    path = tmp_path / "models"
    path.mkdir()
    return path


@pytest.fixture
def tiny_model(monkeypatch) -> ModelDescriptor:
    """A 1000-byte catalog entry so downloads can run against a mock transport."""
    descriptor = ModelDescriptor(
        id=TINY_MODEL_ID,
        repo="cooldesk/tiny-test-GGUF",
        filename="tiny-test-Q4_K_M.gguf",
        expected_size_bytes=TINY_MODEL_SIZE,
        display_name="Tiny Test",
        size_label="1 KB",
        ram_estimate="1 MB",
        quality_tier="Basic",
        speed_tier="Ultra Fast",
        description="Test fixture",
    )
    monkeypatch.setitem(MODEL_CATALOG, TINY_MODEL_ID, descriptor)
    return descriptor


@pytest.fixture
def checker(models_dir: Path) -> IntegrityChecker:
    return IntegrityChecker(models_dir)


@pytest.fixture
def small_checker(models_dir: Path) -> IntegrityChecker:
    """Checker without the absolute size floor, for tiny test artifacts."""
    return IntegrityChecker(models_dir, min_bytes=0)


@pytest.fixture
def transport_handler():
    """Mutable holder for the mock transport's request handler."""
    holder = {"handler": no_network, "requests": []}
    return holder


@pytest.fixture
def mock_transport(transport_handler) -> httpx.MockTransport:
    def handle(request: httpx.Request) -> httpx.Response:
        transport_handler["requests"].append(request)
        return transport_handler["handler"](request)

    return httpx.MockTransport(handle)


@pytest.fixture
def engine() -> FakeEngine:
    return FakeEngine()


@pytest.fixture
def bus() -> ProgressBus:
    return ProgressBus()


@pytest.fixture
def received(bus: ProgressBus) -> list[ProgressEvent]:
    """Every event published on the bus during the test."""
    events: list[ProgressEvent] = []
    bus.subscribe(events.append)
    return events


@pytest.fixture
def manager(engine, small_checker, mock_transport, bus) -> LifecycleManager:
    downloader = ModelDownloader(small_checker, chunk_size=256, transport=mock_transport)
    return LifecycleManager(
        engine=engine,
        checker=small_checker,
        downloader=downloader,
        bus=bus,
        context_size=1024,
        gpu_layers=0,
        system_prompt="You are a test assistant.",
    )


@pytest.fixture
def valid_artifacts(models_dir: Path) -> None:
    """Valid on-disk artifacts for two real catalog models."""
    for model_id in (SMALL_MODEL_ID, OTHER_MODEL_ID):
        write_sparse(models_dir / model_id, MODEL_CATALOG[model_id].expected_size_bytes)


@pytest_asyncio.fixture
async def ready_manager(manager, valid_artifacts) -> LifecycleManager:
    await manager.request_load(SMALL_MODEL_ID)
    return manager


@pytest.fixture
def orchestrator(manager) -> InferenceOrchestrator:
    return InferenceOrchestrator(manager, DEFAULT_OPTIONS)


@pytest_asyncio.fixture
async def client(manager) -> AsyncGenerator[httpx.AsyncClient, None]:
    """Create test client with the lifecycle manager swapped for the fake one."""
    from api.dependencies import get_lifecycle_manager, get_orchestrator
    from api.main import app

    app.dependency_overrides[get_lifecycle_manager] = lambda: manager
    app.dependency_overrides[get_orchestrator] = lambda: InferenceOrchestrator(manager, DEFAULT_OPTIONS)

    async with httpx.AsyncClient(
        transport=httpx.ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac

    app.dependency_overrides.clear()
