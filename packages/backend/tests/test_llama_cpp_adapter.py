"""Tests for the llama.cpp adapter using a stand-in Llama class."""

import sys
from pathlib import Path

import pytest

from adapters.ai.llama_cpp import LlamaCppEngine
from core.exceptions import EngineError
from core.interfaces import ChatOptions

OPTIONS = ChatOptions(max_tokens=10, temperature=0.2, top_p=0.9)


class StubLlama:
    """Records constructor arguments and chat calls like llama_cpp.Llama would see them."""

    def __init__(self, model_path: str, **kwargs):
        self.model_path = model_path
        self.kwargs = kwargs
        self.closed = False
        self.fail = False
        self.calls: list[dict] = []
        self.embedding = [[1.0, 3.0], [3.0, 5.0]]

    def tokenize(self, data: bytes, add_bos: bool = False) -> list[bytes]:
        return data.split()

    def create_chat_completion(self, messages, max_tokens, temperature, top_p, stream=False):
        self.calls.append({"messages": list(messages), "max_tokens": max_tokens, "stream": stream})
        if self.fail:
            raise RuntimeError("llama_decode returned -1")
        if stream:
            return iter([
                {"choices": [{"delta": {"role": "assistant"}}]},
                {"choices": [{"delta": {"content": "Hel"}}]},
                {"choices": [{"delta": {"content": "lo"}}]},
            ])
        return {"choices": [{"message": {"content": "Hello"}}]}

    def embed(self, text: str):
        return self.embedding

    def close(self) -> None:
        self.closed = True


@pytest.fixture
def instances() -> list[StubLlama]:
    return []


@pytest.fixture
def engine(instances) -> LlamaCppEngine:
    def make(**kwargs):
        llm = StubLlama(**kwargs)
        instances.append(llm)
        return llm

    engine = LlamaCppEngine()
    engine._llama_cls = make
    return engine


@pytest.fixture
def gguf(tmp_path: Path) -> Path:
    path = tmp_path / "model.gguf"
    path.write_bytes(b"GGUF")
    return path


@pytest.mark.asyncio
async def test_initialize_without_llama_cpp(monkeypatch):
    monkeypatch.setitem(sys.modules, "llama_cpp", None)
    engine = LlamaCppEngine()

    assert engine.is_available() is False
    with pytest.raises(EngineError, match="llama-cpp-python is not installed"):
        await engine.initialize()


@pytest.mark.asyncio
async def test_load_missing_file(engine: LlamaCppEngine, tmp_path: Path):
    with pytest.raises(EngineError, match="not found"):
        await engine.load_model(tmp_path / "missing.gguf", 0)


@pytest.mark.asyncio
async def test_load_model_opens_vocab_only(engine, instances, gguf):
    model = await engine.load_model(gguf, 4)

    assert len(instances) == 1
    assert instances[0].model_path == str(gguf)
    assert instances[0].kwargs["vocab_only"] is True
    assert model.count_tokens("three word text") == 3


@pytest.mark.asyncio
async def test_load_failure_wrapped(gguf):
    def broken(**kwargs):
        raise ValueError("failed to load model")

    engine = LlamaCppEngine()
    engine._llama_cls = broken

    with pytest.raises(EngineError):
        await engine.load_model(gguf, 0)


@pytest.mark.asyncio
async def test_context_uses_window_and_gpu_layers(engine, instances, gguf):
    model = await engine.load_model(gguf, 4)

    await model.create_context(2048)

    assert instances[1].kwargs["n_ctx"] == 2048
    assert instances[1].kwargs["n_gpu_layers"] == 4


@pytest.mark.asyncio
async def test_chat_session_keeps_history(engine, instances, gguf):
    model = await engine.load_model(gguf, 0)
    context = await model.create_context(1024)
    session = await context.create_chat_session("Be brief.")

    assert await session.prompt("hi", OPTIONS) == "Hello"
    await session.prompt("again", OPTIONS)

    messages = instances[1].calls[-1]["messages"]
    assert messages == [
        {"role": "system", "content": "Be brief."},
        {"role": "user", "content": "hi"},
        {"role": "assistant", "content": "Hello"},
        {"role": "user", "content": "again"},
    ]
    assert instances[1].calls[-1]["max_tokens"] == 10


@pytest.mark.asyncio
async def test_chat_session_drops_oldest_turns(engine, instances, gguf):
    model = await engine.load_model(gguf, 0)
    context = await model.create_context(40)
    session = await context.create_chat_session("sys")

    await session.prompt("a b c", OPTIONS)
    await session.prompt("d", OPTIONS)

    messages = instances[1].calls[-1]["messages"]
    assert messages[0] == {"role": "system", "content": "sys"}
    assert messages[-1] == {"role": "user", "content": "d"}
    assert {"role": "user", "content": "a b c"} not in messages


@pytest.mark.asyncio
async def test_prompt_failure_raises_engine_error(engine, instances, gguf):
    model = await engine.load_model(gguf, 0)
    context = await model.create_context(1024)
    session = await context.create_chat_session("sys")
    instances[1].fail = True

    with pytest.raises(EngineError):
        await session.prompt("hi", OPTIONS)

    instances[1].fail = False
    await session.prompt("retry", OPTIONS)
    assert [m["content"] for m in instances[1].calls[-1]["messages"]] == ["sys", "retry"]


@pytest.mark.asyncio
async def test_prompt_stream_yields_deltas(engine, instances, gguf):
    model = await engine.load_model(gguf, 0)
    context = await model.create_context(1024)
    session = await context.create_chat_session("sys")

    pieces = [piece async for piece in session.prompt_stream("hi", OPTIONS)]
    await session.prompt("next", OPTIONS)

    assert pieces == ["Hel", "lo"]
    assert instances[1].calls[0]["stream"] is True
    assert {"role": "assistant", "content": "Hello"} in instances[1].calls[-1]["messages"]


@pytest.mark.asyncio
async def test_abandoned_stream_keeps_turns_paired(engine, instances, gguf):
    """A consumer that stops early still leaves the partial reply in history."""
    model = await engine.load_model(gguf, 0)
    context = await model.create_context(1024)
    session = await context.create_chat_session("sys")

    stream = session.prompt_stream("hi", OPTIONS)
    assert await stream.__anext__() == "Hel"
    await stream.aclose()

    await session.prompt("next", OPTIONS)

    assert instances[1].calls[-1]["messages"] == [
        {"role": "system", "content": "sys"},
        {"role": "user", "content": "hi"},
        {"role": "assistant", "content": "Hel"},
        {"role": "user", "content": "next"},
    ]


@pytest.mark.asyncio
async def test_embedding_mean_pools_token_vectors(engine, instances, gguf):
    model = await engine.load_model(gguf, 0)
    embedding = await model.create_embedding_context()

    vector = await embedding.embed("hello")
    await embedding.dispose()

    assert vector == [2.0, 4.0]
    assert instances[1].kwargs["embedding"] is True
    assert instances[1].closed is True


@pytest.mark.asyncio
async def test_dispose_chain_closes_instances(engine, instances, gguf):
    model = await engine.load_model(gguf, 0)
    context = await model.create_context(1024)
    session = await context.create_chat_session("sys")

    await session.dispose()
    await context.dispose()
    await model.dispose()

    assert all(llm.closed for llm in instances)
    with pytest.raises(EngineError):
        await session.prompt("hi", OPTIONS)
