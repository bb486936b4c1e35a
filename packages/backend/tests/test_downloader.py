"""Tests for the model downloader against a mock HTTP transport."""

from pathlib import Path

import httpx
import pytest

from conftest import TINY_MODEL_SIZE, write_sparse
from core.exceptions import (
    HttpStatusError,
    IntegrityError,
    NetworkError,
    RedirectLimitError,
)
from services.downloader import ModelDownloader

BODY = b"g" * TINY_MODEL_SIZE
CDN_URL = "https://cdn.example.com/blobs/tiny.gguf"


@pytest.fixture
def downloader(small_checker, mock_transport) -> ModelDownloader:
    return ModelDownloader(small_checker, chunk_size=256, max_redirects=5, transport=mock_transport)


@pytest.mark.asyncio
async def test_download_streams_to_models_dir(downloader, tiny_model, transport_handler, models_dir: Path):
    transport_handler["handler"] = lambda request: httpx.Response(200, content=BODY)
    progress = []

    path = await downloader.download(tiny_model, progress.append)

    assert path == models_dir / tiny_model.id
    assert path.read_bytes() == BODY
    assert transport_handler["requests"][0].url == httpx.URL(tiny_model.source_url)
    assert progress[-1] == 100
    assert progress == sorted(progress)
    assert len(progress) > 2


@pytest.mark.asyncio
async def test_valid_artifact_skips_network(downloader, tiny_model, transport_handler, models_dir: Path):
    """An already-valid artifact reports 100% without any request."""
    write_sparse(models_dir / tiny_model.id, TINY_MODEL_SIZE)
    progress = []

    path = await downloader.download(tiny_model, progress.append)

    assert path.exists()
    assert progress == [100]
    assert transport_handler["requests"] == []


@pytest.mark.asyncio
async def test_invalid_artifact_is_replaced(downloader, tiny_model, transport_handler, models_dir: Path):
    (models_dir / tiny_model.id).write_bytes(b"partial")
    transport_handler["handler"] = lambda request: httpx.Response(200, content=BODY)

    path = await downloader.download(tiny_model)

    assert path.read_bytes() == BODY
    assert len(transport_handler["requests"]) == 1


@pytest.mark.asyncio
async def test_follows_redirect_chain(downloader, tiny_model, transport_handler):
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.host == "huggingface.co":
            return httpx.Response(302, headers={"location": "https://mirror.example.com/tiny"})
        if request.url.host == "mirror.example.com":
            return httpx.Response(307, headers={"location": CDN_URL})
        return httpx.Response(200, content=BODY)

    transport_handler["handler"] = handler

    path = await downloader.download(tiny_model)

    assert path.read_bytes() == BODY
    assert [str(r.url) for r in transport_handler["requests"][1:]] == [
        "https://mirror.example.com/tiny",
        CDN_URL,
    ]


@pytest.mark.asyncio
async def test_relative_redirect_resolved_against_current_url(downloader, tiny_model, transport_handler):
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path.startswith("/moved"):
            return httpx.Response(200, content=BODY)
        return httpx.Response(301, headers={"location": "/moved/tiny.gguf"})

    transport_handler["handler"] = handler

    await downloader.download(tiny_model)

    assert str(transport_handler["requests"][-1].url) == "https://huggingface.co/moved/tiny.gguf"


@pytest.mark.asyncio
async def test_redirect_limit(tiny_model, small_checker, mock_transport, transport_handler, models_dir: Path):
    downloader = ModelDownloader(small_checker, max_redirects=2, transport=mock_transport)
    transport_handler["handler"] = lambda request: httpx.Response(
        302, headers={"location": f"{request.url}/next"}
    )

    with pytest.raises(RedirectLimitError):
        await downloader.download(tiny_model)

    # initial request plus two followed hops
    assert len(transport_handler["requests"]) == 3
    assert not (models_dir / tiny_model.id).exists()


@pytest.mark.asyncio
async def test_http_error_status(downloader, tiny_model, transport_handler):
    transport_handler["handler"] = lambda request: httpx.Response(404)

    with pytest.raises(HttpStatusError) as exc_info:
        await downloader.download(tiny_model)

    assert exc_info.value.status_code == 404
    assert exc_info.value.reason == "http_status"


@pytest.mark.asyncio
async def test_network_failure(downloader, tiny_model, transport_handler):
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    transport_handler["handler"] = handler

    with pytest.raises(NetworkError):
        await downloader.download(tiny_model)


@pytest.mark.asyncio
async def test_truncated_download_is_discarded(downloader, tiny_model, transport_handler, models_dir: Path):
    """A completed transfer that fails validation is deleted."""
    transport_handler["handler"] = lambda request: httpx.Response(200, content=b"g" * 100)

    with pytest.raises(IntegrityError) as exc_info:
        await downloader.download(tiny_model)

    assert exc_info.value.reason == "integrity"
    assert not (models_dir / tiny_model.id).exists()


@pytest.mark.asyncio
async def test_async_progress_callback(downloader, tiny_model, transport_handler):
    transport_handler["handler"] = lambda request: httpx.Response(200, content=BODY)
    progress = []

    async def on_progress(percent: int) -> None:
        progress.append(percent)

    await downloader.download(tiny_model, on_progress)

    assert progress[-1] == 100


@pytest.mark.asyncio
async def test_unknown_length_reports_only_completion(downloader, tiny_model, transport_handler):
    """Without a content-length only the final 100% is reported."""

    async def body():
        yield BODY[:500]
        yield BODY[500:]

    transport_handler["handler"] = lambda request: httpx.Response(200, content=body())
    progress = []

    await downloader.download(tiny_model, progress.append)

    assert progress == [100]
