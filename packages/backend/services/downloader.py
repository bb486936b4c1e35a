"""Model artifact downloader.

Streams a catalog model from its source URL straight into the models
directory, reporting byte-level progress as a 0-100 percentage.
"""

import inspect
import logging
from collections.abc import Awaitable, Callable
from pathlib import Path

import aiofiles
import httpx

from core.exceptions import (
    DownloadError,
    HttpStatusError,
    IntegrityError,
    NetworkError,
    RedirectLimitError,
)
from core.model_catalog import ModelDescriptor
from services.integrity import IntegrityChecker

logger = logging.getLogger(__name__)

REDIRECT_STATUSES = frozenset({301, 302, 303, 307, 308})

# Receives an integer percentage; may fire many times with repeated values
ProgressCallback = Callable[[int], Awaitable[None] | None]


async def _notify(on_progress: ProgressCallback | None, percent: int) -> None:
    if on_progress is None:
        return
    result = on_progress(percent)
    if inspect.isawaitable(result):
        await result


class ModelDownloader:
    """Fetches model artifacts over HTTP with a bounded redirect chain."""

    def __init__(
        self,
        checker: IntegrityChecker,
        chunk_size: int = 256 * 1024,
        max_redirects: int = 5,
        connect_timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize the downloader.

        Args:
            checker: Integrity checker that owns artifact paths and validation.
            chunk_size: Bytes requested per read from the response stream.
            max_redirects: Redirect hops allowed before giving up.
            connect_timeout: Seconds allowed to establish a connection.
                Reads are unbounded since artifacts are gigabytes.
            transport: Optional httpx transport (used by tests).
        """
        self._checker = checker
        self._chunk_size = chunk_size
        self._max_redirects = max_redirects
        self._timeout = httpx.Timeout(None, connect=connect_timeout)
        self._transport = transport

    async def download(
        self,
        descriptor: ModelDescriptor,
        on_progress: ProgressCallback | None = None,
    ) -> Path:
        """Ensure a valid artifact for ``descriptor`` exists locally.

        Returns immediately (at 100%) when a valid artifact is already on
        disk. An invalid artifact is deleted and fetched again.

        Returns:
            Path to the validated artifact.

        Raises:
            NetworkError: Transport failure. The partial file stays on disk
                for the next integrity check to catch.
            HttpStatusError: Non-200, non-redirect response.
            RedirectLimitError: Too many redirect hops.
            IntegrityError: Downloaded artifact failed validation (deleted).
        """
        path = self._checker.artifact_path(descriptor)

        if path.exists():
            if self._checker.validate(descriptor):
                logger.info("Model already exists and is valid: %s", path)
                await _notify(on_progress, 100)
                return path
            logger.info("Model file corrupted/incomplete, re-downloading: %s", path.name)
            self._checker.discard_invalid(descriptor)

        path.parent.mkdir(parents=True, exist_ok=True)
        url = descriptor.source_url
        logger.info("Downloading model %s from %s", descriptor.id, url)

        try:
            async with httpx.AsyncClient(
                follow_redirects=False,
                timeout=self._timeout,
                transport=self._transport,
            ) as client:
                await self._fetch(client, url, path, on_progress)
        except httpx.HTTPError as e:
            logger.error("Model download failed for %s: %s", descriptor.id, e)
            raise NetworkError(f"Download failed: {e}") from e
        except OSError as e:
            raise DownloadError(f"Failed to write {path}: {e}") from e

        if not self._checker.validate(descriptor):
            self._checker.discard_invalid(descriptor)
            raise IntegrityError(
                f"Downloaded model {descriptor.id} failed validation "
                f"(expected at least {self._checker.minimum_size(descriptor)} bytes)"
            )

        logger.info("Download complete: %s", path)
        await _notify(on_progress, 100)
        return path

    async def _fetch(
        self,
        client: httpx.AsyncClient,
        url: str,
        path: Path,
        on_progress: ProgressCallback | None,
    ) -> None:
        hops = 0
        while True:
            async with client.stream("GET", url) as resp:
                if resp.status_code in REDIRECT_STATUSES:
                    location = resp.headers.get("location")
                    if not location:
                        raise HttpStatusError(resp.status_code, url)
                    hops += 1
                    if hops > self._max_redirects:
                        raise RedirectLimitError(
                            f"Download exceeded {self._max_redirects} redirects (last: {url})"
                        )
                    url = str(resp.url.join(location))
                    logger.info("Following redirect to: %s", url)
                    continue

                if resp.status_code != 200:
                    raise HttpStatusError(resp.status_code, url)

                try:
                    total_bytes = int(resp.headers.get("content-length") or 0)
                except ValueError:
                    total_bytes = 0

                downloaded = 0
                async with aiofiles.open(path, "wb") as f:
                    async for chunk in resp.aiter_bytes(chunk_size=self._chunk_size):
                        await f.write(chunk)
                        downloaded += len(chunk)
                        if total_bytes > 0:
                            await _notify(on_progress, round(downloaded / total_bytes * 100))
                return
