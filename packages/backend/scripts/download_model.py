#!/usr/bin/env python3
"""Download a catalog model into the models directory.

Uses the same downloader and integrity checks as the API, so a model
fetched here is picked up by the sidecar without another download.

Run from the backend directory:
    python scripts/download_model.py --list
    python scripts/download_model.py qwen2.5-0.5b-instruct.Q4_K_M.gguf

Options:
    --list      Show catalog models and their download state
    --verbose   Show debug logging
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from core.config import settings
from core.exceptions import LLMServiceError
from core.model_catalog import get_model, list_descriptors
from services.downloader import ModelDownloader
from services.integrity import IntegrityChecker

logging.basicConfig(level=logging.INFO, format="%(levelname)s: %(message)s")
logger = logging.getLogger(__name__)


def _checker() -> IntegrityChecker:
    return IntegrityChecker(
        settings.MODELS_DIR,
        min_bytes=settings.MODEL_MIN_BYTES,
        size_ratio=settings.MODEL_SIZE_RATIO,
    )


def list_models() -> None:
    checker = _checker()
    for descriptor in list_descriptors():
        state = checker.file_state(descriptor)
        if state.is_valid:
            status = "downloaded"
        elif state.exists:
            status = f"incomplete ({state.size_bytes} bytes)"
        else:
            status = "not downloaded"
        marker = "*" if descriptor.is_default else " "
        print(f"{marker} {descriptor.id:40} {descriptor.size_label:>8}  {status}")


async def download(model_id: str) -> Path:
    checker = _checker()
    downloader = ModelDownloader(
        checker,
        chunk_size=settings.DOWNLOAD_CHUNK_SIZE,
        max_redirects=settings.DOWNLOAD_MAX_REDIRECTS,
        connect_timeout=settings.DOWNLOAD_CONNECT_TIMEOUT,
    )
    last = -1

    def on_progress(percent: int) -> None:
        nonlocal last
        if percent != last:
            last = percent
            print(f"\r  {percent:3d}%", end="", flush=True)

    path = await downloader.download(get_model(model_id), on_progress)
    print()
    return path


def main() -> int:
    parser = argparse.ArgumentParser(description="Download a catalog model")
    parser.add_argument("model_id", nargs="?", default=settings.DEFAULT_MODEL, help="Model id (default: COOLDESK_DEFAULT_MODEL)")
    parser.add_argument("--list", action="store_true", help="List catalog models")
    parser.add_argument("--verbose", action="store_true", help="Show debug logging")
    args = parser.parse_args()

    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    if args.list:
        list_models()
        return 0

    settings.ensure_directories()
    try:
        path = asyncio.run(download(args.model_id))
    except LLMServiceError as e:
        logger.error("%s", e)
        return 1

    logger.info("Model ready at %s", path)
    return 0


if __name__ == "__main__":
    sys.exit(main())
