"""Model management endpoints."""

import json
import logging
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import StreamingResponse
from pydantic import BaseModel

from api.dependencies import get_lifecycle_manager
from api.errors import to_http_exception
from core.exceptions import LLMServiceError
from services.lifecycle import LifecycleManager

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/models", tags=["models"])

Manager = Annotated[LifecycleManager, Depends(get_lifecycle_manager)]


class ModelInfo(BaseModel):
    """Catalog entry merged with download state."""

    id: str
    name: str
    description: str
    size: str
    ram: str
    quality: str
    speed: str
    size_bytes: int
    is_default: bool
    download_url: str
    downloaded: bool
    file_size: int
    valid: bool
    is_loaded: bool


class ModelListResponse(BaseModel):
    models: list[ModelInfo]


class LifecycleStatusResponse(BaseModel):
    state: str
    initialized: bool
    model_loaded: bool
    current_model_id: str | None
    is_loading: bool
    progress_percent: float
    storage_directory: str


class CommandResponse(BaseModel):
    """Outcome of a download/load/unload command."""

    success: bool
    model_id: str | None = None


@router.get("", response_model=ModelListResponse)
async def list_models(manager: Manager) -> ModelListResponse:
    """Return the model catalog merged with download/loaded status."""
    items = []
    for listing in manager.list_models():
        d = listing.descriptor
        items.append(ModelInfo(
            id=d.id,
            name=d.display_name,
            description=d.description,
            size=d.size_label,
            ram=d.ram_estimate,
            quality=d.quality_tier,
            speed=d.speed_tier,
            size_bytes=d.expected_size_bytes,
            is_default=d.is_default,
            download_url=d.source_url,
            downloaded=listing.file_state.exists,
            file_size=listing.file_state.size_bytes,
            valid=listing.file_state.is_valid,
            is_loaded=listing.is_current,
        ))
    return ModelListResponse(models=items)


@router.get("/status", response_model=LifecycleStatusResponse)
async def get_status(manager: Manager) -> LifecycleStatusResponse:
    status = manager.get_status()
    return LifecycleStatusResponse(
        state=status.state.value,
        initialized=status.initialized,
        model_loaded=status.model_loaded,
        current_model_id=status.current_model_id,
        is_loading=status.is_loading,
        progress_percent=status.progress_percent,
        storage_directory=status.storage_directory,
    )


@router.get("/events")
async def progress_events(request: Request, manager: Manager) -> StreamingResponse:
    """Live feed of download/load progress as server-sent events."""

    async def _stream():
        async for event in manager.bus.stream():
            if await request.is_disconnected():
                break
            yield f"data: {json.dumps(event.to_dict())}\n\n"

    return StreamingResponse(_stream(), media_type="text/event-stream")


@router.post("/unload", response_model=CommandResponse)
async def unload_model(manager: Manager) -> CommandResponse:
    """Unload the current model and free its memory."""
    try:
        await manager.request_unload()
    except LLMServiceError as e:
        raise to_http_exception(e) from e
    return CommandResponse(success=True)


@router.post("/{model_id}/download", response_model=CommandResponse)
async def download_model(model_id: str, manager: Manager) -> CommandResponse:
    """Download a model without loading it. Progress goes to /models/events."""
    try:
        await manager.request_download(model_id)
    except LLMServiceError as e:
        raise to_http_exception(e) from e
    return CommandResponse(success=True, model_id=model_id)


@router.post("/{model_id}/load", response_model=CommandResponse)
async def load_model(model_id: str, manager: Manager) -> CommandResponse:
    """Download (if needed) and load a model. Progress goes to /models/events."""
    try:
        await manager.request_load(model_id)
    except LLMServiceError as e:
        raise to_http_exception(e) from e
    return CommandResponse(success=True, model_id=model_id)


@router.get("/{model_id}", response_model=ModelInfo)
async def get_model_info(model_id: str, manager: Manager) -> ModelInfo:
    for info in (await list_models(manager)).models:
        if info.id == model_id:
            return info
    raise HTTPException(status_code=404, detail="Model not in catalog")
