"""Health check endpoints."""

from typing import Annotated

from fastapi import APIRouter, Depends

from api.dependencies import get_lifecycle_manager
from services.lifecycle import LifecycleManager

router = APIRouter(tags=["health"])


@router.get("/health")
async def health_check() -> dict:
    """Basic health check."""
    return {"status": "healthy"}


@router.get("/health/ready")
async def readiness_check(
    manager: Annotated[LifecycleManager, Depends(get_lifecycle_manager)],
) -> dict:
    """Readiness check including the inference engine."""
    status = manager.get_status()
    return {
        "status": "ready",
        "services": {
            "engine": "initialized" if status.initialized else "not_initialized",
            "model": status.state.value,
        },
    }
