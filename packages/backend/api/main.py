"""FastAPI application entry point."""

import logging
from contextlib import asynccontextmanager
from importlib.metadata import PackageNotFoundError, version

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from api.dependencies import get_lifecycle_manager, shutdown_services
from api.routes import ai, health, models
from core.config import settings
from core.exceptions import EngineError

logger = logging.getLogger(__name__)

APP_NAME = "CoolDesk LLM Sidecar"


def _get_version() -> str:
    """Read the installed package version."""
    try:
        return version("cooldesk-llm")
    except PackageNotFoundError:
        return "dev"


APP_VERSION = _get_version()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    # Startup
    settings.ensure_directories()

    manager = get_lifecycle_manager()
    try:
        await manager.initialize()
    except EngineError:
        # Loading a model retries initialization, so the API can still start
        logger.warning("Inference engine unavailable at startup", exc_info=True)

    yield

    # Shutdown
    await shutdown_services()


app = FastAPI(
    title=f"{APP_NAME} API",
    description="On-device model lifecycle and inference for CoolDesk",
    version=APP_VERSION,
    lifespan=lifespan,
)

# CORS - wide open. This API only binds to 127.0.0.1 and is accessed by
# the local desktop app and overlay.
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Routes
app.include_router(health.router)
app.include_router(models.router, prefix="/api")
app.include_router(ai.router, prefix="/api")


@app.get("/api/info")
async def api_info():
    """API info endpoint."""
    return {
        "name": APP_NAME,
        "version": APP_VERSION,
        "models_dir": str(settings.MODELS_DIR),
        "default_model": settings.DEFAULT_MODEL,
    }


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "name": APP_NAME,
        "version": APP_VERSION,
    }
