"""Autoreply Core API - Main Application."""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI

from autoreply_core.api.deps import close_inference_client
from autoreply_core.api.routes import webhooks as webhooks_routes
from autoreply_core.config import get_settings
from autoreply_core.infra.db import reset_session_factory
from autoreply_core.observability.logging import configure_logging, get_logger

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler."""
    # Startup
    settings = get_settings()
    configure_logging(
        level=settings.log_level,
        json_format=settings.log_json,
        service_name="autoreply-core",
    )
    app.state.settings = settings
    if settings.is_development:
        logger.warning(
            "Development mode: webhook signatures are not enforced when no secret is set",
            app_env=settings.app_env,
        )
    yield
    # Shutdown
    await close_inference_client()
    reset_session_factory()


app = FastAPI(
    title="Autoreply Core API",
    description="Webhook ingestion and auto-reply dispatch for social platforms",
    version="0.1.0",
    lifespan=lifespan,
)

app.include_router(webhooks_routes.router)


@app.get("/healthz")
async def health_check() -> dict:
    """Health check endpoint."""
    return {"ok": True, "service": "autoreply-core"}


@app.get("/")
async def root() -> dict:
    """Root endpoint."""
    return {
        "name": "Autoreply Core API",
        "version": "0.1.0",
        "status": "running",
    }
