"""
FastAPI application factory and API package.

Run with:
    uvicorn assessment_validator.api:app --reload --port 8000

Or via the CLI:
    python -m assessment_validator --serve
"""

from __future__ import annotations

import asyncio
import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from assessment_validator import __version__
from assessment_validator.config import get_settings
from assessment_validator.api.routes import health_router, runs_router
from assessment_validator.api.websocket import RunProgressBus

logger = logging.getLogger(__name__)


def create_app() -> FastAPI:
    """Application factory — create and configure the FastAPI instance."""
    settings = get_settings()

    application = FastAPI(
        title="Assessment Validator API",
        description="Per-requirement validation of assessment documents against unit requirements",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
    )

    # CORS: allow the dashboard (adjust origins in production)
    application.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Register route groups (includes WebSocket at /api/runs/ws/{run_id})
    application.include_router(health_router, tags=["Health"])
    application.include_router(runs_router, prefix="/api/runs", tags=["Runs"])

    @application.on_event("startup")
    async def startup():
        # Give the RunProgressBus singleton the server's event loop
        # so background run threads can push WebSocket messages.
        RunProgressBus.get().set_loop(asyncio.get_running_loop())
        logger.info(f"Starting {settings.app_name} API")

    return application


# Module-level instance for `uvicorn assessment_validator.api:app`
app = create_app()
