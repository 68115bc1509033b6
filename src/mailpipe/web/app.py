"""FastAPI application for mailpipe.

Creates the FastAPI app with:
- Lifespan context manager that starts and stops the PipelineService
  (worker pool plus APScheduler ticks) in the same process as uvicorn
- Webhook and API routers

Usage:
    from mailpipe.web.app import create_app

    app = create_app()
    # Run with: uvicorn.run(app, host="127.0.0.1", port=8000)
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from fastapi import FastAPI

from mailpipe import __version__
from mailpipe.core.logging import get_logger

if TYPE_CHECKING:
    from mailpipe.config_schema import AppConfig
    from mailpipe.service import PipelineService

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Start the pipeline on startup, stop it on shutdown.

    A service passed to create_app() is used as-is; otherwise one is built
    from the loaded config.
    """
    from mailpipe.config import get_config
    from mailpipe.service import PipelineService

    service: PipelineService | None = getattr(app.state, "service", None)
    if service is None:
        service = PipelineService(app.state.config or get_config())
        app.state.service = service

    if app.state.start_service:
        await service.start()

    try:
        yield
    finally:
        if app.state.start_service:
            await service.stop()


def create_app(
    config: AppConfig | None = None,
    service: PipelineService | None = None,
    start_service: bool = True,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        config: Config to build the service from (defaults to get_config())
        service: Pre-built service (tests pass one with fakes wired in)
        start_service: Start workers and scheduler in the lifespan
    """
    from mailpipe.web.routes import api_router, webhook_router

    app = FastAPI(
        title="mailpipe",
        description="Mailbox change-log sync and durable job queue",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.config = config
    app.state.service = service
    app.state.start_service = start_service

    app.include_router(webhook_router)
    app.include_router(api_router)

    return app
