"""FastAPI dependency injection helpers.

Extracts shared dependencies from app.state for use in route handlers.
Everything is placed on app.state by create_app() or the lifespan.

Usage:
    from mailpipe.web.dependencies import get_store

    @router.get("/jobs")
    async def jobs(store: DatabaseStore = Depends(get_store)):
        return await store.list_jobs()
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from fastapi import HTTPException, Request

if TYPE_CHECKING:
    from mailpipe.config_schema import AppConfig
    from mailpipe.db.store import DatabaseStore
    from mailpipe.service import PipelineService


def get_service(request: Request) -> PipelineService:
    """Get the PipelineService from app state."""
    service = getattr(request.app.state, "service", None)
    if service is None:
        raise HTTPException(status_code=503, detail="Pipeline service not initialized")
    return service


def get_store(request: Request) -> DatabaseStore:
    return get_service(request).store


def get_config(request: Request) -> AppConfig:
    return get_service(request).config
