"""HTTP routes: push webhook and the JSON API.

Contains two routers:
- webhook_router: Gmail Pub/Sub push endpoint
- api_router: health, manual sync trigger, job and sync-state listings

All routes use FastAPI dependency injection to access shared state.
"""

from __future__ import annotations

import base64
import binascii
import hmac
import json
from datetime import datetime
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query, Request

from mailpipe import __version__
from mailpipe.config_schema import AppConfig
from mailpipe.core.errors import DatabaseError
from mailpipe.core.logging import get_logger
from mailpipe.db.models import JOB_STATUSES, JOB_TYPES, Job, SyncState, User
from mailpipe.db.store import DatabaseStore
from mailpipe.service import PipelineService
from mailpipe.web.dependencies import get_config, get_service, get_store

logger = get_logger(__name__)

webhook_router = APIRouter(prefix="/webhook")
api_router = APIRouter(prefix="/api")


# ---------------------------------------------------------------------------
# Serialization helpers
# ---------------------------------------------------------------------------


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def job_to_dict(job: Job) -> dict[str, Any]:
    return {
        "id": job.id,
        "user_id": job.user_id,
        "job_type": job.job_type,
        "status": job.status,
        "payload": job.payload,
        "attempts": job.attempts,
        "max_attempts": job.max_attempts,
        "error_message": job.error_message,
        "created_at": _iso(job.created_at),
        "updated_at": _iso(job.updated_at),
        "started_at": _iso(job.started_at),
        "completed_at": _iso(job.completed_at),
    }


def sync_state_to_dict(user: User, state: SyncState | None) -> dict[str, Any]:
    return {
        "user_id": user.id,
        "email": user.email,
        "is_active": user.is_active,
        "onboarded": user.is_onboarded,
        "last_history_id": state.last_history_id if state else None,
        "last_sync_at": _iso(state.last_sync_at) if state else None,
        "watch_expiration": state.watch_expiration if state else None,
        "watch_resource_id": state.watch_resource_id if state else None,
    }


def decode_push_envelope(body: Any) -> tuple[str, str]:
    """Extract (emailAddress, historyId) from a Pub/Sub push envelope.

    Raises:
        ValueError: If the envelope or its data is malformed
    """
    if not isinstance(body, dict):
        raise ValueError("Request body must be a JSON object")

    message = body.get("message")
    if not isinstance(message, dict) or not message.get("data"):
        raise ValueError("Missing message.data in push envelope")

    try:
        encoded = str(message["data"]).replace("-", "+").replace("_", "/")
        raw = base64.b64decode(encoded + "=" * (-len(encoded) % 4))
        data = json.loads(raw)
    except (binascii.Error, ValueError, TypeError) as e:
        raise ValueError(f"message.data is not base64-encoded JSON: {e}") from None

    if not isinstance(data, dict):
        raise ValueError("message.data must decode to a JSON object")

    email_address = data.get("emailAddress")
    history_id = data.get("historyId")
    if not email_address or history_id in (None, ""):
        raise ValueError("Notification must include emailAddress and historyId")

    return str(email_address), str(history_id)


# ---------------------------------------------------------------------------
# Webhook
# ---------------------------------------------------------------------------


@webhook_router.post("/gmail")
async def gmail_push(
    request: Request,
    token: str | None = Query(default=None),
    service: PipelineService = Depends(get_service),
):
    """Gmail Pub/Sub push endpoint: enqueue an incremental sync."""
    expected = service.config.server.webhook_token
    if expected and not hmac.compare_digest(token or "", expected):
        logger.warning("webhook_token_mismatch")
        raise HTTPException(status_code=403, detail="Invalid webhook token")

    try:
        body = await request.json()
    except ValueError:
        raise HTTPException(status_code=400, detail="Request body is not valid JSON") from None

    try:
        email_address, history_id = decode_push_envelope(body)
    except ValueError as e:
        logger.warning("webhook_malformed", error=str(e))
        raise HTTPException(status_code=400, detail=str(e)) from None

    user = await service.store.get_user_by_email(email_address)
    if user is None:
        logger.info("webhook_unknown_mailbox")
        return {"status": "ignored"}

    job = await service.enqueue_sync(user, history_id=history_id)
    logger.info("webhook_sync_enqueued", user_id=user.id, job_id=job.id, history_id=history_id)
    return {"status": "processed", "job_id": job.id}


# ---------------------------------------------------------------------------
# API
# ---------------------------------------------------------------------------


@api_router.get("/health")
async def health_check(service: PipelineService = Depends(get_service)):
    """Health check endpoint for Docker and monitoring."""
    db_ok = await service.store.ping()
    counts: dict[str, int] = {}
    if db_ok:
        try:
            counts = await service.store.get_job_counts()
        except DatabaseError as e:
            logger.warning("health_job_counts_failed", error=str(e))
            db_ok = False

    return {
        "status": "healthy" if db_ok else "degraded",
        "database": "ok" if db_ok else "unavailable",
        "jobs": counts,
        "workers": service.status(),
        "version": __version__,
    }


@api_router.post("/users/{user_id}/sync")
async def trigger_sync(
    user_id: int,
    full: bool = Query(default=False),
    service: PipelineService = Depends(get_service),
):
    user = await service.store.get_user(user_id)
    if user is None:
        raise HTTPException(status_code=404, detail=f"User {user_id} not found")

    job = await service.enqueue_sync(user, force_full=full)
    logger.info("manual_sync_enqueued", user_id=user_id, job_id=job.id, force_full=full)
    return {"status": "enqueued", "job_id": job.id, "force_full": full}


@api_router.get("/jobs")
async def list_jobs(
    status: str | None = Query(default=None),
    job_type: str | None = Query(default=None),
    user_id: int | None = Query(default=None),
    limit: int = Query(default=50, ge=1, le=500),
    store: DatabaseStore = Depends(get_store),
):
    if status and status not in JOB_STATUSES:
        raise HTTPException(status_code=422, detail=f"Unknown status {status!r}")
    if job_type and job_type not in JOB_TYPES:
        raise HTTPException(status_code=422, detail=f"Unknown job type {job_type!r}")

    jobs = await store.list_jobs(status=status, job_type=job_type, user_id=user_id, limit=limit)
    return {"jobs": [job_to_dict(job) for job in jobs], "count": len(jobs)}


@api_router.get("/sync-state")
async def sync_state(
    store: DatabaseStore = Depends(get_store),
    config: AppConfig = Depends(get_config),
):
    rows = await store.list_sync_states()
    return {
        "users": [sync_state_to_dict(user, state) for user, state in rows],
        "push_enabled": bool(config.sync.pubsub_topic),
    }
