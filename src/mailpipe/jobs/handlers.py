"""Built-in job handlers.

A handler is an async callable taking a HandlerContext. Returning marks
the job completed; raising marks the attempt failed (and retried while
attempts remain).

Only `sync` is implemented here in full. Classification, drafting,
cleanup and agent work belong to external handlers plugged in through
the `handlers:` section of config.yaml; until one is configured, the
defaults below record the thread or acknowledge the job so the queue
keeps draining.
"""

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from mailpipe.config_schema import AppConfig
from mailpipe.core.logging import get_logger
from mailpipe.db.models import EmailRecord, Job, User
from mailpipe.db.store import DatabaseStore
from mailpipe.provider.base import MailboxClient
from mailpipe.provider.models import MessageSummary
from mailpipe.sync.engine import SyncEngine

logger = get_logger(__name__)


@dataclass
class HandlerContext:
    """Everything a handler needs to run one job.

    Attributes:
        job: The claimed job (status running, attempts already incremented)
        user: Mailbox that owns the job
        client: Provider client for that mailbox
        store: Job store
        config: Application config
        payload: The job's decoded JSON payload
    """

    job: Job
    user: User
    client: MailboxClient
    store: DatabaseStore
    config: AppConfig
    payload: dict[str, Any] = field(default_factory=dict)


Handler = Callable[[HandlerContext], Awaitable[None]]


async def handle_sync(ctx: HandlerContext) -> None:
    """Run one sync pass for the job's mailbox."""
    engine = SyncEngine(ctx.user, ctx.client, ctx.store, ctx.config)
    result = await engine.perform(
        history_id=ctx.payload.get("history_id") or None,
        force_full=ctx.payload.get("force_full") is True,
    )
    logger.info(
        "sync_job_done",
        job_id=ctx.job.id,
        mode=result.mode,
        fell_back=result.fell_back,
        jobs_enqueued=len(result.jobs_enqueued),
    )


async def record_thread(ctx: HandlerContext) -> None:
    """Write the local email record for the job's thread.

    Default for classify and agent_process. The record is what full sync
    checks to avoid re-queueing a handled thread.
    """
    thread_id = ctx.payload.get("thread_id")
    message_id = ctx.payload.get("message_id")
    if not thread_id:
        raise ValueError(f"{ctx.job.job_type} job {ctx.job.id} has no thread_id in its payload")

    sender_email = None
    subject = None
    if message_id:
        message = await asyncio.to_thread(ctx.client.get_message, message_id, format="metadata")
        summary = MessageSummary.from_api(message)
        sender_email = summary.sender_email or None
        subject = summary.subject or None

    await ctx.store.save_email_record(
        EmailRecord(
            user_id=ctx.user.id,
            thread_id=thread_id,
            message_id=message_id,
            sender_email=sender_email,
            subject=subject,
            status="recorded",
            processed_at=datetime.now(),
        )
    )
    logger.info(
        "thread_recorded",
        job_id=ctx.job.id,
        job_type=ctx.job.job_type,
        thread_id=thread_id,
    )


async def acknowledge(ctx: HandlerContext) -> None:
    """Complete the job without side effects."""
    logger.info(
        "job_acknowledged",
        job_id=ctx.job.id,
        job_type=ctx.job.job_type,
        thread_id=ctx.payload.get("thread_id"),
        action=ctx.payload.get("action"),
    )


DEFAULT_HANDLERS: dict[str, Handler] = {
    "sync": handle_sync,
    "classify": record_thread,
    "agent_process": record_thread,
    "draft": acknowledge,
    "cleanup": acknowledge,
    "rework": acknowledge,
    "manual_draft": acknowledge,
}
