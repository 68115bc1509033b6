"""Concurrent workers draining the job queue.

Each worker is an asyncio task looping claim -> dispatch -> resolve.
Claiming is atomic in the store, so workers never share a job. Provider
calls inside handlers run in threads, so one worker waiting on the
network never stalls the others.

Usage:
    pool = WorkerPool(store, registry, client_factory, concurrency=3, config=config)
    await pool.start()
    ...
    await pool.stop()
"""

import asyncio
from collections.abc import Awaitable, Callable
from typing import Any

from mailpipe.config_schema import AppConfig
from mailpipe.core.errors import DatabaseError, UnknownJobTypeError
from mailpipe.core.logging import get_logger, log_context
from mailpipe.db.models import Job, User
from mailpipe.db.store import DatabaseStore
from mailpipe.jobs.dispatcher import HandlerRegistry
from mailpipe.jobs.handlers import HandlerContext
from mailpipe.provider.base import MailboxClient

logger = get_logger(__name__)

DEFAULT_POLL_INTERVAL = 1.0

# Attempts at writing a job outcome before the job is reported stranded
RESOLVE_ATTEMPTS = 3
RESOLVE_BACKOFF_SECONDS = 0.5
STRANDED = "stranded"

ClientFactory = Callable[[User], MailboxClient]


class WorkerPool:
    """N worker loops over one store.

    Args:
        store: Job store to claim from
        dispatcher: Handler registry
        client_factory: Builds a provider client for a job's mailbox
        concurrency: Number of worker tasks
        poll_interval: Seconds an idle worker sleeps between polls
        config: Application config handed to handlers
        resolve_backoff: Base delay between retries of an outcome write
    """

    def __init__(
        self,
        store: DatabaseStore,
        dispatcher: HandlerRegistry,
        client_factory: ClientFactory,
        concurrency: int = 3,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        config: AppConfig | None = None,
        resolve_backoff: float = RESOLVE_BACKOFF_SECONDS,
    ):
        self.store = store
        self.dispatcher = dispatcher
        self.client_factory = client_factory
        self.config = config or AppConfig()
        self.concurrency = concurrency
        self.poll_interval = poll_interval
        self.resolve_backoff = resolve_backoff
        self.running = False
        self._tasks: list[asyncio.Task] = []
        self.processed = 0
        self.failed = 0

    @property
    def active_workers(self) -> int:
        return sum(1 for task in self._tasks if not task.done())

    async def start(self) -> None:
        if self.running:
            return
        self.running = True
        self._tasks = [
            asyncio.create_task(self._worker_loop(i), name=f"mailpipe-worker-{i}")
            for i in range(self.concurrency)
        ]
        logger.info("worker_pool_started", concurrency=self.concurrency)

    async def stop(self) -> None:
        """Stop after each worker finishes its current job."""
        logger.info("worker_pool_stopping")
        self.running = False
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()
        logger.info("worker_pool_stopped", processed=self.processed, failed=self.failed)

    async def _worker_loop(self, worker_id: int) -> None:
        logger.debug("worker_started", worker_id=worker_id)

        while self.running:
            try:
                job = await self.store.claim_next()
                if job is None:
                    await asyncio.sleep(self.poll_interval)
                    continue
                await self.process_job(job, worker_id)
            except Exception:
                logger.error("worker_iteration_failed", worker_id=worker_id, exc_info=True)
                await asyncio.sleep(self.poll_interval)

        logger.debug("worker_stopped", worker_id=worker_id)

    async def process_job(self, job: Job, worker_id: int = 0) -> None:
        """Run one claimed job and record its outcome."""
        with log_context(
            correlation_id=f"job-{job.id}",
            job_id=job.id,
            job_type=job.job_type,
            user_id=job.user_id,
        ):
            await self._run_job(job, worker_id)

    async def _run_job(self, job: Job, worker_id: int) -> None:
        logger.info("job_started", worker_id=worker_id, attempt=job.attempts)

        user = await self.store.get_user(job.user_id)
        if user is None:
            logger.warning("job_user_missing")
            await self._resolve(
                job, self.store.fail_job, job.id, f"User {job.user_id} not found", retryable=False
            )
            self.failed += 1
            return

        try:
            handler = self.dispatcher.handler_for(job.job_type)
        except UnknownJobTypeError as e:
            logger.error("job_type_unknown")
            await self._resolve(job, self.store.fail_job, job.id, str(e), retryable=False)
            self.failed += 1
            return

        try:
            client = self.client_factory(user)
            ctx = HandlerContext(
                job=job,
                user=user,
                client=client,
                store=self.store,
                config=self.config,
                payload=job.payload,
            )
            await handler(ctx)
        except Exception as e:
            status = await self._resolve(
                job, self.store.fail_job, job.id, str(e) or type(e).__name__
            )
            self.failed += 1
            logger.warning(
                "job_failed",
                attempt=job.attempts,
                max_attempts=job.max_attempts,
                status=status,
                error=str(e),
                exc_info=True,
            )
            return

        if await self._resolve(job, self.store.complete_job, job.id) != STRANDED:
            self.processed += 1
            logger.info("job_completed")

    async def _resolve(
        self,
        job: Job,
        write: Callable[..., Awaitable[Any]],
        *args: Any,
        **kwargs: Any,
    ) -> Any:
        """Persist a job outcome, retrying store errors.

        Returns the write's result, or STRANDED when every attempt failed;
        the job then stays 'running' until recover_stale_running picks it up.
        """
        for attempt in range(1, RESOLVE_ATTEMPTS + 1):
            try:
                return await write(*args, **kwargs)
            except DatabaseError as e:
                if attempt == RESOLVE_ATTEMPTS:
                    logger.error(
                        "job_stranded",
                        outcome=write.__name__,
                        attempts=attempt,
                        error=str(e),
                        exc_info=True,
                    )
                    return STRANDED
                logger.warning(
                    "job_resolve_retry", outcome=write.__name__, attempt=attempt, error=str(e)
                )
                await asyncio.sleep(self.resolve_backoff * attempt)
        return STRANDED
