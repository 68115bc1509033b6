"""Service runtime: owns the store, worker pool and scheduler.

Usage:
    service = PipelineService(config)
    await service.start()
    ...
    await service.stop()

The web app starts one in its lifespan; `mailpipe serve` runs that app.
"""

import asyncio
from typing import Any

from mailpipe.config_schema import AppConfig
from mailpipe.core.logging import get_logger
from mailpipe.db.claim import select_claim_strategy
from mailpipe.db.models import Job, User
from mailpipe.db.store import DatabaseStore
from mailpipe.jobs.dispatcher import HandlerRegistry, build_registry
from mailpipe.jobs.scheduler import Scheduler
from mailpipe.jobs.worker_pool import ClientFactory, WorkerPool
from mailpipe.provider.base import MailboxClient
from mailpipe.provider.client import GmailClient
from mailpipe.provider.tokens import TokenFileProvider, TokenProvider
from mailpipe.sync.engine import SyncEngine, SyncPassResult
from mailpipe.sync.watch import WatchManager

logger = get_logger(__name__)


def build_store(config: AppConfig) -> DatabaseStore:
    """Store configured from the database and jobs sections."""
    return DatabaseStore(
        config.database.path,
        claim_strategy=select_claim_strategy(config.database.claim_mode),
        default_max_attempts=config.jobs.max_attempts,
    )


def gmail_client_factory(config: AppConfig, token_provider: TokenProvider) -> ClientFactory:
    """Client factory producing a GmailClient per mailbox."""

    def factory(user: User) -> MailboxClient:
        return GmailClient.from_config(user.email, token_provider, config.provider)

    return factory


class PipelineService:
    """The running pipeline: store, handler registry, workers and ticks.

    Args:
        config: Validated application config
        store: Job store (built from config if omitted)
        client_factory: Provider client factory (Gmail over the token file
            at auth.token_cache_path if omitted)
        registry: Handler registry (built from config if omitted)
        enable_scheduler: Start the periodic ticks
    """

    def __init__(
        self,
        config: AppConfig,
        store: DatabaseStore | None = None,
        client_factory: ClientFactory | None = None,
        registry: HandlerRegistry | None = None,
        enable_scheduler: bool = True,
    ):
        self.config = config
        self.store = store or build_store(config)
        self.client_factory = client_factory or gmail_client_factory(
            config, TokenFileProvider(config.auth.token_cache_path)
        )
        self.registry = registry or build_registry(config)
        self.enable_scheduler = enable_scheduler

        self.watch_manager = WatchManager(self.store, config, self.client_factory)
        self.pool = WorkerPool(
            self.store,
            self.registry,
            self.client_factory,
            concurrency=config.server.worker_concurrency,
            poll_interval=config.server.poll_interval_seconds,
            config=config,
        )
        self.scheduler: Scheduler | None = None
        self.started = False

    async def start(self) -> None:
        """Initialize the database, recover interrupted jobs, start workers and ticks."""
        if self.started:
            return

        await self.store.initialize()

        recovered = await self.store.recover_stale_running(
            self.config.database.stale_running_minutes
        )
        if recovered:
            logger.warning("interrupted_jobs_recovered", count=recovered)

        await self.pool.start()

        if self.enable_scheduler:
            self.scheduler = Scheduler(
                self.store,
                self.watch_manager,
                self.config,
                asyncio.get_running_loop(),
            )
            self.scheduler.start()

        self.started = True
        logger.info(
            "pipeline_started",
            claim_mode=self.store.claim_strategy.name,
            workers=self.pool.concurrency,
            scheduler=self.enable_scheduler,
        )

    async def stop(self) -> None:
        if not self.started:
            return
        if self.scheduler:
            self.scheduler.stop()
            self.scheduler = None
        await self.pool.stop()
        await self.store.checkpoint_wal()
        self.started = False
        logger.info("pipeline_stopped")

    async def enqueue_sync(
        self,
        user: User,
        history_id: str | None = None,
        force_full: bool = False,
    ) -> Job:
        payload: dict[str, Any] = {"history_id": history_id or ""}
        if force_full:
            payload["force_full"] = True
        return await self.store.enqueue(
            user.id, "sync", payload, max_attempts=self.config.jobs.max_attempts
        )

    async def run_sync_now(self, user: User, force_full: bool = False) -> SyncPassResult:
        """Run a sync pass inline, bypassing the queue."""
        engine = SyncEngine(user, self.client_factory(user), self.store, self.config)
        return await engine.perform(force_full=force_full)

    def status(self) -> dict[str, Any]:
        return {
            "running": self.started,
            "workers": self.pool.active_workers,
            "concurrency": self.pool.concurrency,
            "processed": self.pool.processed,
            "failed": self.pool.failed,
            "claim_mode": self.store.claim_strategy.name,
            "scheduler_jobs": self.scheduler.job_ids if self.scheduler else [],
        }
