"""Periodic re-triggering of sync and watch renewal.

APScheduler's BackgroundScheduler runs the ticks on its own thread. The
store is async, so each tick bridges into the service event loop with
run_coroutine_threadsafe and waits for the result.

Ticks:
- fallback_sync: enqueue an incremental sync for every active, onboarded
  mailbox (catches anything push notifications missed)
- full_sync: enqueue a forced full sync for the same mailboxes
- watch_renewal: renew push subscriptions close to expiry (runs once at
  startup too)
"""

import asyncio
from collections.abc import Coroutine
from datetime import datetime
from typing import Any

from apscheduler.schedulers.background import BackgroundScheduler

from mailpipe.config_schema import AppConfig
from mailpipe.core.logging import get_logger
from mailpipe.db.store import DatabaseStore
from mailpipe.sync.watch import WatchManager

logger = get_logger(__name__)

# Longest a tick waits for its coroutine on the event loop
TICK_TIMEOUT_SECONDS = 300


class Scheduler:
    """Background ticker feeding sync jobs into the queue.

    Args:
        store: Job store
        watch_manager: Renews push subscriptions
        config: Application config (sync intervals, jobs.max_attempts)
        loop: The event loop the store is used from
    """

    def __init__(
        self,
        store: DatabaseStore,
        watch_manager: WatchManager,
        config: AppConfig,
        loop: asyncio.AbstractEventLoop,
    ):
        self.store = store
        self.watch_manager = watch_manager
        self.config = config
        self.loop = loop
        self._scheduler: BackgroundScheduler | None = None

    @property
    def running(self) -> bool:
        return self._scheduler is not None and self._scheduler.running

    @property
    def job_ids(self) -> list[str]:
        if self._scheduler is None:
            return []
        return sorted(job.id for job in self._scheduler.get_jobs())

    def start(self) -> None:
        sync_config = self.config.sync
        scheduler = BackgroundScheduler()

        scheduler.add_job(
            self._fallback_sync_tick,
            "interval",
            minutes=sync_config.fallback_interval_minutes,
            id="fallback_sync",
            max_instances=1,
            coalesce=True,
        )
        scheduler.add_job(
            self._full_sync_tick,
            "interval",
            hours=sync_config.full_sync_interval_hours,
            id="full_sync",
            max_instances=1,
            coalesce=True,
        )
        scheduler.add_job(
            self._watch_renewal_tick,
            "interval",
            hours=sync_config.watch_renewal_interval_hours,
            id="watch_renewal",
            max_instances=1,
            coalesce=True,
            next_run_time=datetime.now(),
        )

        scheduler.start()
        self._scheduler = scheduler
        logger.info(
            "scheduler_started",
            fallback_interval_minutes=sync_config.fallback_interval_minutes,
            full_sync_interval_hours=sync_config.full_sync_interval_hours,
            watch_renewal_interval_hours=sync_config.watch_renewal_interval_hours,
        )

    def stop(self) -> None:
        if self._scheduler is None:
            return
        self._scheduler.shutdown(wait=False)
        self._scheduler = None
        logger.info("scheduler_stopped")

    # ------------------------------------------------------------------
    # Work done by the ticks (async, on the service loop)
    # ------------------------------------------------------------------

    async def enqueue_sync_for_all_users(self, force_full: bool = False) -> int:
        """Enqueue one sync job per active, onboarded mailbox.

        Returns:
            Number of jobs enqueued
        """
        payload: dict[str, Any] = {"history_id": ""}
        if force_full:
            payload["force_full"] = True

        enqueued = 0
        for user in await self.store.list_users(active_only=True, onboarded_only=True):
            try:
                await self.store.enqueue(
                    user.id,
                    "sync",
                    dict(payload),
                    max_attempts=self.config.jobs.max_attempts,
                )
                enqueued += 1
            except Exception as e:
                logger.error("scheduled_sync_enqueue_failed", user_id=user.id, error=str(e))

        logger.info("scheduled_syncs_enqueued", force_full=force_full, count=enqueued)
        return enqueued

    # ------------------------------------------------------------------
    # Tick bodies (scheduler thread)
    # ------------------------------------------------------------------

    def _run_on_loop(self, coro: Coroutine[Any, Any, Any]) -> Any:
        future = asyncio.run_coroutine_threadsafe(coro, self.loop)
        return future.result(timeout=TICK_TIMEOUT_SECONDS)

    def _fallback_sync_tick(self) -> None:
        try:
            self._run_on_loop(self.enqueue_sync_for_all_users(force_full=False))
        except Exception as e:
            logger.error("scheduled_fallback_sync_failed", error=str(e))

    def _full_sync_tick(self) -> None:
        try:
            self._run_on_loop(self.enqueue_sync_for_all_users(force_full=True))
        except Exception as e:
            logger.error("scheduled_full_sync_failed", error=str(e))

    def _watch_renewal_tick(self) -> None:
        try:
            self._run_on_loop(self.watch_manager.renew_expiring_watches())
        except Exception as e:
            logger.error("scheduled_watch_renewal_failed", error=str(e))
