"""Per-mailbox change-log reconciliation.

A sync pass brings the local job queue up to date with one mailbox:

- Incremental: page through the provider change log from the stored
  watermark (or a push notification's hint), turn each relevant change into
  a job, then advance the watermark to the newest history id seen.
- Full: list recent inbox messages that carry none of the managed labels,
  enqueue a classify job per thread that has no local record and no job in
  flight, then take the mailbox's current history id as the new watermark.

Full sync runs when forced, when the mailbox has never completed a pass,
when the last pass is older than `sync.stale_after_days`, or when the
provider rejects the watermark as expired.

The watermark is written exactly once, after the last page of a completed
pass. An error mid-pass leaves it untouched, so the next pass re-reads the
same changes; job handlers must tolerate seeing a thread twice.

Usage:
    engine = SyncEngine(user, client, store, config, router)
    result = await engine.perform(history_id="1000")
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Literal

from mailpipe.config_schema import AppConfig
from mailpipe.core.errors import WatermarkExpiredError
from mailpipe.core.logging import get_logger, log_context
from mailpipe.db.models import SyncState, User
from mailpipe.db.store import DatabaseStore
from mailpipe.provider.base import MailboxClient
from mailpipe.provider.models import HistoryRecord, MessageRef, MessageSummary
from mailpipe.sync.router import DEFAULT_ROUTE, MessageRouter, RouteDecision

logger = get_logger(__name__)

INBOX_LABEL = "INBOX"

# Job types whose presence means a thread is already being handled
INFLIGHT_THREAD_TYPES = ("classify", "agent_process")


@dataclass
class SyncPassResult:
    """What one sync pass did.

    Attributes:
        mode: Which kind of pass produced the watermark
        fell_back: True if an incremental pass hit an expired watermark
            and a full pass ran instead
        pages: Change-log pages read (0 for a full pass)
        records: Change-log records processed
        jobs_enqueued: (job_type, thread_id) for every job created
        watermark: The watermark written at the end of the pass
    """

    mode: Literal["incremental", "full"]
    fell_back: bool = False
    pages: int = 0
    records: int = 0
    jobs_enqueued: list[tuple[str, str]] = field(default_factory=list)
    watermark: str | None = None


class SyncEngine:
    """Reconciles one mailbox's change log into jobs.

    Args:
        user: Mailbox being synced
        client: Provider client for the mailbox (blocking; run in threads)
        store: Job store
        config: Application config (sync and labels sections)
        router: Decides classify vs agent_process for new inbox mail
    """

    def __init__(
        self,
        user: User,
        client: MailboxClient,
        store: DatabaseStore,
        config: AppConfig,
        router: MessageRouter | None = None,
    ):
        self.user = user
        self.client = client
        self.store = store
        self.config = config
        self.router = router or MessageRouter(config.routing.rules)
        self._label_ids: dict[str, str] | None = None

    async def perform(
        self,
        history_id: str | None = None,
        force_full: bool = False,
    ) -> SyncPassResult:
        """Run one sync pass.

        Args:
            history_id: Optional start cursor hint (from a push notification)
            force_full: Skip incremental sync and reconcile from scratch

        Raises:
            ProviderError: Any provider failure other than an expired
                watermark (the watermark is left unchanged)
            DatabaseError: If the store fails
        """
        with log_context(user_id=self.user.id, sync_hint=history_id or None):
            return await self._perform(history_id, force_full)

    async def _perform(self, history_id: str | None, force_full: bool) -> SyncPassResult:
        state = await self.store.get_sync_state(self.user.id)

        reason = self._full_sync_reason(state, force_full)
        if reason:
            logger.info("sync_full_selected", reason=reason)
            return await self.full_sync()

        start = history_id or state.last_history_id
        try:
            return await self.incremental_sync(start)
        except WatermarkExpiredError as e:
            logger.warning(
                "sync_watermark_expired",
                watermark=e.watermark or start,
            )
            result = await self.full_sync()
            result.fell_back = True
            return result

    def _full_sync_reason(self, state: SyncState | None, force_full: bool) -> str | None:
        if force_full:
            return "forced"
        if state is None:
            return "no_sync_state"
        if not state.synced:
            return "never_synced"
        if state.last_sync_at is None:
            return "stale"
        stale_after = timedelta(days=self.config.sync.stale_after_days)
        if datetime.now() - state.last_sync_at > stale_after:
            return "stale"
        return None

    # ------------------------------------------------------------------
    # Incremental
    # ------------------------------------------------------------------

    async def incremental_sync(self, start_history_id: str) -> SyncPassResult:
        """Page through the change log from start_history_id.

        Raises:
            WatermarkExpiredError: If the provider rejects the start cursor
        """
        sync_config = self.config.sync
        result = SyncPassResult(mode="incremental")
        seen: set[tuple[str, str]] = set()
        newest: str | None = None
        page_token: str | None = None

        # Every page is read before the watermark moves; the provider's
        # historyId is the mailbox cursor, not the position of the page.
        while True:
            page = await asyncio.to_thread(
                self.client.list_history,
                start_history_id,
                max_results=sync_config.history_page_size,
                page_token=page_token,
            )
            result.pages += 1
            if page.history_id:
                newest = page.history_id

            for record in page.records:
                result.records += 1
                await self._process_record(record, seen, result)

            if not page.next_page_token:
                break
            page_token = page.next_page_token

        watermark = newest or start_history_id
        await self.store.update_watermark(self.user.id, watermark)
        result.watermark = watermark

        logger.info(
            "sync_pass_complete",
            mode="incremental",
            pages=result.pages,
            records=result.records,
            jobs=len(result.jobs_enqueued),
            watermark=watermark,
        )
        return result

    async def _process_record(
        self,
        record: HistoryRecord,
        seen: set[tuple[str, str]],
        result: SyncPassResult,
    ) -> None:
        for ref in record.messages_added:
            if INBOX_LABEL not in ref.label_ids:
                continue
            thread_id = await self._thread_id(ref)
            if not thread_id:
                continue

            decision = await self._route(ref)
            if decision.route == "agent":
                await self._enqueue_once(
                    "agent_process",
                    thread_id,
                    {
                        "message_id": ref.id,
                        "thread_id": thread_id,
                        "profile": decision.profile or "default",
                        "route_rule": decision.rule_name or "default",
                    },
                    seen,
                    result,
                )
            else:
                await self._enqueue_once(
                    "classify",
                    thread_id,
                    {"message_id": ref.id, "thread_id": thread_id},
                    seen,
                    result,
                )

        if record.labels_added:
            labels = await self._labels()
            for change in record.labels_added:
                thread_id = await self._thread_id(change.message)
                if not thread_id:
                    continue
                added = set(change.label_ids)
                message_id = change.message.id

                if labels.get("done") in added:
                    await self._enqueue_once(
                        "cleanup",
                        thread_id,
                        {"action": "done", "thread_id": thread_id, "message_id": message_id},
                        seen,
                        result,
                    )
                if labels.get("rework") in added:
                    await self._enqueue_once(
                        "rework",
                        thread_id,
                        {"thread_id": thread_id, "message_id": message_id},
                        seen,
                        result,
                    )
                if labels.get("needs_response") in added:
                    await self._enqueue_once(
                        "manual_draft",
                        thread_id,
                        {"thread_id": thread_id, "message_id": message_id},
                        seen,
                        result,
                    )

        for ref in record.messages_deleted:
            thread_id = await self._thread_id(ref)
            if not thread_id:
                continue
            await self._enqueue_once(
                "cleanup",
                thread_id,
                {"action": "check_sent", "thread_id": thread_id, "message_id": ref.id},
                seen,
                result,
            )

    async def _enqueue_once(
        self,
        job_type: str,
        thread_id: str,
        payload: dict,
        seen: set[tuple[str, str]],
        result: SyncPassResult,
    ) -> None:
        key = (job_type, thread_id)
        if key in seen:
            return
        seen.add(key)
        await self._enqueue(job_type, thread_id, payload, result)

    async def _enqueue(
        self,
        job_type: str,
        thread_id: str,
        payload: dict,
        result: SyncPassResult,
    ) -> None:
        job = await self.store.enqueue(
            self.user.id,
            job_type,
            payload,
            max_attempts=self.config.jobs.max_attempts,
        )
        result.jobs_enqueued.append((job_type, thread_id))
        logger.debug(
            "sync_job_enqueued",
            new_job_id=job.id,
            new_job_type=job_type,
            thread_id=thread_id,
        )

    async def _route(self, ref: MessageRef) -> RouteDecision:
        """Route a new inbox message; any failure falls back to the pipeline."""
        if not self.router.needs_message:
            return DEFAULT_ROUTE
        try:
            message = await asyncio.to_thread(self.client.get_message, ref.id, format="full")
            return self.router.route(MessageSummary.from_api(message))
        except Exception as e:
            logger.warning(
                "sync_routing_failed",
                message_id=ref.id,
                error=str(e),
                fallback="pipeline",
            )
            return DEFAULT_ROUTE

    async def _thread_id(self, ref: MessageRef) -> str | None:
        if ref.thread_id:
            return ref.thread_id
        message = await asyncio.to_thread(self.client.get_message, ref.id, format="metadata")
        return message.get("threadId")

    async def _labels(self) -> dict[str, str]:
        """label_key -> provider label id, loaded once per pass."""
        if self._label_ids is None:
            labels = await self.store.get_user_labels(self.user.id)
            self._label_ids = {key: label.provider_label_id for key, label in labels.items()}
        return self._label_ids

    # ------------------------------------------------------------------
    # Full
    # ------------------------------------------------------------------

    async def build_full_sync_query(self) -> str:
        """Search for recent inbox mail without any managed label.

        Labels mapped for this mailbox are excluded by provider label id;
        unmapped keys fall back to the configured label name.
        """
        days = self.config.sync.full_sync_days
        label_ids = await self._labels()
        exclusions = []
        for key, name in self.config.labels.names.items():
            term = label_ids.get(key) or name.replace("/", "-").replace(" ", "-")
            exclusions.append(f"-label:{term}")
        return " ".join([f"in:inbox newer_than:{days}d -in:trash -in:spam", *exclusions])

    async def full_sync(self) -> SyncPassResult:
        """Reconcile recent inbox threads and reset the watermark to now."""
        result = SyncPassResult(mode="full")
        query = await self.build_full_sync_query()

        refs = await asyncio.to_thread(
            self.client.list_messages,
            query,
            max_results=self.config.sync.full_sync_max_messages,
        )

        seen_threads: set[str] = set()
        for ref in refs:
            thread_id = await self._thread_id(ref)
            if not thread_id or thread_id in seen_threads:
                continue
            seen_threads.add(thread_id)

            if await self.store.email_record_exists(self.user.id, thread_id):
                continue
            if await self.store.has_inflight_thread_job(
                self.user.id, thread_id, INFLIGHT_THREAD_TYPES
            ):
                continue

            await self._enqueue(
                "classify",
                thread_id,
                {"message_id": ref.id, "thread_id": thread_id},
                result,
            )

        profile = await asyncio.to_thread(self.client.get_profile)
        watermark = str(profile["historyId"])
        await self.store.update_watermark(self.user.id, watermark)
        result.watermark = watermark

        logger.info(
            "sync_pass_complete",
            mode="full",
            messages=len(refs),
            threads=len(seen_threads),
            jobs=len(result.jobs_enqueued),
            watermark=watermark,
        )
        return result
