"""Push subscription (Gmail watch) lifecycle.

A watch makes Gmail publish a Pub/Sub message whenever a watched label
changes. Watches expire after at most seven days; the scheduler calls
renew_expiring_watches() daily so every active mailbox keeps one.
"""

import asyncio
import time
from collections.abc import Callable

from mailpipe.config_schema import AppConfig
from mailpipe.core.logging import get_logger
from mailpipe.db.models import SyncState, User
from mailpipe.db.store import DatabaseStore
from mailpipe.provider.base import MailboxClient

logger = get_logger(__name__)

INBOX_LABEL = "INBOX"

# Managed labels whose changes should produce push notifications
WATCHED_LABEL_KEYS = ("needs_response", "rework", "done")

ClientFactory = Callable[[User], MailboxClient]


class WatchManager:
    """Sets up, stops and renews push subscriptions.

    Args:
        store: Job store (sync state holds the lease)
        config: Application config (sync.pubsub_topic, renewal window)
        client_factory: Builds a provider client for a mailbox
    """

    def __init__(self, store: DatabaseStore, config: AppConfig, client_factory: ClientFactory):
        self.store = store
        self.config = config
        self.client_factory = client_factory

    def _renew_cutoff_ms(self) -> int:
        window_ms = self.config.sync.watch_renew_before_hours * 3600 * 1000
        return int(time.time() * 1000) + window_ms

    def watch_valid(self, state: SyncState | None) -> bool:
        """True if the lease outlives the renewal window."""
        if state is None or state.watch_expiration is None:
            return False
        return state.watch_expiration > self._renew_cutoff_ms()

    async def setup_watch(self, user: User, client: MailboxClient | None = None) -> bool:
        """Register or renew the watch for one mailbox.

        Returns:
            True if a watch was registered, False if skipped

        Raises:
            ProviderError: If the provider rejects the watch request
        """
        state = await self.store.get_sync_state(user.id)
        if self.watch_valid(state):
            logger.info("watch_still_valid", user_id=user.id)
            return False

        topic = self.config.sync.pubsub_topic
        if not topic:
            logger.warning(
                "watch_topic_not_configured",
                user_id=user.id,
                hint="Set sync.pubsub_topic in config.yaml to enable push notifications",
            )
            return False

        labels = await self.store.get_user_labels(user.id)
        label_ids = [INBOX_LABEL] + [
            labels[key].provider_label_id for key in WATCHED_LABEL_KEYS if key in labels
        ]

        client = client or self.client_factory(user)
        response = await asyncio.to_thread(client.watch, topic, label_ids)

        expiration = response.get("expiration")
        history_id = response.get("historyId")
        await self.store.update_watch(
            user.id,
            int(expiration) if expiration is not None else None,
            str(history_id) if history_id is not None else None,
        )

        logger.info(
            "watch_registered",
            user_id=user.id,
            labels=len(label_ids),
            expiration_ms=expiration,
        )
        return True

    async def stop_watch(self, user: User, client: MailboxClient | None = None) -> None:
        """Stop push notifications for a mailbox and clear the lease."""
        client = client or self.client_factory(user)
        await asyncio.to_thread(client.stop_watch)
        await self.store.clear_watch(user.id)
        logger.info("watch_stopped", user_id=user.id)

    async def renew_expiring_watches(self) -> int:
        """Renew every active mailbox's watch that is missing or about to expire.

        Failures are logged per mailbox and do not stop the sweep.

        Returns:
            Number of watches registered
        """
        renewed = 0
        for user, state in await self.store.list_sync_states():
            if not user.is_active or self.watch_valid(state):
                continue
            try:
                if await self.setup_watch(user):
                    renewed += 1
            except Exception as e:
                logger.error(
                    "watch_renewal_failed",
                    user_id=user.id,
                    error=str(e),
                    exc_info=True,
                )

        logger.info("watch_renewal_complete", renewed=renewed)
        return renewed
