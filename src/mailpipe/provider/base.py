"""The mailbox provider interface the sync engine and handlers depend on.

GmailClient implements it over REST; tests substitute MagicMock objects
with the same method names.
"""

from typing import Any, Protocol

from mailpipe.provider.models import HistoryPage, MessageRef


class MailboxClient(Protocol):
    """One mailbox's view of the provider API.

    All methods block; async callers run them with asyncio.to_thread.

    Errors:
        WatermarkExpiredError: list_history was given a cursor the provider
            no longer retains
        TransientProviderError / RateLimitExceeded: retries exhausted
        ProviderError: permanent failure
    """

    def list_history(
        self,
        start_history_id: str,
        max_results: int = 100,
        page_token: str | None = None,
    ) -> HistoryPage: ...

    def list_messages(self, query: str, max_results: int = 50) -> list[MessageRef]: ...

    def get_message(self, message_id: str, format: str = "full") -> dict[str, Any]: ...

    def get_thread(self, thread_id: str, format: str = "metadata") -> dict[str, Any]: ...

    def modify_thread_labels(
        self,
        thread_id: str,
        add_label_ids: list[str] | None = None,
        remove_label_ids: list[str] | None = None,
    ) -> dict[str, Any]: ...

    def get_profile(self) -> dict[str, Any]: ...

    def watch(self, topic: str, label_ids: list[str] | None = None) -> dict[str, Any]: ...

    def stop_watch(self) -> None: ...
