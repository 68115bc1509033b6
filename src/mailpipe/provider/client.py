"""Gmail REST API client with retry logic and error handling.

This module provides the blocking HTTP client the sync engine, watch
manager and job handlers use for one mailbox, including:
- Automatic retry with exponential backoff and jitter for transient errors
- Proper handling of rate limits (429 responses, Retry-After)
- Proactive rate limiting through a process-wide token bucket
- Translation of an expired change-log cursor into WatermarkExpiredError

Usage:
    from mailpipe.provider.client import GmailClient
    from mailpipe.provider.tokens import TokenFileProvider

    client = GmailClient("alice@example.com", TokenFileProvider("data/tokens.json"))
    page = client.list_history("1000")
"""

import random
import time
from typing import Any

import requests

from mailpipe.config_schema import ProviderConfig
from mailpipe.core.errors import (
    AuthenticationError,
    ProviderError,
    RateLimitExceeded,
    TransientProviderError,
    WatermarkExpiredError,
)
from mailpipe.core.logging import get_logger
from mailpipe.core.rate_limiter import get_bucket
from mailpipe.provider.models import HistoryPage, MessageRef
from mailpipe.provider.tokens import TokenProvider

logger = get_logger(__name__)

GMAIL_BASE_URL = "https://gmail.googleapis.com/gmail/v1"

DEFAULT_MAX_RETRIES = 3
DEFAULT_RETRY_DELAYS = [1.0, 2.0, 4.0]
DEFAULT_TIMEOUT = 30.0

# Gmail allows 250 quota units per user per second; most calls cost 5-10
GMAIL_RATE = 5.0
GMAIL_CAPACITY = 10

# messages.list page size ceiling
LIST_PAGE_MAX = 500


class GmailClient:
    """Gmail API client for a single mailbox.

    Attributes:
        mailbox: Address whose access token authorizes requests
        base_url: Gmail API base URL
        max_retries: Maximum number of retry attempts
        retry_delays: Delay (seconds) before each retry
    """

    def __init__(
        self,
        mailbox: str,
        token_provider: TokenProvider,
        base_url: str = GMAIL_BASE_URL,
        max_retries: int = DEFAULT_MAX_RETRIES,
        retry_delays: list[float] | None = None,
        timeout: float = DEFAULT_TIMEOUT,
        rate: float = GMAIL_RATE,
        burst: int = GMAIL_CAPACITY,
        session: requests.Session | None = None,
    ):
        self.mailbox = mailbox
        self.token_provider = token_provider
        self.base_url = base_url.rstrip("/")
        self.max_retries = max_retries
        self.retry_delays = retry_delays or DEFAULT_RETRY_DELAYS
        self.timeout = timeout

        self.session = session or requests.Session()
        self._rate_bucket = get_bucket(name="gmail", rate=rate, capacity=burst)

    @classmethod
    def from_config(
        cls,
        mailbox: str,
        token_provider: TokenProvider,
        config: ProviderConfig,
    ) -> "GmailClient":
        return cls(
            mailbox,
            token_provider,
            base_url=config.base_url,
            max_retries=config.max_retries,
            retry_delays=list(config.retry_delays),
            timeout=config.timeout_seconds,
            rate=config.rate_per_second,
            burst=config.burst,
        )

    def _get_headers(self) -> dict[str, str]:
        """Request headers with the mailbox's current access token.

        Raises:
            AuthenticationError: If no token is available
        """
        token = self.token_provider.get_access_token(self.mailbox)
        return {
            "Authorization": f"Bearer {token}",
            "Accept": "application/json",
        }

    def _make_url(self, endpoint: str) -> str:
        if endpoint.startswith("http"):
            return endpoint
        if not endpoint.startswith("/"):
            endpoint = "/" + endpoint
        return self.base_url + endpoint

    @staticmethod
    def _error_details(response: requests.Response) -> tuple[str, str]:
        """Return (reason, message) from a Gmail error body."""
        try:
            error_info = response.json().get("error", {})
        except ValueError:
            return "unknown", response.text or f"HTTP {response.status_code}"

        if not isinstance(error_info, dict):
            return "unknown", str(error_info)

        reason = error_info.get("status") or "unknown"
        errors = error_info.get("errors") or []
        if errors and isinstance(errors[0], dict) and errors[0].get("reason"):
            reason = errors[0]["reason"]
        return reason, error_info.get("message") or response.text

    def _handle_error_response(
        self, response: requests.Response, method: str, endpoint: str
    ) -> None:
        """Raise the error matching a failed response."""
        error_code, error_message = self._error_details(response)
        status = response.status_code

        logger.error(
            "gmail_api_error",
            method=method,
            endpoint=endpoint,
            status_code=status,
            error_code=error_code,
            error_message=error_message[:200],
        )

        if status == 401:
            raise AuthenticationError(
                f"Authentication failed for {self.mailbox} (401): {error_message}. "
                "The access token may have expired; refresh it in the token file."
            )
        if status == 429:
            retry_after = response.headers.get("Retry-After")
            raise RateLimitExceeded(
                f"Rate limit exceeded (429) after {self.max_retries} retries. "
                f"Retry after: {retry_after or 'unknown'} seconds.",
                retry_after=float(retry_after) if retry_after and retry_after.isdigit() else None,
            )
        if status >= 500:
            raise TransientProviderError(
                f"Gmail API error ({status}) after {self.max_retries} retries: {error_message}",
                status_code=status,
                error_code=error_code,
            )
        raise ProviderError(
            f"Gmail API error ({status}) on {method} {endpoint}: {error_message}",
            status_code=status,
            error_code=error_code,
        )

    def _should_retry(self, response: requests.Response, attempt: int) -> bool:
        if attempt >= self.max_retries:
            return False
        return response.status_code == 429 or 500 <= response.status_code < 600

    def _backoff(self, attempt: int) -> float:
        """Configured delay for this attempt with ±20% jitter."""
        if attempt < len(self.retry_delays):
            base_delay = self.retry_delays[attempt]
        else:
            base_delay = self.retry_delays[-1]
        jitter = base_delay * 0.2 * (2 * random.random() - 1)
        return max(0.0, base_delay + jitter)

    def _get_retry_delay(self, response: requests.Response, attempt: int) -> float:
        if response.status_code == 429:
            retry_after = response.headers.get("Retry-After")
            if retry_after:
                try:
                    base_delay = float(retry_after)
                except ValueError:
                    pass
                else:
                    jitter = base_delay * 0.2 * (2 * random.random() - 1)
                    return max(0.0, base_delay + jitter)
        return self._backoff(attempt)

    def request(
        self,
        method: str,
        endpoint: str,
        params: dict[str, Any] | None = None,
        json: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Make an HTTP request to the Gmail API with retry logic.

        Returns:
            Parsed JSON response ({} for empty bodies)

        Raises:
            ProviderError: For permanent API errors (4xx)
            TransientProviderError: When 5xx, timeouts or connection errors persist
            RateLimitExceeded: When 429 responses persist
            AuthenticationError: When no valid token is available
        """
        url = self._make_url(endpoint)

        for attempt in range(self.max_retries + 1):
            try:
                self._rate_bucket.consume_sync()

                logger.debug(
                    "gmail_api_request",
                    method=method,
                    endpoint=endpoint,
                    attempt=attempt + 1,
                )

                response = self.session.request(
                    method=method,
                    url=url,
                    headers=self._get_headers(),
                    params=params,
                    json=json,
                    timeout=self.timeout,
                )

            except requests.exceptions.Timeout:
                if attempt < self.max_retries:
                    delay = self._backoff(attempt)
                    logger.warning(
                        "gmail_api_timeout_retrying",
                        method=method,
                        endpoint=endpoint,
                        attempt=attempt + 1,
                        delay=delay,
                    )
                    time.sleep(delay)
                    continue
                raise TransientProviderError(
                    f"Request to {endpoint} timed out after {self.timeout}s "
                    f"and {self.max_retries} retries."
                ) from None

            except requests.exceptions.ConnectionError as e:
                if attempt < self.max_retries:
                    delay = self._backoff(attempt)
                    logger.warning(
                        "gmail_api_connection_error_retrying",
                        method=method,
                        endpoint=endpoint,
                        attempt=attempt + 1,
                        error=str(e),
                        delay=delay,
                    )
                    time.sleep(delay)
                    continue
                raise TransientProviderError(
                    f"Connection to Gmail failed: {e}. Check network connectivity."
                ) from e

            if response.status_code < 400:
                if response.status_code == 204 or not response.content:
                    return {}
                return response.json()

            if self._should_retry(response, attempt):
                delay = self._get_retry_delay(response, attempt)
                logger.warning(
                    "gmail_api_retrying",
                    method=method,
                    endpoint=endpoint,
                    status_code=response.status_code,
                    attempt=attempt + 1,
                    max_retries=self.max_retries,
                    delay=delay,
                )
                time.sleep(delay)
                continue

            self._handle_error_response(response, method, endpoint)

        raise TransientProviderError(f"Request to {endpoint} failed after {self.max_retries} retries")

    def get(self, endpoint: str, params: dict[str, Any] | None = None) -> dict[str, Any]:
        return self.request("GET", endpoint, params=params)

    def post(
        self,
        endpoint: str,
        json: dict[str, Any] | None = None,
        params: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        return self.request("POST", endpoint, params=params, json=json)

    # ------------------------------------------------------------------
    # Mailbox operations
    # ------------------------------------------------------------------

    def list_history(
        self,
        start_history_id: str,
        max_results: int = 100,
        page_token: str | None = None,
    ) -> HistoryPage:
        """Fetch one page of the change log starting after a cursor.

        Raises:
            WatermarkExpiredError: If the provider no longer has history
                back to start_history_id (404, or 400 naming historyId)
        """
        params: dict[str, Any] = {
            "startHistoryId": start_history_id,
            "maxResults": max_results,
        }
        if page_token:
            params["pageToken"] = page_token

        try:
            data = self.get("/users/me/history", params=params)
        except (AuthenticationError, TransientProviderError):
            raise
        except ProviderError as e:
            if e.status_code == 404 or (e.status_code == 400 and "historyid" in str(e).lower()):
                raise WatermarkExpiredError(
                    f"History cursor {start_history_id} for {self.mailbox} is no longer "
                    "available. A full sync is required.",
                    watermark=start_history_id,
                    status_code=e.status_code,
                ) from e
            raise

        return HistoryPage.from_api(data)

    def list_messages(self, query: str, max_results: int = 50) -> list[MessageRef]:
        """List up to max_results messages matching a search query, newest first."""
        refs: list[MessageRef] = []
        page_token: str | None = None

        while len(refs) < max_results:
            params: dict[str, Any] = {
                "q": query,
                "maxResults": min(max_results - len(refs), LIST_PAGE_MAX),
            }
            if page_token:
                params["pageToken"] = page_token

            data = self.get("/users/me/messages", params=params)
            refs.extend(MessageRef.from_api(item) for item in data.get("messages") or [])

            page_token = data.get("nextPageToken")
            if not page_token:
                break

        return refs[:max_results]

    def get_message(self, message_id: str, format: str = "full") -> dict[str, Any]:
        return self.get(f"/users/me/messages/{message_id}", params={"format": format})

    def get_thread(self, thread_id: str, format: str = "metadata") -> dict[str, Any]:
        return self.get(f"/users/me/threads/{thread_id}", params={"format": format})

    def modify_thread_labels(
        self,
        thread_id: str,
        add_label_ids: list[str] | None = None,
        remove_label_ids: list[str] | None = None,
    ) -> dict[str, Any]:
        return self.post(
            f"/users/me/threads/{thread_id}/modify",
            json={
                "addLabelIds": add_label_ids or [],
                "removeLabelIds": remove_label_ids or [],
            },
        )

    def get_profile(self) -> dict[str, Any]:
        """Mailbox profile, including the current historyId."""
        return self.get("/users/me/profile")

    def watch(self, topic: str, label_ids: list[str] | None = None) -> dict[str, Any]:
        """Start (or renew) push notifications to a Pub/Sub topic.

        Returns:
            {"historyId": "...", "expiration": "<ms since epoch>"}
        """
        body: dict[str, Any] = {"topicName": topic}
        if label_ids:
            body["labelIds"] = label_ids
            body["labelFilterBehavior"] = "include"
        return self.post("/users/me/watch", json=body)

    def stop_watch(self) -> None:
        self.post("/users/me/stop")
