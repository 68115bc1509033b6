"""Token bucket rate limiting for provider API requests.

The provider client runs in worker threads (via asyncio.to_thread), so the
bucket is thread-safe and blocks the calling thread while it refills.

Buckets are shared per name across all clients in the process. The Gmail
API quota is per project, so every mailbox's client draws from one bucket.
"""

import threading
import time

from mailpipe.core.errors import RateLimitExceeded
from mailpipe.core.logging import get_logger

logger = get_logger(__name__)

# Longest wait the bucket will block for before giving up
MAX_WAIT_SECONDS = 20.0


class TokenBucket:
    """Token bucket rate limiter implementation.

    Tokens are added at a fixed rate and each request consumes one. If no
    tokens are available, the caller sleeps until one becomes available.

    Example:
        limiter = TokenBucket(rate=5.0, capacity=10)
        limiter.consume_sync()  # blocks if the bucket is empty
    """

    def __init__(
        self,
        rate: float = 1.0,
        capacity: int = 1,
        initial_tokens: int | None = None,
    ):
        """Initialize a token bucket rate limiter.

        Args:
            rate: Token refill rate per second
            capacity: Maximum number of tokens in the bucket
            initial_tokens: Initial number of tokens in the bucket (defaults to capacity)
        """
        self.rate = rate
        self.capacity = capacity
        self.tokens: float = capacity if initial_tokens is None else initial_tokens
        self.last_refill = time.monotonic()
        self.lock = threading.Lock()

    def consume_sync(self, tokens: int = 1) -> bool:
        """Consume tokens, blocking the calling thread if needed.

        Args:
            tokens: Number of tokens to consume

        Returns:
            True if tokens were consumed

        Raises:
            RateLimitExceeded: If tokens cannot be consumed even after waiting
        """
        if tokens > self.capacity:
            logger.error(
                "rate_limit_request_exceeds_capacity",
                tokens=tokens,
                capacity=self.capacity,
            )
            raise RateLimitExceeded(
                f"Requested tokens ({tokens}) exceed bucket capacity ({self.capacity})"
            )

        with self.lock:
            self._refill()
            if self.tokens >= tokens:
                self.tokens -= tokens
                return True

            required_tokens = tokens - self.tokens
            wait_time = required_tokens / self.rate

            if wait_time > MAX_WAIT_SECONDS:
                logger.warning(
                    "rate_limit_wait_excessive",
                    wait_time=wait_time,
                    tokens_needed=required_tokens,
                )
                raise RateLimitExceeded(
                    f"Rate limit exceeded, would require {wait_time:.2f}s wait",
                    retry_after=wait_time,
                )

        # Release lock during sleep
        logger.debug("rate_limit_waiting", wait_time=wait_time, tokens_needed=required_tokens)
        time.sleep(wait_time)

        with self.lock:
            self._refill()
            if self.tokens < tokens:
                logger.error(
                    "rate_limit_tokens_unavailable",
                    tokens=self.tokens,
                    required=tokens,
                )
                raise RateLimitExceeded("Failed to get enough tokens even after waiting")
            self.tokens -= tokens
            return True

    def _refill(self) -> None:
        """Refill tokens based on elapsed time."""
        now = time.monotonic()
        elapsed = now - self.last_refill
        self.tokens = min(self.capacity, self.tokens + elapsed * self.rate)
        self.last_refill = now


# Global token bucket instances for different services
_buckets: dict[str, TokenBucket] = {}
_buckets_lock = threading.Lock()


def get_bucket(name: str = "default", rate: float = 1.0, capacity: int = 1) -> TokenBucket:
    """Get or create a token bucket for the given name.

    Args:
        name: Bucket name/identifier
        rate: Token refill rate if creating a new bucket
        capacity: Token capacity if creating a new bucket

    Returns:
        TokenBucket instance
    """
    with _buckets_lock:
        if name not in _buckets:
            _buckets[name] = TokenBucket(rate=rate, capacity=capacity)
        return _buckets[name]


def reset_buckets() -> None:
    """Drop all shared buckets. Primarily for testing."""
    with _buckets_lock:
        _buckets.clear()
