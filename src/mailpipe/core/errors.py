"""Custom exception types for mailpipe.

Error messages follow one convention:
- What failed (specific operation or component)
- Why it failed (the specific condition)
- How to fix it (actionable guidance, where there is any)

The provider errors form a small taxonomy that the rest of the system keys
off: transient errors are retried inside the client, permanent errors are
surfaced immediately, and an expired watermark makes the sync engine fall
back to a full reconciliation.
"""


class MailpipeError(Exception):
    """Base exception for all mailpipe errors."""

    pass


class ConfigValidationError(MailpipeError):
    """Raised when config.yaml fails Pydantic validation.

    Includes specific field errors with actionable messages.
    """

    pass


class ConfigLoadError(MailpipeError):
    """Raised when config.yaml cannot be loaded (file not found, YAML parse error)."""

    pass


class DatabaseError(MailpipeError):
    """Raised when SQLite operations fail."""

    pass


class ProviderError(MailpipeError):
    """Raised when the mailbox provider API returns an error.

    Permanent by default: 4xx responses other than 429 are not retried.

    Attributes:
        status_code: HTTP status code from the API (None for network failures)
        error_code: Provider error reason (if available)
    """

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        error_code: str | None = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.error_code = error_code


class TransientProviderError(ProviderError):
    """Raised when a provider call kept failing with a retryable condition.

    Covers 5xx responses, timeouts and connection errors once the client's
    own retry budget is exhausted.
    """

    pass


class RateLimitExceeded(TransientProviderError):
    """Raised when rate limits are exceeded and cannot be recovered.

    Raised by the client after repeated 429 responses, and by the token
    bucket when it would require an excessive wait (>20 seconds) rather
    than blocking indefinitely.
    """

    def __init__(self, message: str, retry_after: float | None = None):
        super().__init__(message, status_code=429, error_code="rateLimitExceeded")
        self.retry_after = retry_after


class WatermarkExpiredError(ProviderError):
    """Raised when the change-log cursor is no longer valid.

    The provider only keeps a bounded window of history. A start cursor
    older than that window is rejected, and the caller must reconcile with
    a full sync instead.

    Attributes:
        watermark: The cursor the provider rejected
    """

    def __init__(self, message: str, watermark: str | None = None, status_code: int | None = None):
        super().__init__(message, status_code=status_code, error_code="historyIdInvalid")
        self.watermark = watermark


class AuthenticationError(ProviderError):
    """Raised when no usable access token exists for a mailbox."""

    def __init__(self, message: str):
        super().__init__(message, status_code=401, error_code="unauthenticated")


class UnknownJobTypeError(MailpipeError):
    """Raised when no handler is registered for a job type.

    This is a configuration bug, not a transient condition: jobs that hit it
    are failed terminally instead of being retried.
    """

    def __init__(self, job_type: str):
        super().__init__(
            f"Unknown job type: {job_type!r}. "
            "Register a handler for it under 'handlers' in config.yaml."
        )
        self.job_type = job_type


class UserNotFoundError(MailpipeError):
    """Raised when a job or request refers to a mailbox that does not exist."""

    def __init__(self, user_ref: int | str):
        super().__init__(f"User {user_ref} not found")
        self.user_ref = user_ref
