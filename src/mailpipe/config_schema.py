"""Pydantic configuration schema for mailpipe.

This module defines the configuration schema that mirrors config.yaml structure.
All configuration is validated against these models on startup and hot-reload.

Usage:
    from mailpipe.config_schema import AppConfig

    # Validate a config dict
    config = AppConfig(**yaml_data)
"""

from typing import Literal

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource, SettingsConfigDict

# Current schema version - increment when adding new required fields
CURRENT_SCHEMA_VERSION = 1

JobTypeName = Literal[
    "sync",
    "classify",
    "draft",
    "cleanup",
    "rework",
    "manual_draft",
    "agent_process",
]


class ServerConfig(BaseModel):
    """HTTP server and worker pool configuration."""

    host: str = Field(default="127.0.0.1", description="Host the web server binds to")
    port: int = Field(default=8000, ge=1, le=65535, description="Port the web server binds to")
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO",
        description="Log level for the server process",
    )
    worker_concurrency: int = Field(
        default=3,
        ge=1,
        le=64,
        description="Number of concurrent worker loops",
    )
    poll_interval_seconds: float = Field(
        default=1.0,
        gt=0,
        le=60,
        description="How long an idle worker sleeps between empty polls",
    )
    webhook_token: str | None = Field(
        default=None,
        description="Shared secret expected as ?token= on the push webhook (optional)",
    )


class DatabaseConfig(BaseModel):
    """SQLite job store configuration."""

    path: str = Field(default="data/mailpipe.db", description="Path to the SQLite database")
    claim_mode: Literal["lock", "optimistic"] = Field(
        default="lock",
        description=(
            "How workers claim jobs: 'lock' takes SQLite's write lock for the claim "
            "transaction, 'optimistic' uses a conditional update and checks the row count"
        ),
    )
    stale_running_minutes: int = Field(
        default=30,
        ge=1,
        description="On startup, jobs left 'running' longer than this are treated as interrupted",
    )

    @field_validator("path")
    @classmethod
    def validate_path(cls, v: str) -> str:
        """Ensure database path is not empty and doesn't contain traversal."""
        if not v or not v.strip():
            raise ValueError("Database path cannot be empty")
        if ".." in v:
            raise ValueError("Database path cannot contain '..' (path traversal)")
        return v


class JobsConfig(BaseModel):
    """Job queue retry configuration."""

    max_attempts: int = Field(
        default=3,
        ge=1,
        le=20,
        description="Attempts before a job is terminally failed",
    )


class SyncConfig(BaseModel):
    """Sync engine and scheduler configuration."""

    fallback_interval_minutes: int = Field(
        default=15,
        ge=1,
        le=1440,
        description="How often to enqueue a fallback sync for every mailbox (minutes)",
    )
    full_sync_interval_hours: int = Field(
        default=1,
        ge=1,
        le=168,
        description="How often to enqueue a forced full sync for every mailbox (hours)",
    )
    full_sync_days: int = Field(
        default=10,
        ge=1,
        le=365,
        description="Lookback window for full sync (days)",
    )
    full_sync_max_messages: int = Field(
        default=50,
        ge=1,
        le=500,
        description="Max messages fetched per full sync pass",
    )
    history_page_size: int = Field(
        default=100,
        ge=1,
        le=500,
        description="Change-log records requested per page",
    )
    stale_after_days: int = Field(
        default=30,
        ge=1,
        description="Fall back to full sync when the last successful sync is older than this",
    )
    watch_renewal_interval_hours: int = Field(
        default=24,
        ge=1,
        le=168,
        description="How often to check push subscriptions for renewal (hours)",
    )
    watch_renew_before_hours: int = Field(
        default=24,
        ge=1,
        le=168,
        description="Renew a push subscription when it expires within this window (hours)",
    )
    pubsub_topic: str | None = Field(
        default=None,
        description="Pub/Sub topic for push notifications (projects/<id>/topics/<name>)",
    )


class LabelsConfig(BaseModel):
    """Display names of the labels the system manages.

    Keys are the label keys stored in user_labels; values are the label
    names as they appear in the mailbox. Every key is excluded from the
    full sync query (by the mailbox's label id when one is recorded, else
    by this name) so already-handled threads are not re-queued.
    """

    names: dict[str, str] = Field(
        default={
            "needs_response": "AI/Needs Response",
            "outbox": "AI/Outbox",
            "rework": "AI/Rework",
            "action_required": "AI/Action Required",
            "payment_request": "AI/Payment Request",
            "fyi": "AI/FYI",
            "waiting": "AI/Waiting",
            "done": "AI/Done",
        },
        description="label_key -> mailbox label name",
    )


class RouteMatch(BaseModel):
    """Conditions a message must satisfy for a routing rule to apply.

    All given conditions must match.
    """

    all: bool | None = Field(default=None, description="Match every message")
    sender_email: str | None = Field(default=None, description="Exact sender address")
    sender_domain: str | None = Field(default=None, description="Sender domain")
    subject_contains: str | None = Field(default=None, description="Subject substring")
    header_match: dict[str, str] | None = Field(
        default=None,
        description="Header name -> regex pattern (case-insensitive)",
    )
    forwarded_from: str | None = Field(
        default=None,
        description="Address found in X-Forwarded-From, Reply-To, sender or body",
    )


class RoutingRule(BaseModel):
    """Routes matching messages to the classify pipeline or an agent profile."""

    name: str = Field(description="Rule display name")
    match: RouteMatch = Field(default_factory=RouteMatch)
    route: Literal["pipeline", "agent"] = Field(default="pipeline")
    profile: str | None = Field(default=None, description="Agent profile for route 'agent'")


class RoutingConfig(BaseModel):
    """Message routing configuration."""

    rules: list[RoutingRule] = Field(default_factory=list)


class ProviderConfig(BaseModel):
    """Mailbox provider client configuration."""

    base_url: str = Field(
        default="https://gmail.googleapis.com/gmail/v1",
        description="Provider REST API base URL",
    )
    max_retries: int = Field(default=3, ge=0, le=10, description="Retries for transient errors")
    retry_delays: list[float] = Field(
        default=[1.0, 2.0, 4.0],
        description="Exponential backoff delays in seconds",
    )
    timeout_seconds: float = Field(default=30.0, gt=0, description="Per-request timeout")
    rate_per_second: float = Field(default=5.0, gt=0, description="Sustained request rate")
    burst: int = Field(default=10, ge=1, description="Token bucket burst capacity")

    @field_validator("retry_delays")
    @classmethod
    def validate_retry_delays(cls, v: list[float]) -> list[float]:
        """Require at least one non-negative delay."""
        if not v:
            raise ValueError("retry_delays must contain at least one delay")
        if any(d < 0 for d in v):
            raise ValueError("retry_delays cannot be negative")
        return v


class AuthConfig(BaseModel):
    """Access token source configuration."""

    token_cache_path: str = Field(
        default="data/tokens.json",
        description="JSON file mapping mailbox address to access token",
    )

    @field_validator("token_cache_path")
    @classmethod
    def validate_token_cache_path(cls, v: str) -> str:
        """Ensure token cache path doesn't contain path traversal."""
        if not v or not v.strip():
            raise ValueError("Token cache path cannot be empty")
        if ".." in v:
            raise ValueError("Token cache path cannot contain '..' (path traversal)")
        return v


class AppConfig(BaseSettings):
    """Root configuration schema for mailpipe.

    This model validates the entire config.yaml structure. On startup and
    hot-reload, the YAML is parsed and validated against this schema.

    If validation fails on startup, the application exits with a clear error.
    If validation fails on hot-reload, the previous valid config is kept.

    MAILPIPE_* environment variables override values passed in from the
    YAML file (MAILPIPE_SERVER__PORT -> server.port). List and dict fields
    take JSON.
    """

    model_config = SettingsConfigDict(
        env_prefix="MAILPIPE_",
        env_nested_delimiter="__",
        extra="ignore",
    )

    schema_version: int = Field(
        default=CURRENT_SCHEMA_VERSION,
        ge=1,
        description="Config schema version for migration tracking",
    )

    server: ServerConfig = Field(default_factory=ServerConfig)
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    jobs: JobsConfig = Field(default_factory=JobsConfig)
    sync: SyncConfig = Field(default_factory=SyncConfig)
    labels: LabelsConfig = Field(default_factory=LabelsConfig)
    routing: RoutingConfig = Field(default_factory=RoutingConfig)
    provider: ProviderConfig = Field(default_factory=ProviderConfig)
    auth: AuthConfig = Field(default_factory=AuthConfig)

    handlers: dict[JobTypeName, str] = Field(
        default_factory=dict,
        description="job_type -> 'package.module:attribute' handler overrides",
    )

    @field_validator("handlers")
    @classmethod
    def validate_handler_paths(cls, v: dict[str, str]) -> dict[str, str]:
        """Require the 'module:attribute' import string form."""
        for job_type, path in v.items():
            module, sep, attr = path.partition(":")
            if not sep or not module or not attr:
                raise ValueError(
                    f"Handler for '{job_type}' must look like 'package.module:attribute', "
                    f"got {path!r}"
                )
        return v

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        # Environment first so it wins over the YAML passed as init kwargs
        return (env_settings, init_settings)
