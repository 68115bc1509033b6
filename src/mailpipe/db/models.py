"""SQLite database schema, records and initialization for mailpipe.

Tables:
- users: Mailboxes the pipeline serves
- user_labels: Per-mailbox provider label ids for the managed labels
- sync_state: Per-mailbox change-log watermark and push subscription lease
- jobs: The durable work queue
- emails: Local per-thread record of handled mail

Usage:
    from mailpipe.db.models import init_database

    await init_database("data/mailpipe.db")
"""

import json
import stat
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Literal

import aiosqlite

from mailpipe.core.errors import DatabaseError
from mailpipe.core.logging import get_logger

logger = get_logger(__name__)

SCHEMA_VERSION = 1

JOB_TYPES = (
    "sync",
    "classify",
    "draft",
    "cleanup",
    "rework",
    "manual_draft",
    "agent_process",
)
JOB_STATUSES = ("pending", "running", "completed", "failed")

JobType = Literal[
    "sync", "classify", "draft", "cleanup", "rework", "manual_draft", "agent_process"
]
JobStatus = Literal["pending", "running", "completed", "failed"]

# Watermark of a mailbox that has never completed a sync
NEVER_SYNCED = "0"

_JOB_TYPES_SQL = ", ".join(f"'{t}'" for t in JOB_TYPES)
_JOB_STATUSES_SQL = ", ".join(f"'{s}'" for s in JOB_STATUSES)

SCHEMA_SQL = f"""
-- MUST be set before creating tables. Persists across connections.
PRAGMA journal_mode=WAL;

CREATE TABLE IF NOT EXISTS users (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    email TEXT NOT NULL UNIQUE,
    display_name TEXT,
    is_active INTEGER NOT NULL DEFAULT 1,
    onboarded_at DATETIME,                  -- NULL until the mailbox is ready for scheduled syncs
    created_at DATETIME NOT NULL
);

CREATE TABLE IF NOT EXISTS user_labels (
    user_id INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
    label_key TEXT NOT NULL,                -- 'needs_response', 'rework', 'done', ...
    provider_label_id TEXT NOT NULL,        -- Gmail label id, e.g. 'Label_12'
    label_name TEXT,
    PRIMARY KEY (user_id, label_key)
);

CREATE TABLE IF NOT EXISTS sync_state (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id INTEGER NOT NULL UNIQUE REFERENCES users(id) ON DELETE CASCADE,
    last_history_id TEXT NOT NULL DEFAULT '{NEVER_SYNCED}',  -- Opaque change-log cursor
    last_sync_at DATETIME,
    watch_expiration INTEGER,               -- Push lease expiry, ms since epoch
    watch_resource_id TEXT,
    updated_at DATETIME
);

CREATE TABLE IF NOT EXISTS jobs (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
    job_type TEXT NOT NULL CHECK (job_type IN ({_JOB_TYPES_SQL})),
    status TEXT NOT NULL DEFAULT 'pending'
        CHECK (status IN ({_JOB_STATUSES_SQL})),
    payload TEXT NOT NULL DEFAULT '{{}}',   -- JSON object
    attempts INTEGER NOT NULL DEFAULT 0,
    max_attempts INTEGER NOT NULL DEFAULT 3,
    error_message TEXT,
    created_at DATETIME NOT NULL,
    updated_at DATETIME,
    started_at DATETIME,
    completed_at DATETIME
);

-- Claim order: oldest pending first
CREATE INDEX IF NOT EXISTS idx_jobs_status_created ON jobs(status, created_at, id);

CREATE INDEX IF NOT EXISTS idx_jobs_user_type ON jobs(user_id, job_type, status);

CREATE TABLE IF NOT EXISTS emails (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
    thread_id TEXT NOT NULL,
    message_id TEXT,
    sender_email TEXT,
    subject TEXT,
    status TEXT NOT NULL DEFAULT 'pending',
    processed_at DATETIME,
    UNIQUE (user_id, thread_id)
);
"""

REQUIRED_TABLES = ("users", "user_labels", "sync_state", "jobs", "emails")


def _parse_dt(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


@dataclass
class User:
    """Mailbox record from the database."""

    id: int
    email: str
    display_name: str | None = None
    is_active: bool = True
    onboarded_at: datetime | None = None
    created_at: datetime | None = None

    @property
    def is_onboarded(self) -> bool:
        return self.onboarded_at is not None

    @classmethod
    def from_row(cls, row: aiosqlite.Row) -> "User":
        return cls(
            id=row["id"],
            email=row["email"],
            display_name=row["display_name"],
            is_active=bool(row["is_active"]),
            onboarded_at=_parse_dt(row["onboarded_at"]),
            created_at=_parse_dt(row["created_at"]),
        )


@dataclass
class UserLabel:
    """Provider label id for one managed label key."""

    user_id: int
    label_key: str
    provider_label_id: str
    label_name: str | None = None

    @classmethod
    def from_row(cls, row: aiosqlite.Row) -> "UserLabel":
        return cls(
            user_id=row["user_id"],
            label_key=row["label_key"],
            provider_label_id=row["provider_label_id"],
            label_name=row["label_name"],
        )


@dataclass
class SyncState:
    """Per-mailbox change-log position and push subscription lease.

    The watermark is opaque; it is only ever compared for equality and
    against the never-synced sentinel.
    """

    user_id: int
    last_history_id: str = NEVER_SYNCED
    last_sync_at: datetime | None = None
    watch_expiration: int | None = None
    watch_resource_id: str | None = None
    updated_at: datetime | None = None

    @property
    def synced(self) -> bool:
        """True once a pass has completed and recorded a real watermark."""
        return bool(self.last_history_id) and self.last_history_id != NEVER_SYNCED

    @classmethod
    def from_row(cls, row: aiosqlite.Row) -> "SyncState":
        return cls(
            user_id=row["user_id"],
            last_history_id=row["last_history_id"],
            last_sync_at=_parse_dt(row["last_sync_at"]),
            watch_expiration=row["watch_expiration"],
            watch_resource_id=row["watch_resource_id"],
            updated_at=_parse_dt(row["updated_at"]),
        )


@dataclass
class Job:
    """Job record from the database."""

    id: int
    user_id: int
    job_type: str
    status: JobStatus = "pending"
    payload: dict[str, Any] = field(default_factory=dict)
    attempts: int = 0
    max_attempts: int = 3
    error_message: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None

    @property
    def thread_id(self) -> str | None:
        return self.payload.get("thread_id")

    @classmethod
    def from_row(cls, row: aiosqlite.Row) -> "Job":
        payload: dict[str, Any] = {}
        if row["payload"]:
            try:
                decoded = json.loads(row["payload"])
            except json.JSONDecodeError:
                logger.warning("job_payload_invalid_json", job_id=row["id"])
            else:
                if isinstance(decoded, dict):
                    payload = decoded

        return cls(
            id=row["id"],
            user_id=row["user_id"],
            job_type=row["job_type"],
            status=row["status"],
            payload=payload,
            attempts=row["attempts"],
            max_attempts=row["max_attempts"],
            error_message=row["error_message"],
            created_at=_parse_dt(row["created_at"]),
            updated_at=_parse_dt(row["updated_at"]),
            started_at=_parse_dt(row["started_at"]),
            completed_at=_parse_dt(row["completed_at"]),
        )


@dataclass
class EmailRecord:
    """Local record of a handled thread."""

    user_id: int
    thread_id: str
    message_id: str | None = None
    sender_email: str | None = None
    subject: str | None = None
    status: str = "pending"
    processed_at: datetime | None = None

    @classmethod
    def from_row(cls, row: aiosqlite.Row) -> "EmailRecord":
        return cls(
            user_id=row["user_id"],
            thread_id=row["thread_id"],
            message_id=row["message_id"],
            sender_email=row["sender_email"],
            subject=row["subject"],
            status=row["status"],
            processed_at=_parse_dt(row["processed_at"]),
        )


async def init_database(db_path: str | Path) -> None:
    """Initialize the SQLite database with schema and WAL mode.

    Creates the database file if it doesn't exist, enables WAL mode so
    readers never block the claiming writer, and creates all tables and
    indexes.

    Raises:
        DatabaseError: If database initialization fails
    """
    db_path = Path(db_path)
    db_path.parent.mkdir(parents=True, exist_ok=True)

    try:
        async with aiosqlite.connect(db_path) as db:
            await db.execute("PRAGMA journal_mode=WAL")
            journal_mode = await db.execute("PRAGMA journal_mode")
            mode = await journal_mode.fetchone()
            if mode and mode[0].lower() != "wal":
                logger.warning(
                    "wal_mode_not_enabled",
                    requested="wal",
                    actual=mode[0],
                    db_path=str(db_path),
                )

            await db.executescript(SCHEMA_SQL)
            await db.commit()

            cursor = await db.execute("SELECT COUNT(*) FROM sqlite_master WHERE type='table'")
            table_count = (await cursor.fetchone())[0]

        # 0600: the database holds mailbox addresses and subjects
        db_path.chmod(stat.S_IRUSR | stat.S_IWUSR)
        for suffix in ["-wal", "-shm"]:
            wal_file = db_path.with_suffix(db_path.suffix + suffix)
            if wal_file.exists():
                wal_file.chmod(stat.S_IRUSR | stat.S_IWUSR)

        logger.info(
            "database_initialized",
            db_path=str(db_path),
            schema_version=SCHEMA_VERSION,
            tables=table_count,
        )

    except aiosqlite.Error as e:
        logger.error("database_init_failed", db_path=str(db_path), error=str(e))
        raise DatabaseError(
            f"Failed to initialize database at {db_path}: {e}. "
            "Check that the directory is writable and the database file is not corrupted."
        ) from e


async def verify_schema(db_path: str | Path) -> bool:
    """Return True if every required table exists."""
    try:
        async with aiosqlite.connect(db_path) as db:
            cursor = await db.execute("SELECT name FROM sqlite_master WHERE type='table'")
            existing_tables = {row[0] for row in await cursor.fetchall()}
    except aiosqlite.Error as e:
        logger.error("schema_verification_failed", db_path=str(db_path), error=str(e))
        return False

    missing = set(REQUIRED_TABLES) - existing_tables
    if missing:
        logger.warning("database_tables_missing", missing=sorted(missing), db_path=str(db_path))
        return False
    return True
