"""Database store with async operations for all mailpipe tables.

The store is the single source of truth for work: the sync engine writes
jobs and watermarks through it, workers claim and resolve jobs through it,
and the web layer and CLI read from it.

Every operation opens its own connection, so any number of asyncio
workers can share one store instance.

Usage:
    from mailpipe.db.store import DatabaseStore

    store = DatabaseStore("data/mailpipe.db")
    await store.initialize()

    job = await store.enqueue(user.id, "sync", {"history_id": ""})
    claimed = await store.claim_next()
    await store.complete_job(claimed.id)
"""

from __future__ import annotations

import json
from collections.abc import AsyncIterator, Iterable
from contextlib import asynccontextmanager
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any

import aiosqlite

from mailpipe.core.errors import DatabaseError
from mailpipe.core.logging import get_logger
from mailpipe.db.claim import ClaimStrategy, LockingClaim
from mailpipe.db.models import (
    JOB_STATUSES,
    JOB_TYPES,
    NEVER_SYNCED,
    EmailRecord,
    Job,
    JobStatus,
    SyncState,
    User,
    UserLabel,
    init_database,
)

logger = get_logger(__name__)

DEFAULT_MAX_ATTEMPTS = 3


class DatabaseStore:
    """Database store for users, labels, sync state, jobs and email records.

    Attributes:
        db_path: Path to the SQLite database file
        claim_strategy: How claim_next() takes a job
        default_max_attempts: max_attempts for jobs enqueued without one
    """

    def __init__(
        self,
        db_path: str | Path,
        claim_strategy: ClaimStrategy | None = None,
        default_max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    ):
        self.db_path = Path(db_path)
        self.claim_strategy = claim_strategy or LockingClaim()
        self.default_max_attempts = default_max_attempts
        self._initialized = False

    async def initialize(self) -> None:
        """Initialize the database, creating tables if needed."""
        await init_database(self.db_path)
        self._initialized = True

    @asynccontextmanager
    async def _db(self) -> AsyncIterator[aiosqlite.Connection]:
        """Get a configured database connection.

        - busy_timeout: 10s so concurrent claimers wait for the write lock
        - foreign_keys: ON to enforce referential integrity
        - synchronous: NORMAL (safe with WAL, faster writes)
        """
        async with aiosqlite.connect(self.db_path) as db:
            await db.execute("PRAGMA busy_timeout = 10000")
            await db.execute("PRAGMA foreign_keys = ON")
            await db.execute("PRAGMA synchronous = NORMAL")
            await db.execute("PRAGMA temp_store = MEMORY")

            db.row_factory = aiosqlite.Row
            yield db

    async def checkpoint_wal(self) -> None:
        """Run a WAL checkpoint to keep WAL file size bounded."""
        try:
            async with self._db() as db:
                await db.execute("PRAGMA wal_checkpoint(TRUNCATE)")
            logger.debug("wal_checkpoint_complete")
        except aiosqlite.Error as e:
            logger.warning("wal_checkpoint_failed", error=str(e))

    async def ping(self) -> bool:
        """Return True if the database answers a trivial query."""
        try:
            async with self._db() as db:
                await db.execute("SELECT 1")
            return True
        except aiosqlite.Error as e:
            logger.warning("database_ping_failed", error=str(e))
            return False

    # =========================================================================
    # User Operations
    # =========================================================================

    async def create_user(
        self,
        email: str,
        display_name: str | None = None,
        onboarded: bool = False,
    ) -> User:
        """Create a mailbox user.

        Raises:
            DatabaseError: If the address already exists or the insert fails
        """
        now = datetime.now().isoformat()
        try:
            async with self._db() as db:
                cursor = await db.execute(
                    """
                    INSERT INTO users (email, display_name, is_active, onboarded_at, created_at)
                    VALUES (?, ?, 1, ?, ?)
                    """,
                    (email.lower(), display_name, now if onboarded else None, now),
                )
                await db.commit()
                user_id = cursor.lastrowid
                cursor = await db.execute("SELECT * FROM users WHERE id = ?", (user_id,))
                user = User.from_row(await cursor.fetchone())

            logger.info("user_created", user_id=user.id, onboarded=onboarded)
            return user

        except aiosqlite.IntegrityError as e:
            raise DatabaseError(f"User {email} already exists") from e
        except aiosqlite.Error as e:
            logger.error("user_create_failed", error=str(e))
            raise DatabaseError(f"Failed to create user {email}: {e}") from e

    async def get_user(self, user_id: int) -> User | None:
        try:
            async with self._db() as db:
                cursor = await db.execute("SELECT * FROM users WHERE id = ?", (user_id,))
                row = await cursor.fetchone()
                return User.from_row(row) if row else None

        except aiosqlite.Error as e:
            logger.error("user_get_failed", user_id=user_id, error=str(e))
            raise DatabaseError(f"Failed to get user {user_id}: {e}") from e

    async def get_user_by_email(self, email: str) -> User | None:
        """Look up a mailbox by address (case-insensitive)."""
        try:
            async with self._db() as db:
                cursor = await db.execute(
                    "SELECT * FROM users WHERE email = ?", (email.strip().lower(),)
                )
                row = await cursor.fetchone()
                return User.from_row(row) if row else None

        except aiosqlite.Error as e:
            logger.error("user_lookup_failed", error=str(e))
            raise DatabaseError(f"Failed to look up user {email}: {e}") from e

    async def list_users(
        self,
        active_only: bool = True,
        onboarded_only: bool = False,
    ) -> list[User]:
        """List mailbox users.

        Args:
            active_only: Only users with is_active set
            onboarded_only: Only users with onboarded_at set
        """
        query = "SELECT * FROM users WHERE 1 = 1"
        if active_only:
            query += " AND is_active = 1"
        if onboarded_only:
            query += " AND onboarded_at IS NOT NULL"
        query += " ORDER BY id"

        try:
            async with self._db() as db:
                cursor = await db.execute(query)
                return [User.from_row(row) for row in await cursor.fetchall()]

        except aiosqlite.Error as e:
            logger.error("user_list_failed", error=str(e))
            raise DatabaseError(f"Failed to list users: {e}") from e

    async def set_user_onboarded(self, user_id: int, onboarded: bool = True) -> None:
        try:
            async with self._db() as db:
                await db.execute(
                    "UPDATE users SET onboarded_at = ? WHERE id = ?",
                    (datetime.now().isoformat() if onboarded else None, user_id),
                )
                await db.commit()

        except aiosqlite.Error as e:
            logger.error("user_onboard_failed", user_id=user_id, error=str(e))
            raise DatabaseError(f"Failed to update user {user_id}: {e}") from e

    async def set_user_active(self, user_id: int, active: bool) -> None:
        try:
            async with self._db() as db:
                await db.execute(
                    "UPDATE users SET is_active = ? WHERE id = ?",
                    (1 if active else 0, user_id),
                )
                await db.commit()

        except aiosqlite.Error as e:
            logger.error("user_activate_failed", user_id=user_id, error=str(e))
            raise DatabaseError(f"Failed to update user {user_id}: {e}") from e

    # =========================================================================
    # User Label Operations
    # =========================================================================

    async def set_user_label(
        self,
        user_id: int,
        label_key: str,
        provider_label_id: str,
        label_name: str | None = None,
    ) -> None:
        """Record the provider label id for a managed label key."""
        try:
            async with self._db() as db:
                await db.execute(
                    """
                    INSERT INTO user_labels (user_id, label_key, provider_label_id, label_name)
                    VALUES (?, ?, ?, ?)
                    ON CONFLICT(user_id, label_key) DO UPDATE SET
                        provider_label_id = excluded.provider_label_id,
                        label_name = excluded.label_name
                    """,
                    (user_id, label_key, provider_label_id, label_name),
                )
                await db.commit()

            logger.debug("user_label_set", user_id=user_id, label_key=label_key)

        except aiosqlite.Error as e:
            logger.error("user_label_set_failed", user_id=user_id, error=str(e))
            raise DatabaseError(f"Failed to set label {label_key} for user {user_id}: {e}") from e

    async def get_user_labels(self, user_id: int) -> dict[str, UserLabel]:
        """Return label_key -> UserLabel for one mailbox."""
        try:
            async with self._db() as db:
                cursor = await db.execute(
                    "SELECT * FROM user_labels WHERE user_id = ?", (user_id,)
                )
                rows = await cursor.fetchall()
                return {row["label_key"]: UserLabel.from_row(row) for row in rows}

        except aiosqlite.Error as e:
            logger.error("user_labels_get_failed", user_id=user_id, error=str(e))
            raise DatabaseError(f"Failed to get labels for user {user_id}: {e}") from e

    # =========================================================================
    # Sync State Operations
    # =========================================================================

    async def get_sync_state(self, user_id: int) -> SyncState | None:
        try:
            async with self._db() as db:
                cursor = await db.execute(
                    "SELECT * FROM sync_state WHERE user_id = ?", (user_id,)
                )
                row = await cursor.fetchone()
                return SyncState.from_row(row) if row else None

        except aiosqlite.Error as e:
            logger.error("sync_state_get_failed", user_id=user_id, error=str(e))
            raise DatabaseError(f"Failed to get sync state for user {user_id}: {e}") from e

    async def list_sync_states(self) -> list[tuple[User, SyncState | None]]:
        """Every user with its sync state (None if it never had one)."""
        try:
            async with self._db() as db:
                cursor = await db.execute(
                    """
                    SELECT u.*,
                           s.user_id AS s_user_id,
                           s.last_history_id, s.last_sync_at,
                           s.watch_expiration, s.watch_resource_id,
                           s.updated_at
                    FROM users u
                    LEFT JOIN sync_state s ON s.user_id = u.id
                    ORDER BY u.id
                    """
                )
                rows = await cursor.fetchall()

        except aiosqlite.Error as e:
            logger.error("sync_state_list_failed", error=str(e))
            raise DatabaseError(f"Failed to list sync state: {e}") from e

        result: list[tuple[User, SyncState | None]] = []
        for row in rows:
            state = None
            if row["s_user_id"] is not None:
                state = SyncState(
                    user_id=row["s_user_id"],
                    last_history_id=row["last_history_id"],
                    last_sync_at=datetime.fromisoformat(row["last_sync_at"])
                    if row["last_sync_at"]
                    else None,
                    watch_expiration=row["watch_expiration"],
                    watch_resource_id=row["watch_resource_id"],
                    updated_at=datetime.fromisoformat(row["updated_at"])
                    if row["updated_at"]
                    else None,
                )
            result.append((User.from_row(row), state))
        return result

    async def update_watermark(self, user_id: int, history_id: str) -> None:
        """Record a completed pass: new watermark and last_sync_at = now.

        Creates the row if absent; push subscription fields are preserved.
        """
        now = datetime.now().isoformat()
        try:
            async with self._db() as db:
                await db.execute(
                    """
                    INSERT INTO sync_state (user_id, last_history_id, last_sync_at, updated_at)
                    VALUES (?, ?, ?, ?)
                    ON CONFLICT(user_id) DO UPDATE SET
                        last_history_id = excluded.last_history_id,
                        last_sync_at = excluded.last_sync_at,
                        updated_at = excluded.updated_at
                    """,
                    (user_id, history_id, now, now),
                )
                await db.commit()

            logger.debug("watermark_updated", user_id=user_id, history_id=history_id)

        except aiosqlite.Error as e:
            logger.error("watermark_update_failed", user_id=user_id, error=str(e))
            raise DatabaseError(f"Failed to update watermark for user {user_id}: {e}") from e

    async def update_watch(
        self,
        user_id: int,
        expiration: int | None,
        resource_id: str | None,
    ) -> None:
        """Record the push subscription lease.

        Creates the row with the never-synced watermark if absent; the
        watermark of an existing row is untouched.
        """
        now = datetime.now().isoformat()
        try:
            async with self._db() as db:
                await db.execute(
                    """
                    INSERT INTO sync_state (
                        user_id, last_history_id, watch_expiration, watch_resource_id, updated_at
                    ) VALUES (?, ?, ?, ?, ?)
                    ON CONFLICT(user_id) DO UPDATE SET
                        watch_expiration = excluded.watch_expiration,
                        watch_resource_id = excluded.watch_resource_id,
                        updated_at = excluded.updated_at
                    """,
                    (user_id, NEVER_SYNCED, expiration, resource_id, now),
                )
                await db.commit()

        except aiosqlite.Error as e:
            logger.error("watch_update_failed", user_id=user_id, error=str(e))
            raise DatabaseError(f"Failed to update watch for user {user_id}: {e}") from e

    async def clear_watch(self, user_id: int) -> None:
        await self.update_watch(user_id, None, None)

    # =========================================================================
    # Email Record Operations
    # =========================================================================

    async def save_email_record(self, record: EmailRecord) -> None:
        """Insert or update the local record for a thread."""
        try:
            async with self._db() as db:
                await db.execute(
                    """
                    INSERT INTO emails (
                        user_id, thread_id, message_id, sender_email, subject,
                        status, processed_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?)
                    ON CONFLICT(user_id, thread_id) DO UPDATE SET
                        message_id = excluded.message_id,
                        sender_email = excluded.sender_email,
                        subject = excluded.subject,
                        status = excluded.status,
                        processed_at = excluded.processed_at
                    """,
                    (
                        record.user_id,
                        record.thread_id,
                        record.message_id,
                        record.sender_email,
                        record.subject,
                        record.status,
                        record.processed_at.isoformat() if record.processed_at else None,
                    ),
                )
                await db.commit()

        except aiosqlite.Error as e:
            logger.error(
                "email_record_save_failed",
                user_id=record.user_id,
                thread_id=record.thread_id,
                error=str(e),
            )
            raise DatabaseError(f"Failed to save email record {record.thread_id}: {e}") from e

    async def get_email_record(self, user_id: int, thread_id: str) -> EmailRecord | None:
        try:
            async with self._db() as db:
                cursor = await db.execute(
                    "SELECT * FROM emails WHERE user_id = ? AND thread_id = ?",
                    (user_id, thread_id),
                )
                row = await cursor.fetchone()
                return EmailRecord.from_row(row) if row else None

        except aiosqlite.Error as e:
            logger.error("email_record_get_failed", user_id=user_id, error=str(e))
            raise DatabaseError(f"Failed to get email record {thread_id}: {e}") from e

    async def email_record_exists(self, user_id: int, thread_id: str) -> bool:
        try:
            async with self._db() as db:
                cursor = await db.execute(
                    "SELECT 1 FROM emails WHERE user_id = ? AND thread_id = ?",
                    (user_id, thread_id),
                )
                return await cursor.fetchone() is not None

        except aiosqlite.Error as e:
            logger.error("email_record_check_failed", user_id=user_id, error=str(e))
            raise DatabaseError(f"Failed to check email record {thread_id}: {e}") from e

    # =========================================================================
    # Job Queue Operations
    # =========================================================================

    async def enqueue(
        self,
        user_id: int,
        job_type: str,
        payload: dict[str, Any] | None = None,
        max_attempts: int | None = None,
    ) -> Job:
        """Insert a pending job with zero attempts.

        Raises:
            ValueError: If job_type is unknown or max_attempts is below 1
            DatabaseError: If the insert fails
        """
        if job_type not in JOB_TYPES:
            raise ValueError(
                f"Unknown job type {job_type!r}; expected one of {', '.join(JOB_TYPES)}"
            )

        attempts_allowed = self.default_max_attempts if max_attempts is None else max_attempts
        if attempts_allowed < 1:
            raise ValueError(f"max_attempts must be at least 1, got {attempts_allowed}")

        now = datetime.now().isoformat()
        try:
            async with self._db() as db:
                cursor = await db.execute(
                    """
                    INSERT INTO jobs (
                        user_id, job_type, status, payload, attempts, max_attempts,
                        created_at, updated_at
                    ) VALUES (?, ?, 'pending', ?, 0, ?, ?, ?)
                    """,
                    (user_id, job_type, json.dumps(payload or {}), attempts_allowed, now, now),
                )
                await db.commit()
                job_id = cursor.lastrowid
                cursor = await db.execute("SELECT * FROM jobs WHERE id = ?", (job_id,))
                job = Job.from_row(await cursor.fetchone())

        except aiosqlite.Error as e:
            logger.error("job_enqueue_failed", user_id=user_id, job_type=job_type, error=str(e))
            raise DatabaseError(f"Failed to enqueue {job_type} job for user {user_id}: {e}") from e

        logger.debug(
            "job_enqueued",
            job_id=job.id,
            user_id=user_id,
            job_type=job_type,
            thread_id=job.thread_id,
        )
        return job

    async def claim_next(self) -> Job | None:
        """Atomically claim the oldest eligible pending job.

        The claimed job is returned already marked running, with attempts
        incremented and started_at stamped. Returns None if nothing is
        claimable.
        """
        try:
            async with self._db() as db:
                job = await self.claim_strategy.claim(db)

        except aiosqlite.Error as e:
            logger.error("job_claim_failed", strategy=self.claim_strategy.name, error=str(e))
            raise DatabaseError(f"Failed to claim a job: {e}") from e

        if job:
            logger.debug(
                "job_claimed",
                job_id=job.id,
                job_type=job.job_type,
                attempt=job.attempts,
                max_attempts=job.max_attempts,
            )
        return job

    async def complete_job(self, job_id: int) -> None:
        now = datetime.now().isoformat()
        try:
            async with self._db() as db:
                await db.execute(
                    """
                    UPDATE jobs
                    SET status = 'completed', completed_at = ?, updated_at = ?
                    WHERE id = ?
                    """,
                    (now, now, job_id),
                )
                await db.commit()

        except aiosqlite.Error as e:
            logger.error("job_complete_failed", job_id=job_id, error=str(e))
            raise DatabaseError(f"Failed to complete job {job_id}: {e}") from e

    async def fail_job(self, job_id: int, message: str, retryable: bool = True) -> JobStatus:
        """Record a failed attempt.

        A retryable failure with attempts remaining returns the job to
        pending; otherwise the job becomes terminally failed.

        Returns:
            The job's resulting status ('pending' or 'failed')

        Raises:
            DatabaseError: If the job does not exist or the update fails
        """
        now = datetime.now().isoformat()
        try:
            async with self._db() as db:
                cursor = await db.execute(
                    "SELECT attempts, max_attempts FROM jobs WHERE id = ?", (job_id,)
                )
                row = await cursor.fetchone()
                if row is None:
                    raise DatabaseError(f"Job {job_id} not found")

                if retryable and row["attempts"] < row["max_attempts"]:
                    status: JobStatus = "pending"
                    await db.execute(
                        """
                        UPDATE jobs
                        SET status = 'pending', error_message = ?, updated_at = ?
                        WHERE id = ?
                        """,
                        (message, now, job_id),
                    )
                else:
                    status = "failed"
                    await db.execute(
                        """
                        UPDATE jobs
                        SET status = 'failed', error_message = ?,
                            completed_at = ?, updated_at = ?
                        WHERE id = ?
                        """,
                        (message, now, now, job_id),
                    )
                await db.commit()

        except aiosqlite.Error as e:
            logger.error("job_fail_failed", job_id=job_id, error=str(e))
            raise DatabaseError(f"Failed to record failure for job {job_id}: {e}") from e

        return status

    async def get_job(self, job_id: int) -> Job | None:
        try:
            async with self._db() as db:
                cursor = await db.execute("SELECT * FROM jobs WHERE id = ?", (job_id,))
                row = await cursor.fetchone()
                return Job.from_row(row) if row else None

        except aiosqlite.Error as e:
            logger.error("job_get_failed", job_id=job_id, error=str(e))
            raise DatabaseError(f"Failed to get job {job_id}: {e}") from e

    async def list_jobs(
        self,
        status: str | None = None,
        job_type: str | None = None,
        user_id: int | None = None,
        limit: int = 50,
    ) -> list[Job]:
        """List jobs, newest first, with optional filters."""
        conditions = []
        params: list[Any] = []
        if status:
            conditions.append("status = ?")
            params.append(status)
        if job_type:
            conditions.append("job_type = ?")
            params.append(job_type)
        if user_id is not None:
            conditions.append("user_id = ?")
            params.append(user_id)

        query = "SELECT * FROM jobs"
        if conditions:
            query += " WHERE " + " AND ".join(conditions)
        query += " ORDER BY id DESC LIMIT ?"
        params.append(limit)

        try:
            async with self._db() as db:
                cursor = await db.execute(query, params)
                return [Job.from_row(row) for row in await cursor.fetchall()]

        except aiosqlite.Error as e:
            logger.error("job_list_failed", error=str(e))
            raise DatabaseError(f"Failed to list jobs: {e}") from e

    async def get_job_counts(self) -> dict[str, int]:
        """Job counts per status; every status is present (zero if none)."""
        counts = {status: 0 for status in JOB_STATUSES}
        try:
            async with self._db() as db:
                cursor = await db.execute(
                    "SELECT status, COUNT(*) AS n FROM jobs GROUP BY status"
                )
                for row in await cursor.fetchall():
                    counts[row["status"]] = row["n"]

        except aiosqlite.Error as e:
            logger.error("job_counts_failed", error=str(e))
            raise DatabaseError(f"Failed to count jobs: {e}") from e

        return counts

    async def has_inflight_thread_job(
        self,
        user_id: int,
        thread_id: str,
        job_types: Iterable[str],
    ) -> bool:
        """True if a pending or running job of the given types targets the thread."""
        types = list(job_types)
        if not types:
            return False

        placeholders = ",".join("?" * len(types))
        try:
            async with self._db() as db:
                cursor = await db.execute(
                    f"""
                    SELECT 1 FROM jobs
                    WHERE user_id = ?
                    AND status IN ('pending', 'running')
                    AND job_type IN ({placeholders})
                    AND json_extract(payload, '$.thread_id') = ?
                    LIMIT 1
                    """,
                    (user_id, *types, thread_id),
                )
                return await cursor.fetchone() is not None

        except aiosqlite.Error as e:
            logger.error("inflight_check_failed", user_id=user_id, error=str(e))
            raise DatabaseError(f"Failed to check in-flight jobs for {thread_id}: {e}") from e

    async def retry_failed_jobs(self, job_type: str | None = None) -> int:
        """Reset terminally failed jobs to pending with zero attempts.

        Operator action only; the worker pool never does this.

        Returns:
            Number of jobs reset
        """
        now = datetime.now().isoformat()
        query = """
            UPDATE jobs
            SET status = 'pending', attempts = 0, error_message = NULL,
                started_at = NULL, completed_at = NULL, updated_at = ?
            WHERE status = 'failed'
        """
        params: list[Any] = [now]
        if job_type:
            query += " AND job_type = ?"
            params.append(job_type)

        try:
            async with self._db() as db:
                cursor = await db.execute(query, params)
                await db.commit()
                count = cursor.rowcount

        except aiosqlite.Error as e:
            logger.error("job_retry_failed", error=str(e))
            raise DatabaseError(f"Failed to reset failed jobs: {e}") from e

        logger.info("failed_jobs_reset", count=count, job_type=job_type)
        return count

    async def prune_finished_jobs(self, days: int) -> int:
        """Delete completed and failed jobs finished more than `days` ago.

        Returns:
            Number of jobs deleted
        """
        cutoff = (datetime.now() - timedelta(days=days)).isoformat()
        try:
            async with self._db() as db:
                cursor = await db.execute(
                    """
                    DELETE FROM jobs
                    WHERE status IN ('completed', 'failed')
                    AND completed_at IS NOT NULL
                    AND completed_at < ?
                    """,
                    (cutoff,),
                )
                await db.commit()
                count = cursor.rowcount

        except aiosqlite.Error as e:
            logger.error("job_prune_failed", error=str(e))
            raise DatabaseError(f"Failed to prune jobs: {e}") from e

        logger.info("finished_jobs_pruned", count=count, older_than_days=days)
        return count

    async def recover_stale_running(self, older_than_minutes: int) -> int:
        """Resolve jobs left running by a crashed process.

        Each job started before the cutoff goes through fail_job, so it
        returns to pending if attempts remain and is failed otherwise.

        Returns:
            Number of jobs recovered
        """
        cutoff = (datetime.now() - timedelta(minutes=older_than_minutes)).isoformat()
        try:
            async with self._db() as db:
                cursor = await db.execute(
                    """
                    SELECT id FROM jobs
                    WHERE status = 'running'
                    AND (started_at IS NULL OR started_at < ?)
                    ORDER BY id
                    """,
                    (cutoff,),
                )
                job_ids = [row["id"] for row in await cursor.fetchall()]

        except aiosqlite.Error as e:
            logger.error("stale_job_scan_failed", error=str(e))
            raise DatabaseError(f"Failed to scan for stale running jobs: {e}") from e

        for job_id in job_ids:
            status = await self.fail_job(job_id, "worker interrupted")
            logger.warning("stale_job_recovered", job_id=job_id, status=status)

        return len(job_ids)
