"""Tests for the database layer.

Covers schema creation and the non-queue tables:
- users
- user_labels
- sync_state
- emails
"""

from datetime import datetime
from pathlib import Path

import aiosqlite
import pytest

from mailpipe.core.errors import DatabaseError
from mailpipe.db import (
    NEVER_SYNCED,
    DatabaseStore,
    EmailRecord,
    User,
    init_database,
    verify_schema,
)


class TestDatabaseInitialization:
    """Tests for database initialization."""

    @pytest.mark.asyncio
    async def test_init_database_creates_file(self, db_path: Path) -> None:
        assert not db_path.exists()
        await init_database(db_path)
        assert db_path.exists()

    @pytest.mark.asyncio
    async def test_init_database_enables_wal_mode(self, db_path: Path) -> None:
        await init_database(db_path)

        async with aiosqlite.connect(db_path) as db:
            cursor = await db.execute("PRAGMA journal_mode")
            row = await cursor.fetchone()
            assert row[0].lower() == "wal"

    @pytest.mark.asyncio
    async def test_init_database_creates_all_tables(self, db_path: Path) -> None:
        await init_database(db_path)

        async with aiosqlite.connect(db_path) as db:
            cursor = await db.execute("SELECT name FROM sqlite_master WHERE type='table'")
            tables = {row[0] for row in await cursor.fetchall()}

        assert {"users", "user_labels", "sync_state", "jobs", "emails"}.issubset(tables)

    @pytest.mark.asyncio
    async def test_init_database_is_idempotent(self, db_path: Path) -> None:
        await init_database(db_path)
        await init_database(db_path)
        assert await verify_schema(db_path)

    @pytest.mark.asyncio
    async def test_verify_schema_returns_false_for_empty_db(self, db_path: Path) -> None:
        async with aiosqlite.connect(db_path) as db:
            await db.execute("CREATE TABLE dummy (id INTEGER)")
            await db.commit()

        assert not await verify_schema(db_path)

    @pytest.mark.asyncio
    async def test_jobs_table_rejects_unknown_type(self, db_path: Path) -> None:
        await init_database(db_path)

        async with aiosqlite.connect(db_path) as db:
            await db.execute(
                "INSERT INTO users (email, created_at) VALUES ('x@example.com', '2026-01-01')"
            )
            with pytest.raises(aiosqlite.IntegrityError):
                await db.execute(
                    "INSERT INTO jobs (user_id, job_type, created_at) VALUES (1, 'bogus', '2026')"
                )

    @pytest.mark.asyncio
    async def test_ping(self, store: DatabaseStore) -> None:
        assert await store.ping()


class TestUserOperations:
    """Tests for mailbox users."""

    @pytest.mark.asyncio
    async def test_create_and_get_user(self, store: DatabaseStore) -> None:
        user = await store.create_user("Alice@Example.com", display_name="Alice")

        assert user.id > 0
        assert user.email == "alice@example.com"
        assert user.is_active
        assert not user.is_onboarded

        fetched = await store.get_user(user.id)
        assert fetched == user

    @pytest.mark.asyncio
    async def test_create_user_onboarded(self, store: DatabaseStore) -> None:
        user = await store.create_user("bob@example.com", onboarded=True)
        assert user.is_onboarded
        assert isinstance(user.onboarded_at, datetime)

    @pytest.mark.asyncio
    async def test_duplicate_user_raises(self, store: DatabaseStore, user: User) -> None:
        with pytest.raises(DatabaseError, match="already exists"):
            await store.create_user("alice@example.com")

    @pytest.mark.asyncio
    async def test_get_user_by_email_is_case_insensitive(
        self, store: DatabaseStore, user: User
    ) -> None:
        found = await store.get_user_by_email("  ALICE@example.COM ")
        assert found is not None
        assert found.id == user.id

        assert await store.get_user_by_email("nobody@example.com") is None

    @pytest.mark.asyncio
    async def test_get_missing_user_returns_none(self, store: DatabaseStore) -> None:
        assert await store.get_user(999) is None

    @pytest.mark.asyncio
    async def test_list_users_filters(self, store: DatabaseStore) -> None:
        active = await store.create_user("a@example.com", onboarded=True)
        pending = await store.create_user("b@example.com")
        inactive = await store.create_user("c@example.com", onboarded=True)
        await store.set_user_active(inactive.id, False)

        assert [u.id for u in await store.list_users()] == [active.id, pending.id]
        assert [u.id for u in await store.list_users(onboarded_only=True)] == [active.id]
        assert len(await store.list_users(active_only=False)) == 3

    @pytest.mark.asyncio
    async def test_set_user_onboarded(self, store: DatabaseStore) -> None:
        created = await store.create_user("d@example.com")
        await store.set_user_onboarded(created.id)
        assert (await store.get_user(created.id)).is_onboarded

        await store.set_user_onboarded(created.id, onboarded=False)
        assert not (await store.get_user(created.id)).is_onboarded


class TestUserLabels:
    """Tests for managed label ids."""

    @pytest.mark.asyncio
    async def test_set_and_get_labels(self, store: DatabaseStore, user: User) -> None:
        await store.set_user_label(user.id, "done", "Label_1", "AI/Done")
        await store.set_user_label(user.id, "rework", "Label_2")

        labels = await store.get_user_labels(user.id)

        assert set(labels) == {"done", "rework"}
        assert labels["done"].provider_label_id == "Label_1"
        assert labels["done"].label_name == "AI/Done"

    @pytest.mark.asyncio
    async def test_set_label_overwrites(self, store: DatabaseStore, user: User) -> None:
        await store.set_user_label(user.id, "done", "Label_1")
        await store.set_user_label(user.id, "done", "Label_9", "AI/Done")

        labels = await store.get_user_labels(user.id)
        assert labels["done"].provider_label_id == "Label_9"


class TestSyncState:
    """Tests for the watermark and watch lease."""

    @pytest.mark.asyncio
    async def test_no_state_for_new_user(self, store: DatabaseStore, user: User) -> None:
        assert await store.get_sync_state(user.id) is None

    @pytest.mark.asyncio
    async def test_update_watermark_creates_row(self, store: DatabaseStore, user: User) -> None:
        await store.update_watermark(user.id, "1100")

        state = await store.get_sync_state(user.id)
        assert state is not None
        assert state.last_history_id == "1100"
        assert state.synced
        assert state.last_sync_at is not None

    @pytest.mark.asyncio
    async def test_update_watch_preserves_watermark(
        self, store: DatabaseStore, user: User
    ) -> None:
        await store.update_watermark(user.id, "1100")
        await store.update_watch(user.id, 1_700_000_000_000, "5000")

        state = await store.get_sync_state(user.id)
        assert state.last_history_id == "1100"
        assert state.watch_expiration == 1_700_000_000_000
        assert state.watch_resource_id == "5000"

    @pytest.mark.asyncio
    async def test_update_watermark_preserves_watch(
        self, store: DatabaseStore, user: User
    ) -> None:
        await store.update_watch(user.id, 1_700_000_000_000, "5000")
        state = await store.get_sync_state(user.id)
        assert state.last_history_id == NEVER_SYNCED
        assert not state.synced

        await store.update_watermark(user.id, "6000")

        state = await store.get_sync_state(user.id)
        assert state.last_history_id == "6000"
        assert state.watch_expiration == 1_700_000_000_000

    @pytest.mark.asyncio
    async def test_clear_watch(self, store: DatabaseStore, user: User) -> None:
        await store.update_watch(user.id, 1_700_000_000_000, "5000")
        await store.clear_watch(user.id)

        state = await store.get_sync_state(user.id)
        assert state.watch_expiration is None
        assert state.watch_resource_id is None

    @pytest.mark.asyncio
    async def test_list_sync_states_includes_users_without_state(
        self, store: DatabaseStore, user: User
    ) -> None:
        other = await store.create_user("bob@example.com")
        await store.update_watermark(user.id, "1100")

        rows = await store.list_sync_states()

        assert [u.id for u, _ in rows] == [user.id, other.id]
        assert rows[0][1].last_history_id == "1100"
        assert rows[1][1] is None


class TestEmailRecords:
    """Tests for the local thread records."""

    @pytest.mark.asyncio
    async def test_save_and_get(self, store: DatabaseStore, user: User) -> None:
        record = EmailRecord(
            user_id=user.id,
            thread_id="t1",
            message_id="m1",
            sender_email="carol@example.com",
            subject="Quarterly numbers",
            status="recorded",
            processed_at=datetime.now(),
        )
        await store.save_email_record(record)

        fetched = await store.get_email_record(user.id, "t1")
        assert fetched is not None
        assert fetched.subject == "Quarterly numbers"
        assert fetched.status == "recorded"
        assert await store.email_record_exists(user.id, "t1")
        assert not await store.email_record_exists(user.id, "t2")

    @pytest.mark.asyncio
    async def test_save_upserts(self, store: DatabaseStore, user: User) -> None:
        await store.save_email_record(EmailRecord(user_id=user.id, thread_id="t1", subject="a"))
        await store.save_email_record(EmailRecord(user_id=user.id, thread_id="t1", subject="b"))

        fetched = await store.get_email_record(user.id, "t1")
        assert fetched.subject == "b"

    @pytest.mark.asyncio
    async def test_records_are_per_user(self, store: DatabaseStore, user: User) -> None:
        other = await store.create_user("bob@example.com")
        await store.save_email_record(EmailRecord(user_id=user.id, thread_id="t1"))

        assert not await store.email_record_exists(other.id, "t1")
