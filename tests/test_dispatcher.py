"""Tests for the handler registry and the built-in handlers."""

from datetime import datetime
from unittest.mock import MagicMock

import pytest

from mailpipe.config_schema import AppConfig
from mailpipe.core.errors import ConfigValidationError, UnknownJobTypeError
from mailpipe.db import DatabaseStore, User
from mailpipe.db.models import JOB_TYPES, Job
from mailpipe.jobs.dispatcher import HandlerRegistry, build_registry, import_handler
from mailpipe.jobs.handlers import (
    DEFAULT_HANDLERS,
    HandlerContext,
    acknowledge,
    handle_sync,
    record_thread,
)


class TestRegistry:
    def test_default_registry_covers_every_job_type(self) -> None:
        registry = build_registry(AppConfig())
        assert registry.job_types == sorted(JOB_TYPES)
        assert registry.handler_for("sync") is handle_sync
        assert registry.handler_for("classify") is record_thread
        assert registry.handler_for("cleanup") is acknowledge

    def test_unknown_type_raises(self) -> None:
        with pytest.raises(UnknownJobTypeError) as exc_info:
            HandlerRegistry().handler_for("draft")
        assert exc_info.value.job_type == "draft"

    def test_register_rejects_unknown_type(self) -> None:
        with pytest.raises(ValueError):
            HandlerRegistry().register("reticulate", acknowledge)

    def test_config_override(self) -> None:
        config = AppConfig(handlers={"classify": "mailpipe.jobs.handlers:acknowledge"})
        registry = build_registry(config)
        assert registry.handler_for("classify") is acknowledge
        assert registry.handler_for("agent_process") is DEFAULT_HANDLERS["agent_process"]


class TestImportHandler:
    def test_imports_async_function(self) -> None:
        assert import_handler("mailpipe.jobs.handlers:record_thread") is record_thread

    @pytest.mark.parametrize(
        ("path", "message"),
        [
            ("mailpipe.no_such_module:handler", "Cannot import"),
            ("mailpipe.jobs.handlers:missing", "no attribute"),
            ("os.path:join", "async callable"),
            ("mailpipe.sync.engine:SyncEngine", "async callable"),
            ("mailpipe.jobs.handlers", "package.module:attribute"),
        ],
    )
    def test_rejects_bad_paths(self, path: str, message: str) -> None:
        with pytest.raises(ConfigValidationError, match=message):
            import_handler(path)


def _ctx(job: Job, user: User, client: MagicMock, store: DatabaseStore, config: AppConfig):
    return HandlerContext(
        job=job, user=user, client=client, store=store, config=config, payload=job.payload
    )


class TestBuiltinHandlers:
    @pytest.mark.asyncio
    async def test_record_thread_saves_record(
        self, store: DatabaseStore, user: User, mock_client: MagicMock, sample_config: AppConfig
    ) -> None:
        mock_client.get_message.return_value = {
            "id": "m1",
            "threadId": "t1",
            "payload": {
                "headers": [
                    {"name": "From", "value": "Dan <dan@example.com>"},
                    {"name": "Subject", "value": "Contract"},
                ]
            },
        }
        job = await store.enqueue(user.id, "classify", {"message_id": "m1", "thread_id": "t1"})

        await record_thread(_ctx(job, user, mock_client, store, sample_config))

        record = await store.get_email_record(user.id, "t1")
        assert record.sender_email == "dan@example.com"
        assert record.subject == "Contract"
        assert record.status == "recorded"
        assert isinstance(record.processed_at, datetime)
        mock_client.get_message.assert_called_once_with("m1", format="metadata")

    @pytest.mark.asyncio
    async def test_record_thread_requires_thread_id(
        self, store: DatabaseStore, user: User, mock_client: MagicMock, sample_config: AppConfig
    ) -> None:
        job = await store.enqueue(user.id, "classify", {"message_id": "m1"})

        with pytest.raises(ValueError, match="no thread_id"):
            await record_thread(_ctx(job, user, mock_client, store, sample_config))

    @pytest.mark.asyncio
    async def test_handle_sync_runs_engine(
        self, store: DatabaseStore, user: User, mock_client: MagicMock, sample_config: AppConfig
    ) -> None:
        job = await store.enqueue(user.id, "sync", {"history_id": "", "force_full": True})

        await handle_sync(_ctx(job, user, mock_client, store, sample_config))

        mock_client.list_messages.assert_called_once()
        assert (await store.get_sync_state(user.id)).last_history_id == "5000"

    @pytest.mark.asyncio
    async def test_acknowledge_has_no_side_effects(
        self, store: DatabaseStore, user: User, mock_client: MagicMock, sample_config: AppConfig
    ) -> None:
        job = await store.enqueue(user.id, "cleanup", {"action": "done", "thread_id": "t1"})

        await acknowledge(_ctx(job, user, mock_client, store, sample_config))

        assert mock_client.method_calls == []
