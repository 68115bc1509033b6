"""Tests for the click CLI, run through CliRunner against a temp database."""

import asyncio
from pathlib import Path

import pytest
from click.testing import CliRunner

from mailpipe.cli import cli
from mailpipe.db.store import DatabaseStore


@pytest.fixture
def cli_env(temp_config_dir: Path, data_dir: Path) -> dict[str, str]:
    config_path = temp_config_dir / "config.yaml"
    config_path.write_text(
        "schema_version: 1\n"
        "database:\n"
        f"  path: \"{data_dir / 'cli.db'}\"\n"
        "sync:\n"
        "  pubsub_topic: \"projects/test/topics/gmail\"\n"
    )
    return {"MAILPIPE_CONFIG_PATH": str(config_path)}


@pytest.fixture
def cli_store(data_dir: Path) -> DatabaseStore:
    return DatabaseStore(data_dir / "cli.db")


@pytest.fixture
def runner() -> CliRunner:
    return CliRunner()


def test_validate_config(runner: CliRunner, cli_env: dict[str, str]) -> None:
    result = runner.invoke(cli, ["validate-config", "-c", cli_env["MAILPIPE_CONFIG_PATH"]])

    assert result.exit_code == 0
    assert "Configuration valid" in result.output


def test_validate_config_missing_file(runner: CliRunner, tmp_path: Path) -> None:
    result = runner.invoke(cli, ["validate-config", "-c", str(tmp_path / "nope.yaml")])

    assert result.exit_code == 1
    assert "Load error" in result.output


def test_add_user_then_enqueue_sync(
    runner: CliRunner, cli_env: dict[str, str], cli_store: DatabaseStore
) -> None:
    added = runner.invoke(cli, ["add-user", "Alice@Example.com", "--onboarded"], env=cli_env)
    queued = runner.invoke(cli, ["sync", "alice@example.com", "--full"], env=cli_env)

    assert added.exit_code == 0, added.output
    assert queued.exit_code == 0, queued.output
    assert "Enqueued sync job" in queued.output

    jobs = asyncio.run(cli_store.list_jobs(job_type="sync"))
    assert len(jobs) == 1
    assert jobs[0].payload["force_full"] is True


def test_sync_unknown_mailbox_exits_1(runner: CliRunner, cli_env: dict[str, str]) -> None:
    result = runner.invoke(cli, ["sync", "nobody@example.com"], env=cli_env)

    assert result.exit_code == 1
    assert "No mailbox registered" in result.output


def test_set_label_validates_key(
    runner: CliRunner, cli_env: dict[str, str], cli_store: DatabaseStore
) -> None:
    runner.invoke(cli, ["add-user", "alice@example.com"], env=cli_env)

    bad = runner.invoke(cli, ["set-label", "alice@example.com", "bogus", "Label_1"], env=cli_env)
    good = runner.invoke(
        cli, ["set-label", "alice@example.com", "done", "Label_9"], env=cli_env
    )

    assert bad.exit_code == 1
    assert "Unknown label key" in bad.output
    assert good.exit_code == 0, good.output

    async def labels():
        user = await cli_store.get_user_by_email("alice@example.com")
        return await cli_store.get_user_labels(user.id)

    assert asyncio.run(labels())["done"].provider_label_id == "Label_9"


def test_jobs_and_retry_failed(
    runner: CliRunner, cli_env: dict[str, str], cli_store: DatabaseStore
) -> None:
    runner.invoke(cli, ["add-user", "alice@example.com"], env=cli_env)

    async def seed_failed() -> None:
        user = await cli_store.get_user_by_email("alice@example.com")
        await cli_store.enqueue(user.id, "classify", {"thread_id": "t1"}, max_attempts=1)
        job = await cli_store.claim_next()
        await cli_store.fail_job(job.id, "boom")

    asyncio.run(seed_failed())

    listed = runner.invoke(cli, ["jobs", "--status", "failed"], env=cli_env)
    retried = runner.invoke(cli, ["retry-failed"], env=cli_env)

    assert listed.exit_code == 0, listed.output
    assert "failed: 1" in listed.output
    assert "Requeued 1" in retried.output
    assert asyncio.run(cli_store.get_job_counts())["pending"] == 1


def test_missing_config_exits_1(runner: CliRunner, tmp_path: Path) -> None:
    result = runner.invoke(
        cli, ["init-db"], env={"MAILPIPE_CONFIG_PATH": str(tmp_path / "missing.yaml")}
    )

    assert result.exit_code == 1
    assert "Config error" in result.output
