"""Command-line interface for mailpipe.

Provides commands for configuration validation, mailbox setup, manual
sync, job queue inspection, and the server.

Usage:
    python -m mailpipe validate-config
    python -m mailpipe init-db
    python -m mailpipe add-user alice@example.com --onboarded
    python -m mailpipe sync alice@example.com --full --now
    python -m mailpipe jobs --status failed
    python -m mailpipe serve
"""

from __future__ import annotations

import asyncio
import sys
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import TYPE_CHECKING, Any

import click
from rich.console import Console
from rich.table import Table

from mailpipe.config import validate_config_file
from mailpipe.core.logging import configure_logging

if TYPE_CHECKING:
    from mailpipe.config_schema import AppConfig
    from mailpipe.db.models import User
    from mailpipe.db.store import DatabaseStore

console = Console()

STATUS_STYLES = {
    "pending": "yellow",
    "running": "cyan",
    "completed": "green",
    "failed": "red",
}


def _load_config_or_exit() -> AppConfig:
    from mailpipe.config import get_config
    from mailpipe.core.errors import ConfigLoadError, ConfigValidationError

    try:
        return get_config()
    except (ConfigLoadError, ConfigValidationError) as e:
        console.print(
            f"[red]Config error:[/red] {e}\n\n"
            "Copy config/config.yaml.example to config/config.yaml and edit it."
        )
        sys.exit(1)


async def _open_store(config: AppConfig) -> DatabaseStore:
    from mailpipe.service import build_store

    Path(config.database.path).parent.mkdir(parents=True, exist_ok=True)
    store = build_store(config)
    await store.initialize()
    return store


async def _require_user(store: DatabaseStore, email: str) -> User:
    user = await store.get_user_by_email(email)
    if user is None:
        console.print(f"[red]No mailbox registered for[/red] {email}")
        sys.exit(1)
    return user


def _run(coro_fn: Callable[..., Awaitable[Any]], *args: Any) -> None:
    """Run an async command body with the standard exit handling."""
    try:
        asyncio.run(coro_fn(*args))
    except KeyboardInterrupt:
        console.print("\n[yellow]Cancelled.[/yellow]")
        sys.exit(130)
    except SystemExit:
        raise
    except Exception as e:
        console.print(f"\n[red]Error:[/red] {e}")
        sys.exit(1)


@click.group()
@click.option("--debug/--no-debug", default=False, help="Enable debug logging")
def cli(debug: bool) -> None:
    """mailpipe - mailbox change-log sync and job queue."""
    configure_logging(log_level="DEBUG" if debug else "INFO", json_output=False)


@cli.command("validate-config")
@click.option(
    "--config",
    "-c",
    "config_path",
    type=click.Path(exists=False, path_type=Path),
    default=None,
    help="Path to config file (default: config/config.yaml)",
)
def validate_config(config_path: Path | None) -> None:
    """Validate the configuration file against the schema."""
    console.print(f"Validating config: [cyan]{config_path or 'config/config.yaml'}[/cyan]")

    is_valid, message = validate_config_file(config_path)
    if is_valid:
        console.print(f"\n[green]✓[/green] {message}")
        sys.exit(0)
    console.print(f"\n[red]✗[/red] {message}")
    sys.exit(1)


@cli.command("init-db")
def init_db() -> None:
    """Create the database and its tables if they do not exist."""
    config = _load_config_or_exit()
    _run(_init_db, config)


async def _init_db(config: AppConfig) -> None:
    await _open_store(config)
    console.print(f"[green]✓[/green] Database ready at [cyan]{config.database.path}[/cyan]")


@cli.command("add-user")
@click.argument("email")
@click.option("--name", "display_name", default=None, help="Display name")
@click.option(
    "--onboarded",
    is_flag=True,
    help="Mark the mailbox as onboarded so it gets push watches and full syncs",
)
def add_user(email: str, display_name: str | None, onboarded: bool) -> None:
    """Register a mailbox."""
    config = _load_config_or_exit()
    _run(_add_user, config, email, display_name, onboarded)


async def _add_user(
    config: AppConfig, email: str, display_name: str | None, onboarded: bool
) -> None:
    store = await _open_store(config)
    user = await store.create_user(email, display_name=display_name, onboarded=onboarded)
    console.print(f"[green]✓[/green] Added mailbox {user.email} (id {user.id})")


@cli.command("set-label")
@click.argument("email")
@click.argument("label_key")
@click.argument("label_id")
@click.argument("name", required=False)
def set_label(email: str, label_key: str, label_id: str, name: str | None) -> None:
    """Map a managed label key (e.g. needs_response) to a provider label id."""
    config = _load_config_or_exit()
    if label_key not in config.labels.names:
        known = ", ".join(sorted(config.labels.names))
        console.print(f"[red]Unknown label key[/red] {label_key!r}. Known keys: {known}")
        sys.exit(1)
    _run(_set_label, config, email, label_key, label_id, name or config.labels.names[label_key])


async def _set_label(
    config: AppConfig, email: str, label_key: str, label_id: str, name: str
) -> None:
    store = await _open_store(config)
    user = await _require_user(store, email)
    await store.set_user_label(user.id, label_key, label_id, name)
    console.print(f"[green]✓[/green] {label_key} -> {label_id} ({name})")


@cli.command("sync")
@click.argument("email")
@click.option("--full", is_flag=True, help="Force a full sync instead of incremental")
@click.option("--now", "run_now", is_flag=True, help="Run the pass inline instead of enqueuing")
def sync(email: str, full: bool, run_now: bool) -> None:
    """Enqueue (or run) a sync pass for one mailbox."""
    config = _load_config_or_exit()
    _run(_sync, config, email, full, run_now)


async def _sync(config: AppConfig, email: str, full: bool, run_now: bool) -> None:
    from mailpipe.service import PipelineService

    store = await _open_store(config)
    user = await _require_user(store, email)
    service = PipelineService(config, store=store, enable_scheduler=False)

    if not run_now:
        job = await service.enqueue_sync(user, force_full=full)
        console.print(f"[green]✓[/green] Enqueued sync job {job.id} for {user.email}")
        return

    result = await service.run_sync_now(user, force_full=full)
    console.print(f"\n[bold]Sync Summary[/bold] ({user.email})")
    console.print(f"  Mode:       {result.mode}{' (fallback)' if result.fell_back else ''}")
    console.print(f"  Pages:      {result.pages}")
    console.print(f"  Records:    {result.records}")
    console.print(f"  Jobs:       {len(result.jobs_enqueued)}")
    console.print(f"  Watermark:  {result.watermark}")


@cli.command("jobs")
@click.option("--status", default=None, help="Filter by status")
@click.option("--type", "job_type", default=None, help="Filter by job type")
@click.option("--limit", default=25, type=int, help="Maximum rows to show")
def jobs(status: str | None, job_type: str | None, limit: int) -> None:
    """List recent jobs, newest first."""
    config = _load_config_or_exit()
    _run(_jobs, config, status, job_type, limit)


async def _jobs(
    config: AppConfig, status: str | None, job_type: str | None, limit: int
) -> None:
    store = await _open_store(config)
    rows = await store.list_jobs(status=status, job_type=job_type, limit=limit)
    counts = await store.get_job_counts()

    table = Table(title="Jobs")
    table.add_column("ID", justify="right")
    table.add_column("User", justify="right")
    table.add_column("Type")
    table.add_column("Status")
    table.add_column("Attempts", justify="right")
    table.add_column("Thread")
    table.add_column("Error", overflow="fold")
    table.add_column("Updated")

    for job in rows:
        style = STATUS_STYLES.get(job.status, "white")
        table.add_row(
            str(job.id),
            str(job.user_id),
            job.job_type,
            f"[{style}]{job.status}[/{style}]",
            f"{job.attempts}/{job.max_attempts}",
            job.thread_id or "",
            job.error_message or "",
            job.updated_at.strftime("%Y-%m-%d %H:%M:%S") if job.updated_at else "",
        )

    console.print(table)
    console.print("  ".join(f"{name}: {count}" for name, count in counts.items()))


@cli.command("retry-failed")
@click.option("--type", "job_type", default=None, help="Only retry jobs of this type")
def retry_failed(job_type: str | None) -> None:
    """Reset failed jobs to pending with a fresh attempt budget."""
    config = _load_config_or_exit()
    _run(_retry_failed, config, job_type)


async def _retry_failed(config: AppConfig, job_type: str | None) -> None:
    store = await _open_store(config)
    count = await store.retry_failed_jobs(job_type)
    console.print(f"[green]✓[/green] Requeued {count} failed job(s)")


@cli.command("prune-jobs")
@click.option("--days", default=7, type=int, help="Delete finished jobs older than this")
def prune_jobs(days: int) -> None:
    """Delete completed and failed jobs older than --days."""
    config = _load_config_or_exit()
    _run(_prune_jobs, config, days)


async def _prune_jobs(config: AppConfig, days: int) -> None:
    store = await _open_store(config)
    count = await store.prune_finished_jobs(days)
    console.print(f"[green]✓[/green] Deleted {count} finished job(s) older than {days} days")


@cli.command("serve")
@click.option("--host", default=None, help="Host to bind to (default: server.host)")
@click.option("--port", default=None, type=int, help="Port to bind to (default: server.port)")
def serve(host: str | None, port: int | None) -> None:
    """Start the webhook server, worker pool and scheduler in one process."""
    import uvicorn

    from mailpipe.web.app import create_app

    config = _load_config_or_exit()
    host = host or config.server.host
    port = port or config.server.port

    if host == "0.0.0.0":  # noqa: S104
        console.print(
            "[yellow]Warning:[/yellow] Binding to 0.0.0.0 exposes the API to the network.\n"
            "Only the webhook is token-protected; put the server behind a proxy."
        )

    configure_logging(log_level=config.server.log_level, json_output=True)

    Path(config.database.path).parent.mkdir(parents=True, exist_ok=True)
    app = create_app(config=config)
    console.print(f"Starting server on [cyan]http://{host}:{port}[/cyan]")
    uvicorn.run(app, host=host, port=port, log_level=config.server.log_level.lower())


def main() -> None:
    """Main entry point for the CLI."""
    cli()


if __name__ == "__main__":
    main()
