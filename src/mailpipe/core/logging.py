"""Structured logging configuration for mailpipe.

Uses structlog with a stdlib bridge: JSON lines for `serve`, a console
renderer for the CLI. Work context (job id, job type, mailbox, sync mode)
is bound with structlog's contextvars, so every log line emitted while a
job or sync pass runs carries it without passing it around. Each asyncio
task has its own context, so concurrent workers never see each other's
fields.

Usage:
    from mailpipe.core.logging import get_logger, log_context

    logger = get_logger(__name__)

    with log_context(correlation_id=f"job-{job.id}", job_id=job.id, user_id=job.user_id):
        logger.info("job_started")  # includes correlation_id, job_id, user_id
"""

import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

import structlog

# Third-party loggers that are chatty at INFO
QUIET_LOGGERS = ("apscheduler", "urllib3", "uvicorn.access")


@contextmanager
def log_context(**fields: Any) -> Iterator[None]:
    """Bind fields to every log line emitted inside the block.

    Previous values of the same keys are restored on exit, so a sync pass
    run inside a job keeps the job's fields afterwards.
    """
    with structlog.contextvars.bound_contextvars(**fields):
        yield


def current_log_context() -> dict[str, Any]:
    """Fields currently bound for this task."""
    return structlog.contextvars.get_contextvars()


def configure_logging(log_level: str = "INFO", json_output: bool = True) -> None:
    """Configure structlog for the application.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        json_output: If True, output JSON; if False, output human-readable format
    """
    level = getattr(logging, log_level.upper())
    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level)
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))

    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
    ]

    if json_output:
        renderer: list[structlog.types.Processor] = [
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        renderer = [structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())]

    structlog.configure(
        processors=shared_processors + renderer,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)
