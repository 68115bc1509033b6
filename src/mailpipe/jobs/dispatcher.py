"""Job type -> handler registry.

Usage:
    from mailpipe.jobs.dispatcher import build_registry

    registry = build_registry(config)
    handler = registry.handler_for(job.job_type)
    await handler(ctx)

Config overrides:
    handlers:
      classify: "acme_mail.classify:handle"
"""

import importlib
import inspect

from mailpipe.config_schema import AppConfig
from mailpipe.core.errors import ConfigValidationError, UnknownJobTypeError
from mailpipe.core.logging import get_logger
from mailpipe.db.models import JOB_TYPES
from mailpipe.jobs.handlers import DEFAULT_HANDLERS, Handler

logger = get_logger(__name__)


class HandlerRegistry:
    """Explicit mapping from job type to async handler."""

    def __init__(self) -> None:
        self._handlers: dict[str, Handler] = {}

    def register(self, job_type: str, handler: Handler) -> None:
        if job_type not in JOB_TYPES:
            raise ValueError(f"Cannot register handler for unknown job type {job_type!r}")
        self._handlers[job_type] = handler

    def handler_for(self, job_type: str) -> Handler:
        """Return the handler for a job type.

        Raises:
            UnknownJobTypeError: If nothing is registered for the type
        """
        try:
            return self._handlers[job_type]
        except KeyError:
            raise UnknownJobTypeError(job_type) from None

    @property
    def job_types(self) -> list[str]:
        return sorted(self._handlers)


def import_handler(path: str) -> Handler:
    """Resolve a 'package.module:attribute' import string to a handler.

    Raises:
        ConfigValidationError: If the module or attribute cannot be loaded,
            or the attribute is not an async callable
    """
    module_name, _, attr = path.partition(":")
    if not module_name or not attr:
        raise ConfigValidationError(
            f"Handler {path!r} must look like 'package.module:attribute'"
        )

    try:
        module = importlib.import_module(module_name)
    except ImportError as e:
        raise ConfigValidationError(f"Cannot import handler module {module_name!r}: {e}") from e

    target = module
    for part in attr.split("."):
        try:
            target = getattr(target, part)
        except AttributeError:
            raise ConfigValidationError(
                f"Handler module {module_name!r} has no attribute {attr!r}"
            ) from None

    if not callable(target):
        raise ConfigValidationError(f"Handler {path!r} is not callable")
    call = target if inspect.isfunction(target) else getattr(target, "__call__", None)
    if not inspect.iscoroutinefunction(call):
        raise ConfigValidationError(f"Handler {path!r} must be an async callable")

    return target


def build_registry(config: AppConfig) -> HandlerRegistry:
    """Registry with the built-in handlers plus config overrides."""
    registry = HandlerRegistry()
    for job_type, handler in DEFAULT_HANDLERS.items():
        registry.register(job_type, handler)

    for job_type, path in config.handlers.items():
        registry.register(job_type, import_handler(path))
        logger.info("handler_override_registered", job_type=job_type, handler=path)

    return registry
