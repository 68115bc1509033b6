"""Job execution: handler registry, worker pool and periodic scheduler."""

from mailpipe.jobs.dispatcher import HandlerRegistry, build_registry, import_handler
from mailpipe.jobs.handlers import DEFAULT_HANDLERS, Handler, HandlerContext
from mailpipe.jobs.scheduler import Scheduler
from mailpipe.jobs.worker_pool import WorkerPool

__all__ = [
    "HandlerRegistry",
    "build_registry",
    "import_handler",
    "Handler",
    "HandlerContext",
    "DEFAULT_HANDLERS",
    "Scheduler",
    "WorkerPool",
]
