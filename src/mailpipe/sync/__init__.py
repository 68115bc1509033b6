"""Mailbox synchronization: change-log reconciliation, routing and push watches."""

from mailpipe.sync.engine import SyncEngine, SyncPassResult
from mailpipe.sync.router import MessageRouter, RouteDecision
from mailpipe.sync.watch import WatchManager

__all__ = [
    "SyncEngine",
    "SyncPassResult",
    "MessageRouter",
    "RouteDecision",
    "WatchManager",
]
