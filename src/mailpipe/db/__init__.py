"""Database layer for mailpipe.

SQLite access with async operations: the durable job queue and the
per-mailbox sync state.

Usage:
    from mailpipe.db import DatabaseStore, select_claim_strategy

    store = DatabaseStore(
        "data/mailpipe.db",
        claim_strategy=select_claim_strategy("optimistic"),
    )
    await store.initialize()

    job = await store.enqueue(user_id=1, job_type="sync", payload={"history_id": ""})
"""

from mailpipe.db.claim import (
    ClaimStrategy,
    LockingClaim,
    OptimisticClaim,
    select_claim_strategy,
)
from mailpipe.db.models import (
    JOB_STATUSES,
    JOB_TYPES,
    NEVER_SYNCED,
    SCHEMA_VERSION,
    EmailRecord,
    Job,
    SyncState,
    User,
    UserLabel,
    init_database,
    verify_schema,
)
from mailpipe.db.store import DatabaseStore

__all__ = [
    # Models
    "SCHEMA_VERSION",
    "JOB_TYPES",
    "JOB_STATUSES",
    "NEVER_SYNCED",
    "init_database",
    "verify_schema",
    # Store
    "DatabaseStore",
    # Claim strategies
    "ClaimStrategy",
    "LockingClaim",
    "OptimisticClaim",
    "select_claim_strategy",
    # Dataclasses
    "User",
    "UserLabel",
    "SyncState",
    "Job",
    "EmailRecord",
]
