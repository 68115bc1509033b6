"""Atomic "claim one pending job" strategies.

Any number of workers, in one process or several, may call claim
concurrently against the same database. Each strategy guarantees that a
pending row is handed to exactly one caller.

- LockingClaim takes SQLite's write lock up front (BEGIN IMMEDIATE), so
  the select and the update run with no other writer in between.
- OptimisticClaim reads candidates without a lock and claims with a
  conditional update; a row count of zero means another worker won the
  row and the next candidate is tried.

Usage:
    strategy = select_claim_strategy(config.database.claim_mode)
    async with store._db() as db:
        job = await strategy.claim(db)
"""

from datetime import datetime
from typing import Protocol

import aiosqlite

from mailpipe.core.logging import get_logger
from mailpipe.db.models import Job

logger = get_logger(__name__)

_CANDIDATE_SQL = """
    SELECT * FROM jobs
    WHERE status = 'pending' AND attempts < max_attempts
    ORDER BY created_at ASC, id ASC
    LIMIT ?
"""


class ClaimStrategy(Protocol):
    """Claims the oldest eligible pending job on the given connection."""

    name: str

    async def claim(self, db: aiosqlite.Connection) -> Job | None: ...


class LockingClaim:
    """Claim inside a transaction that holds SQLite's reserved write lock."""

    name = "lock"

    async def claim(self, db: aiosqlite.Connection) -> Job | None:
        await db.execute("BEGIN IMMEDIATE")
        try:
            cursor = await db.execute(_CANDIDATE_SQL, (1,))
            row = await cursor.fetchone()
            if row is None:
                await db.rollback()
                return None

            now = datetime.now().isoformat()
            await db.execute(
                """
                UPDATE jobs
                SET status = 'running',
                    attempts = attempts + 1,
                    started_at = ?,
                    updated_at = ?
                WHERE id = ?
                """,
                (now, now, row["id"]),
            )
            cursor = await db.execute("SELECT * FROM jobs WHERE id = ?", (row["id"],))
            claimed = await cursor.fetchone()
            await db.commit()
        except BaseException:
            await db.rollback()
            raise

        return Job.from_row(claimed)


class OptimisticClaim:
    """Compare-and-swap claim keyed on (status, attempts).

    Args:
        batch_size: Candidates read per round
        max_rounds: Rounds of candidate reads before giving up for this poll
    """

    name = "optimistic"

    def __init__(self, batch_size: int = 5, max_rounds: int = 3):
        self.batch_size = batch_size
        self.max_rounds = max_rounds

    async def claim(self, db: aiosqlite.Connection) -> Job | None:
        for round_number in range(1, self.max_rounds + 1):
            cursor = await db.execute(_CANDIDATE_SQL, (self.batch_size,))
            candidates = await cursor.fetchall()
            if not candidates:
                return None

            for candidate in candidates:
                now = datetime.now().isoformat()
                cursor = await db.execute(
                    """
                    UPDATE jobs
                    SET status = 'running',
                        attempts = attempts + 1,
                        started_at = ?,
                        updated_at = ?
                    WHERE id = ? AND status = 'pending' AND attempts = ?
                    """,
                    (now, now, candidate["id"], candidate["attempts"]),
                )
                won = cursor.rowcount == 1
                await db.commit()

                if won:
                    cursor = await db.execute(
                        "SELECT * FROM jobs WHERE id = ?", (candidate["id"],)
                    )
                    return Job.from_row(await cursor.fetchone())

                logger.debug(
                    "claim_lost_race",
                    job_id=candidate["id"],
                    round=round_number,
                )

        # Every candidate was taken by someone else; the next poll retries
        return None


def select_claim_strategy(mode: str) -> ClaimStrategy:
    """Return the claim strategy for a `database.claim_mode` value."""
    if mode == "lock":
        return LockingClaim()
    if mode == "optimistic":
        return OptimisticClaim()
    raise ValueError(f"Unknown claim mode {mode!r}; expected 'lock' or 'optimistic'")
