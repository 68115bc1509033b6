"""Tests for the claim strategies under concurrent claimers."""

import asyncio
from pathlib import Path

import pytest

from mailpipe.db import (
    DatabaseStore,
    LockingClaim,
    OptimisticClaim,
    User,
    select_claim_strategy,
)

STRATEGIES = [LockingClaim, OptimisticClaim]


@pytest.fixture(params=STRATEGIES, ids=["lock", "optimistic"])
async def strategy_store(request, db_path: Path) -> DatabaseStore:
    s = DatabaseStore(db_path, claim_strategy=request.param())
    await s.initialize()
    return s


class TestSelectClaimStrategy:
    def test_known_modes(self) -> None:
        assert isinstance(select_claim_strategy("lock"), LockingClaim)
        assert isinstance(select_claim_strategy("optimistic"), OptimisticClaim)

    def test_unknown_mode_raises(self) -> None:
        with pytest.raises(ValueError, match="Unknown claim mode"):
            select_claim_strategy("yolo")

    def test_store_defaults_to_locking(self, db_path: Path) -> None:
        assert DatabaseStore(db_path).claim_strategy.name == "lock"


class TestConcurrentClaims:
    @pytest.mark.asyncio
    async def test_each_job_claimed_exactly_once(self, strategy_store: DatabaseStore) -> None:
        """Many claimers racing over one database never share a job."""
        store = strategy_store
        owner = await store.create_user("alice@example.com")
        job_ids = {
            (await store.enqueue(owner.id, "classify", {"thread_id": f"t{i}"})).id
            for i in range(20)
        }

        # Separate store objects mimic separate processes on the same file
        claimers = [
            DatabaseStore(store.db_path, claim_strategy=type(store.claim_strategy)())
            for _ in range(6)
        ]

        async def drain(claimer: DatabaseStore) -> list[int]:
            claimed = []
            empty_polls = 0
            while empty_polls < 3:
                job = await claimer.claim_next()
                if job is None:
                    empty_polls += 1
                    await asyncio.sleep(0.01)
                    continue
                claimed.append(job.id)
            return claimed

        results = await asyncio.gather(*(drain(c) for c in claimers))
        claimed = [job_id for batch in results for job_id in batch]

        assert sorted(claimed) == sorted(job_ids)
        assert len(claimed) == len(set(claimed))

        for job_id in job_ids:
            job = await store.get_job(job_id)
            assert job.status == "running"
            assert job.attempts == 1

    @pytest.mark.asyncio
    async def test_single_job_single_winner(self, strategy_store: DatabaseStore) -> None:
        store = strategy_store
        owner = await store.create_user("alice@example.com")
        await store.enqueue(owner.id, "sync", {})

        results = await asyncio.gather(*(store.claim_next() for _ in range(8)))

        winners = [job for job in results if job is not None]
        assert len(winners) == 1

    @pytest.mark.asyncio
    async def test_exhausted_jobs_are_not_claimed(
        self, strategy_store: DatabaseStore
    ) -> None:
        store = strategy_store
        owner = await store.create_user("alice@example.com")
        await store.enqueue(owner.id, "sync", {}, max_attempts=1)
        job = await store.claim_next()
        await store.fail_job(job.id, "boom")

        assert await store.claim_next() is None


class TestOptimisticClaim:
    @pytest.mark.asyncio
    async def test_skips_rows_taken_by_another_worker(
        self, db_path: Path, user: User, store: DatabaseStore
    ) -> None:
        first = await store.enqueue(user.id, "sync", {})
        second = await store.enqueue(user.id, "sync", {})

        optimistic = DatabaseStore(db_path, claim_strategy=OptimisticClaim(batch_size=2))
        locking = DatabaseStore(db_path, claim_strategy=LockingClaim())

        assert (await locking.claim_next()).id == first.id
        assert (await optimistic.claim_next()).id == second.id
        assert await optimistic.claim_next() is None
