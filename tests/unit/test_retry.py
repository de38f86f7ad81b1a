"""
Unit tests for the retry and dead-letter state machine.
"""

from datetime import timedelta

import pytest

from cmdqueue.constants import MAX_BACKOFF_SECONDS, JobState
from cmdqueue.core.app_config import AppConfig
from cmdqueue.core.backoff import utcnow
from cmdqueue.core.retry import RetryScheduler, decide_failure_state
from cmdqueue.db import get_session_context
from cmdqueue.db.repository import JobRepository


async def create(command: str, max_retries: int):
    async with get_session_context() as session:
        return await JobRepository(session).create_job(command, max_retries)


async def claim(worker_id: str, hours_ahead: int = 0):
    """Claim as if the clock were hours_ahead in the future, past any backoff."""
    now = utcnow() + timedelta(hours=hours_ahead)
    async with get_session_context() as session:
        return await JobRepository(session).claim_next(worker_id, 300_000, now=now)


class TestDecideFailureState:
    """Tests for decide_failure_state."""

    @pytest.mark.parametrize(
        ("attempts", "max_retries", "expected"),
        [
            (1, 3, JobState.FAILED),
            (2, 3, JobState.FAILED),
            (3, 3, JobState.DEAD),
            (1, 1, JobState.DEAD),
            (1, 0, JobState.DEAD),
        ],
    )
    def test_decision(self, attempts, max_retries, expected):
        assert decide_failure_state(attempts, max_retries) == expected


class TestRetryScheduler:
    """Tests for RetryScheduler outcome writes."""

    @pytest.fixture
    def scheduler(self, app_config: AppConfig) -> RetryScheduler:
        return RetryScheduler(app_config)

    async def test_record_success(self, scheduler: RetryScheduler):
        job = await create("echo hi", 3)
        claimed = await claim("w1")

        updated = await scheduler.record_success(claimed, "hi", "w1")

        assert updated.id == job.id
        assert updated.state == JobState.COMPLETED
        assert updated.output == "hi"
        assert updated.completed_at is not None
        assert updated.locked_at is None
        assert updated.locked_by is None

    async def test_retry_progression_to_dead(self, scheduler: RetryScheduler):
        job = await create("fail", 3)
        states = [job.state]

        claimed = await claim("w1")
        states.append(claimed.state)
        before = utcnow()
        first = await scheduler.record_failure(claimed, "boom", "w1")
        states.append(first.state)

        assert first.attempts == 1
        assert first.error == "boom"
        assert first.locked_by is None
        assert before + timedelta(seconds=2) <= first.next_retry_at <= utcnow() + timedelta(seconds=2)

        claimed = await claim("w1", hours_ahead=1)
        states.append(claimed.state)
        before = utcnow()
        second = await scheduler.record_failure(claimed, "boom", "w1")
        states.append(second.state)

        assert second.attempts == 2
        assert before + timedelta(seconds=4) <= second.next_retry_at <= utcnow() + timedelta(seconds=4)

        claimed = await claim("w1", hours_ahead=2)
        states.append(claimed.state)
        third = await scheduler.record_failure(claimed, "boom", "w1")
        states.append(third.state)

        assert states == [
            JobState.PENDING,
            JobState.PROCESSING,
            JobState.FAILED,
            JobState.PROCESSING,
            JobState.FAILED,
            JobState.PROCESSING,
            JobState.DEAD,
        ]
        assert third.attempts == 3
        assert third.next_retry_at is None
        assert await claim("w1", hours_ahead=10) is None

    async def test_failed_job_not_claimable_before_backoff(self, scheduler: RetryScheduler):
        await create("fail", 3)
        claimed = await claim("w1")
        await scheduler.record_failure(claimed, "boom", "w1")

        assert await claim("w2") is None

    async def test_empty_error_gets_placeholder(self, scheduler: RetryScheduler):
        await create("fail", 2)
        claimed = await claim("w1")
        failed = await scheduler.record_failure(claimed, None, "w1")
        assert failed.error == "Unknown error"

        claimed = await claim("w1", hours_ahead=1)
        dead = await scheduler.record_failure(claimed, "", "w1")
        assert dead.state == JobState.DEAD
        assert dead.error == "Max retries exceeded"

    async def test_lost_lease_write_rejected(self, scheduler: RetryScheduler):
        await create("echo hi", 3)
        stale = await claim("w1")
        # w1's lease expires and w2 reclaims the job
        reclaimed = await claim("w2", hours_ahead=1)
        assert reclaimed.locked_by == "w2"

        assert await scheduler.record_success(stale, "late", "w1") is None
        assert await scheduler.record_failure(stale, "late", "w1") is None

        async with get_session_context() as session:
            job = await JobRepository(session).get_job(stale.id)
        assert job.state == JobState.PROCESSING
        assert job.locked_by == "w2"
        assert job.attempts == 0

    async def test_backoff_base_from_config(self, app_config: AppConfig, scheduler: RetryScheduler):
        await app_config.set("backoff-base", 3)
        await create("fail", 3)
        claimed = await claim("w1")

        before = utcnow()
        failed = await scheduler.record_failure(claimed, "boom", "w1")

        assert before + timedelta(seconds=3) <= failed.next_retry_at <= utcnow() + timedelta(seconds=3)

    async def test_large_backoff_is_capped(self, app_config: AppConfig, scheduler: RetryScheduler):
        await app_config.set("backoff-base", 10)
        await create("fail", 20)
        claimed = await claim("w1")
        async with get_session_context() as session:
            claimed = await JobRepository(session).transition(
                claimed.id, JobState.PROCESSING, {"attempts": 11}, expected_owner="w1"
            )

        before = utcnow()
        failed = await scheduler.record_failure(claimed, "boom", "w1")

        assert failed.state == JobState.FAILED
        assert failed.attempts == 12
        assert failed.locked_by is None
        cap = timedelta(seconds=MAX_BACKOFF_SECONDS)
        assert before + cap <= failed.next_retry_at <= utcnow() + cap
