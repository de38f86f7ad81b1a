"""
Unit tests for dead-letter queue administration.
"""

import pytest
import pytest_asyncio

from cmdqueue.constants import JobState
from cmdqueue.core.app_config import AppConfig
from cmdqueue.core.dlq import DeadLetterQueue
from cmdqueue.core.jobs import JobManager
from cmdqueue.core.retry import RetryScheduler
from cmdqueue.db import get_session_context
from cmdqueue.db.repository import JobRepository


class TestDeadLetterQueue:
    """Tests for DeadLetterQueue."""

    @pytest.fixture
    def dlq(self) -> DeadLetterQueue:
        return DeadLetterQueue()

    @pytest_asyncio.fixture
    async def make_dead(self, app_config: AppConfig):
        manager = JobManager(app_config)
        scheduler = RetryScheduler(app_config)

        async def _make_dead(command: str = "fail"):
            job = await manager.create_job(command, max_retries=1)
            async with get_session_context() as session:
                claimed = await JobRepository(session).claim_next("w1", 300_000)
            assert claimed.id == job.id
            return await scheduler.record_failure(claimed, "boom", "w1")

        return _make_dead

    async def test_list_and_count(self, dlq: DeadLetterQueue, make_dead):
        first = await make_dead()
        second = await make_dead()

        jobs = await dlq.list()

        assert {job.id for job in jobs} == {first.id, second.id}
        assert await dlq.count() == 2
        assert len(await dlq.list(limit=1)) == 1

    async def test_retry_round_trip(self, dlq: DeadLetterQueue, make_dead):
        dead = await make_dead()
        assert dead.state == JobState.DEAD
        assert dead.attempts == 1

        restored = await dlq.retry(dead.id)

        assert restored.state == JobState.PENDING
        assert restored.attempts == 0
        assert restored.error == ""
        assert restored.next_retry_at is None
        assert await dlq.count() == 0

        async with get_session_context() as session:
            claimed = await JobRepository(session).claim_next("w2", 300_000)
        assert claimed.id == dead.id

    async def test_retry_non_dead_job(self, dlq: DeadLetterQueue, app_config: AppConfig):
        job = await JobManager(app_config).create_job("echo hi")

        assert await dlq.retry(job.id) is None
        assert await dlq.retry("missing") is None

    async def test_delete(self, dlq: DeadLetterQueue, make_dead):
        dead = await make_dead()

        assert await dlq.delete(dead.id) is True
        assert await dlq.delete(dead.id) is False
        assert await dlq.count() == 0

    async def test_clear(self, dlq: DeadLetterQueue, make_dead, app_config: AppConfig):
        await make_dead()
        await make_dead()
        alive = await JobManager(app_config).create_job("echo hi")

        assert await dlq.clear() == 2
        assert await dlq.count() == 0
        assert await JobManager(app_config).get_job(alive.id) is not None
