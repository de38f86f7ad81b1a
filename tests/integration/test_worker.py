"""
Integration tests for worker loops and the worker pool.
"""

import asyncio
import sys

import pytest
import structlog

from cmdqueue.constants import JobState
from cmdqueue.core.app_config import AppConfig
from cmdqueue.core.jobs import JobManager
from cmdqueue.core.lease import LeaseManager
from cmdqueue.db import get_session_context
from cmdqueue.db.repository import JobRepository
from cmdqueue.worker.executor import FAIL_DIRECTIVE_ERROR
from cmdqueue.worker.loop import WorkerLoop
from cmdqueue.worker.pool import WorkerPool, generate_worker_id


class FlakyLease(LeaseManager):
    """Lease manager whose first claims raise."""

    def __init__(self, config: AppConfig, failures: int = 1):
        super().__init__(config)
        self.failures = failures

    async def claim(self, worker_id: str):
        if self.failures:
            self.failures -= 1
            raise RuntimeError("store unavailable")
        return await super().claim(worker_id)


class TestWorkerLoop:
    """Integration tests for a single worker loop."""

    @pytest.fixture
    def manager(self, app_config: AppConfig) -> JobManager:
        return JobManager(app_config)

    @pytest.mark.skipif(sys.platform == "win32", reason="uses POSIX echo")
    async def test_executes_shell_command(self, app_config, manager, wait_for_state):
        job = await manager.create_job("echo hello")
        worker = WorkerLoop("worker-test", app_config)
        task = asyncio.create_task(worker.run())

        try:
            done = await wait_for_state(job.id, JobState.COMPLETED)
        finally:
            worker.stop()
            await asyncio.wait_for(task, timeout=5)

        assert done.output == "hello"
        assert done.attempts == 0
        assert done.locked_by is None
        assert done.completed_at is not None
        assert worker.processed_count == 1
        assert worker.current_job_id is None

    async def test_stop_wakes_idle_worker(self, app_config):
        await app_config.set("worker-poll-interval", 60_000)
        worker = WorkerLoop("worker-idle", app_config)
        task = asyncio.create_task(worker.run())
        await asyncio.sleep(0.1)

        worker.stop()
        await asyncio.wait_for(task, timeout=2)

        assert worker.running is False
        assert worker.info().is_idle

    async def test_stop_before_run(self, app_config):
        worker = WorkerLoop("worker-early", app_config)
        worker.stop()

        await asyncio.wait_for(worker.run(), timeout=2)

        assert worker.processed_count == 0
        assert "worker_id" not in structlog.contextvars.get_contextvars()

    async def test_survives_claim_errors(self, app_config, manager, wait_for_state):
        job = await manager.create_job("sleep 0")
        worker = WorkerLoop("worker-flaky", app_config, lease=FlakyLease(app_config, failures=2))
        task = asyncio.create_task(worker.run())

        try:
            await wait_for_state(job.id, JobState.COMPLETED)
        finally:
            worker.stop()
            await asyncio.wait_for(task, timeout=5)

        assert worker.processed_count == 1

    async def test_failed_command_is_rescheduled(self, app_config, manager, wait_for_state):
        job = await manager.create_job("fail", max_retries=3)
        worker = WorkerLoop("worker-fail", app_config)
        task = asyncio.create_task(worker.run())

        try:
            failed = await wait_for_state(job.id, JobState.FAILED)
        finally:
            worker.stop()
            await asyncio.wait_for(task, timeout=5)

        assert failed.attempts == 1
        assert failed.error == FAIL_DIRECTIVE_ERROR
        assert failed.next_retry_at is not None


class TestWorkerPool:
    """Integration tests for WorkerPool."""

    @pytest.fixture
    def pool(self, app_config: AppConfig) -> WorkerPool:
        return WorkerPool(config=app_config, drain_check_interval=0.05)

    def test_worker_id_format(self):
        worker_id = generate_worker_id()
        suffix = worker_id.rsplit("-", 1)[1]

        assert len(suffix) == 8
        assert worker_id != generate_worker_id()

    async def test_start_requires_positive_count(self, pool: WorkerPool):
        with pytest.raises(ValueError):
            await pool.start(0)
        assert len(pool) == 0

    async def test_start_info_stop(self, pool: WorkerPool):
        worker_ids = await pool.start(3)

        assert len(worker_ids) == 3
        assert len(set(worker_ids)) == 3
        assert len(pool) == 3
        assert pool.is_running

        info = pool.info()
        assert {worker.worker_id for worker in info} == set(worker_ids)
        assert all(worker.running for worker in info)

        more = await pool.start(1)
        assert len(pool) == 4
        assert more[0] not in worker_ids

        await pool.stop()

        assert len(pool) == 0
        assert pool.info() == []
        assert not pool.is_running

    async def test_stop_empty_pool_is_noop(self, pool: WorkerPool):
        await pool.stop()
        assert len(pool) == 0

    async def test_processes_every_job_once(self, app_config, pool, wait_for_state):
        manager = JobManager(app_config)
        jobs = [await manager.create_job("sleep 0") for _ in range(10)]

        await pool.start(3)
        try:
            for job in jobs:
                done = await wait_for_state(job.id, JobState.COMPLETED)
                assert done.output == "Slept for 0 second(s)"
        finally:
            await pool.stop()

        stats = await manager.get_stats()
        assert stats["completed"] == 10
        assert stats["total"] == 10

    async def test_fail_with_one_retry_ends_dead(self, app_config, pool, wait_for_state):
        manager = JobManager(app_config)
        job = await manager.create_job("fail", max_retries=1)

        await pool.start(1)
        try:
            dead = await wait_for_state(job.id, JobState.DEAD)
        finally:
            await pool.stop()

        assert dead.attempts == 1
        assert dead.error
        assert dead.locked_by is None

    async def test_drain_timeout_releases_running_job(self, app_config, pool, wait_for_state):
        manager = JobManager(app_config)
        job = await manager.create_job("sleep 5")

        await pool.start(1)
        await wait_for_state(job.id, JobState.PROCESSING)
        while not any(worker.current_job_id for worker in pool.info()):
            await asyncio.sleep(0.01)

        detached = list(pool._tasks.values())
        await pool.stop(drain_timeout=0.2)

        async with get_session_context() as session:
            released = await JobRepository(session).get_job(job.id)
        assert released.state == JobState.PENDING
        assert released.locked_at is None
        assert released.locked_by is None
        assert len(pool) == 0

        for task in detached:
            task.cancel()
        await asyncio.gather(*detached, return_exceptions=True)

    async def test_drain_waits_for_short_job(self, app_config, pool, wait_for_state):
        manager = JobManager(app_config)
        job = await manager.create_job("sleep 1")

        await pool.start(1)
        await wait_for_state(job.id, JobState.PROCESSING)
        await pool.stop(drain_timeout=5)

        async with get_session_context() as session:
            finished = await JobRepository(session).get_job(job.id)
        assert finished.state == JobState.COMPLETED
