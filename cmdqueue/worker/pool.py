"""
Worker pool manager.

Owns the registry of live worker loops for one process. Several processes may
run pools against the same database; they coordinate only through the
store's atomic claim.
"""

import asyncio
import logging
import os
import socket
from uuid import uuid4

from cmdqueue.config import get_settings
from cmdqueue.core.app_config import AppConfig
from cmdqueue.core.lease import LeaseManager
from cmdqueue.core.retry import RetryScheduler
from cmdqueue.observability.metrics import get_metrics
from cmdqueue.types.job import WorkerInfo
from cmdqueue.worker.executor import CommandExecutor
from cmdqueue.worker.loop import WorkerLoop

logger = logging.getLogger(__name__)


def generate_worker_id() -> str:
    """Unique worker id: hostname, PID and a random suffix."""
    return f"{socket.gethostname()}-{os.getpid()}-{uuid4().hex[:8]}"


class WorkerPool:
    """
    Starts, stops and drains worker loops.

    Each loop runs as its own asyncio task and is never awaited by start().
    stop() is cooperative: loops finish their current job first, and only
    jobs still running after the drain timeout have their lease released.
    """

    def __init__(
        self,
        config: AppConfig | None = None,
        executor: CommandExecutor | None = None,
        drain_check_interval: float | None = None,
    ):
        """
        Initialize the pool.

        Args:
            config: Runtime config provider shared by all workers.
            executor: Command executor shared by all workers.
            drain_check_interval: Seconds between checks while draining.
        """
        settings = get_settings()

        self._config = config or AppConfig()
        self._executor = executor or CommandExecutor()
        self._lease = LeaseManager(self._config)
        self._retry = RetryScheduler(self._config)
        self._drain_check_interval = (
            drain_check_interval
            if drain_check_interval is not None
            else settings.drain_check_interval_ms / 1000
        )

        self._workers: dict[str, WorkerLoop] = {}
        self._tasks: dict[str, asyncio.Task] = {}
        # Tasks still executing a job after a drain timeout
        self._detached: set[asyncio.Task] = set()
        self._metrics = get_metrics()

    def __len__(self) -> int:
        return len(self._workers)

    @property
    def is_running(self) -> bool:
        return bool(self._workers)

    async def start(self, count: int = 1) -> list[str]:
        """
        Start worker loops.

        Calling start() again adds more loops to the pool.

        Args:
            count: Number of loops to start.

        Returns:
            The new worker ids.
        """
        if count < 1:
            raise ValueError(f"Worker count must be at least 1, got {count}")

        logger.info(f"Starting {count} worker(s)")

        worker_ids = []
        for _ in range(count):
            worker_id = generate_worker_id()
            worker = WorkerLoop(
                worker_id=worker_id,
                config=self._config,
                lease=self._lease,
                retry=self._retry,
                executor=self._executor,
            )
            task = asyncio.create_task(worker.run(), name=f"worker-{worker_id}")
            task.add_done_callback(self._on_worker_exit)

            self._workers[worker_id] = worker
            self._tasks[worker_id] = task
            worker_ids.append(worker_id)

        self._metrics.set_active_workers(len(self._workers))
        logger.info(f"{len(self._workers)} worker(s) active")
        return worker_ids

    async def stop(self, drain_timeout: float | None = None) -> None:
        """
        Stop every worker and wait for in-flight jobs.

        Args:
            drain_timeout: Seconds to wait for running jobs, defaults to the
                drain-timeout config value.
        """
        if not self._workers:
            logger.info("No workers running")
            return

        workers = dict(self._workers)
        tasks = {worker_id: self._tasks[worker_id] for worker_id in workers}

        logger.info(f"Stopping {len(workers)} worker(s)")
        for worker in workers.values():
            worker.stop()

        if drain_timeout is None:
            drain_timeout = await self._config.drain_timeout_seconds()

        loop = asyncio.get_running_loop()
        deadline = loop.time() + drain_timeout

        while True:
            pending = [task for task in tasks.values() if not task.done()]
            remaining = deadline - loop.time()
            if not pending or remaining <= 0:
                break

            busy = sum(1 for worker in workers.values() if worker.current_job_id)
            if busy:
                logger.info(f"Waiting for {busy} active job(s)")
            await asyncio.wait(pending, timeout=min(self._drain_check_interval, remaining))

        for worker_id, worker in workers.items():
            task = tasks[worker_id]
            if task.done():
                continue

            job_id = worker.current_job_id
            if job_id is not None and await self._lease.release(job_id, worker_id):
                logger.warning(
                    "Drain timeout reached, released lease on running job",
                    extra={"job_id": job_id, "worker_id": worker_id},
                )

            self._detached.add(task)
            task.add_done_callback(self._detached.discard)

        for worker_id in workers:
            self._workers.pop(worker_id, None)
            self._tasks.pop(worker_id, None)

        self._metrics.set_active_workers(len(self._workers))
        logger.info("All workers stopped")

    def info(self) -> list[WorkerInfo]:
        """Snapshot of every live worker."""
        return [worker.info() for worker in self._workers.values()]

    def _on_worker_exit(self, task: asyncio.Task) -> None:
        if task.cancelled() or task.exception() is None:
            return

        # Loops catch everything per cycle, so this is a startup failure
        worker_id = task.get_name().removeprefix("worker-")
        logger.error(
            f"Worker crashed: {task.exception()}",
            extra={"worker_id": worker_id},
        )
        self._workers.pop(worker_id, None)
        self._tasks.pop(worker_id, None)
        self._metrics.set_active_workers(len(self._workers))
