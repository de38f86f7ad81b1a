"""
Worker loop: claim a job, run it, record the outcome, repeat.
"""

import asyncio
import logging

from cmdqueue.constants import SPAN_EXECUTE_JOB, SPAN_RECORD_OUTCOME
from cmdqueue.core.app_config import AppConfig
from cmdqueue.core.lease import LeaseManager
from cmdqueue.core.retry import RetryScheduler
from cmdqueue.db.models import Job
from cmdqueue.observability.logging import bind_context, clear_context
from cmdqueue.observability.metrics import get_metrics
from cmdqueue.observability.tracing import get_tracer
from cmdqueue.types.job import WorkerInfo
from cmdqueue.worker.executor import CommandExecutor

logger = logging.getLogger(__name__)


class WorkerLoop:
    """
    A single worker bound to one worker id.

    Features:
    - Atomic claims through the lease protocol
    - Interruptible idle wait between polls
    - Failures inside a cycle are logged and never end the loop
    - Cooperative stop: exits between cycles, never mid-execution
    """

    def __init__(
        self,
        worker_id: str,
        config: AppConfig,
        lease: LeaseManager | None = None,
        retry: RetryScheduler | None = None,
        executor: CommandExecutor | None = None,
    ):
        """
        Initialize the worker loop.

        Args:
            worker_id: Unique worker identifier, written to locked_by.
            config: Runtime config provider.
            lease: Lease protocol, created from config if omitted.
            retry: Outcome state machine, created from config if omitted.
            executor: Command executor.
        """
        self.worker_id = worker_id
        self.current_job_id: str | None = None
        self.processed_count = 0

        self._config = config
        self._lease = lease or LeaseManager(config)
        self._retry = retry or RetryScheduler(config)
        self._executor = executor or CommandExecutor()
        self._running = True
        self._stop_event = asyncio.Event()
        self._metrics = get_metrics()

    @property
    def running(self) -> bool:
        return self._running

    def info(self) -> WorkerInfo:
        """Snapshot of this worker's state."""
        return WorkerInfo(
            worker_id=self.worker_id,
            current_job_id=self.current_job_id,
            processed_count=self.processed_count,
            running=self._running,
        )

    async def run(self) -> None:
        """Run cycles until stop() is called."""
        bind_context(worker_id=self.worker_id)
        logger.info("Worker starting", extra={"worker_id": self.worker_id})

        poll_interval = await self._config.poll_interval_seconds()

        while self._running:
            try:
                job = await self._lease.claim(self.worker_id)

                if job is None:
                    await self._wait(poll_interval)
                    continue

                self.current_job_id = job.id
                await self._process(job)
                self.processed_count += 1
                self.current_job_id = None

            except Exception as e:
                logger.exception(
                    f"Error in worker loop: {e}",
                    extra={"worker_id": self.worker_id, "job_id": self.current_job_id},
                )
                self.current_job_id = None
                await self._wait(poll_interval)

        logger.info(
            f"Worker stopped after {self.processed_count} job(s)",
            extra={"worker_id": self.worker_id},
        )
        clear_context()

    def stop(self) -> None:
        """Ask the loop to exit after its current cycle."""
        self._running = False
        self._stop_event.set()

    async def _wait(self, seconds: float) -> None:
        """Sleep between polls, waking early on stop()."""
        if not self._running:
            return
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=seconds)
        except TimeoutError:
            pass

    async def _process(self, job: Job) -> None:
        """
        Execute one claimed job and record its outcome.

        Args:
            job: The job as returned by the claim.
        """
        timeout = await self._config.command_timeout_seconds()

        logger.info(
            f"Executing job: {job.command}",
            extra={"job_id": job.id, "worker_id": self.worker_id, "attempt": job.attempts + 1},
        )

        tracer = get_tracer()
        with tracer.start_as_current_span(SPAN_EXECUTE_JOB) as span:
            span.set_attribute("job_id", job.id)
            span.set_attribute("worker_id", self.worker_id)
            span.set_attribute("attempt", job.attempts + 1)

            result = await self._executor.run(job.command, timeout)
            span.set_attribute("success", result.success)

        with tracer.start_as_current_span(SPAN_RECORD_OUTCOME):
            if result.success:
                updated = await self._retry.record_success(job, result.output, self.worker_id)
            else:
                logger.warning(
                    "Job failed",
                    extra={"job_id": job.id, "error": result.error},
                )
                updated = await self._retry.record_failure(job, result.error, self.worker_id)

        outcome = updated.state.value if updated is not None else "lease_lost"
        self._metrics.record_job_processed(outcome, (result.duration_ms or 0) / 1000)
