"""
Retry and dead-letter state machine.

Applies the outcome of one execution to a claimed job:

- success                      -> COMPLETED
- failure, attempts < max      -> FAILED, next_retry_at = now + base ** attempts
- failure, attempts >= max     -> DEAD

attempts is counted after the failing execution. Every write clears the
lease in the same statement and only applies while the worker still owns it.
"""

import logging

from cmdqueue.constants import ERROR_MAX_RETRIES, ERROR_UNKNOWN, JobState
from cmdqueue.core.app_config import AppConfig
from cmdqueue.core.backoff import next_retry_time
from cmdqueue.db.connection import get_session_context
from cmdqueue.db.models import Job
from cmdqueue.db.repository import JobRepository

logger = logging.getLogger(__name__)


def decide_failure_state(attempts: int, max_retries: int) -> JobState:
    """
    State a job moves to after a failed execution.

    Args:
        attempts: Attempt count including the failed execution.
        max_retries: The job's retry ceiling.
    """
    if attempts < max_retries:
        return JobState.FAILED
    return JobState.DEAD


class RetryScheduler:
    """Writes execution outcomes back to the store."""

    def __init__(self, config: AppConfig):
        self._config = config

    async def record_success(self, job: Job, output: str, worker_id: str) -> Job | None:
        """
        Mark a job completed.

        Returns:
            The updated Job, or None if the worker lost the lease.
        """
        async with get_session_context() as session:
            updated = await JobRepository(session).transition(
                job.id,
                JobState.COMPLETED,
                {
                    "output": output,
                    "next_retry_at": None,
                    "locked_at": None,
                    "locked_by": None,
                },
                expected_owner=worker_id,
            )

        if updated is not None:
            logger.info("Job completed successfully", extra={"job_id": job.id})
        return updated

    async def record_failure(self, job: Job, error: str | None, worker_id: str) -> Job | None:
        """
        Reschedule a failed job or move it to the dead-letter queue.

        Args:
            job: The job as claimed by this worker.
            error: Error text from the executor.
            worker_id: The worker holding the lease.

        Returns:
            The updated Job, or None if the worker lost the lease.
        """
        attempts = job.attempts + 1
        next_state = decide_failure_state(attempts, job.max_retries)

        logger.info(
            f"Job failed (attempt {attempts}/{job.max_retries})",
            extra={"job_id": job.id, "error": error},
        )

        if next_state == JobState.FAILED:
            base = await self._config.backoff_base()
            retry_at = next_retry_time(attempts, base)
            fields = {
                "attempts": attempts,
                "error": error or ERROR_UNKNOWN,
                "next_retry_at": retry_at,
            }
        else:
            fields = {
                "attempts": attempts,
                "error": error or ERROR_MAX_RETRIES,
                "next_retry_at": None,
            }
        fields.update(locked_at=None, locked_by=None)

        async with get_session_context() as session:
            updated = await JobRepository(session).transition(
                job.id,
                next_state,
                fields,
                expected_owner=worker_id,
            )

        if updated is None:
            return None

        if next_state == JobState.FAILED:
            logger.info(
                f"Job will retry at {retry_at.isoformat()}",
                extra={"job_id": job.id, "attempts": attempts},
            )
        else:
            logger.warning(
                f"Job moved to dead-letter queue after {attempts} attempts",
                extra={"job_id": job.id, "error": updated.error},
            )
        return updated
