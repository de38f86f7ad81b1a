"""
Dead-letter queue administration.

Jobs land here through the retry state machine; nothing leaves automatically.
Operators list, retry, delete or clear them.
"""

import logging
from collections.abc import Sequence

from cmdqueue.constants import DEFAULT_LIST_LIMIT, JobState
from cmdqueue.db.connection import get_session_context
from cmdqueue.db.models import Job
from cmdqueue.db.repository import JobRepository

logger = logging.getLogger(__name__)


class DeadLetterQueue:
    """Operations on jobs in the DEAD state."""

    async def list(self, limit: int = DEFAULT_LIST_LIMIT) -> Sequence[Job]:
        """List dead jobs, most recently updated first."""
        async with get_session_context() as session:
            return await JobRepository(session).list_dead_jobs(limit)

    async def retry(self, job_id: str) -> Job | None:
        """
        Move a dead job back to the queue with a fresh retry budget.

        Resets attempts to 0, clears next_retry_at, error and the lease.

        Args:
            job_id: The job identifier.

        Returns:
            The pending Job, or None if the job is not in the dead-letter queue.
        """
        async with get_session_context() as session:
            job = await JobRepository(session).reset_dead_job(job_id)

        if job is None:
            logger.warning("Job not found in dead-letter queue", extra={"job_id": job_id})
            return None

        logger.info("Job restored from dead-letter queue", extra={"job_id": job_id})
        return job

    async def delete(self, job_id: str) -> bool:
        """Delete one dead job. Returns False if it is not in the queue."""
        async with get_session_context() as session:
            deleted = await JobRepository(session).delete_dead_job(job_id)

        if deleted:
            logger.info("Job deleted from dead-letter queue", extra={"job_id": job_id})
        else:
            logger.warning("Job not found in dead-letter queue", extra={"job_id": job_id})
        return deleted

    async def clear(self) -> int:
        """Delete every dead job. Returns the number removed."""
        async with get_session_context() as session:
            cleared = await JobRepository(session).clear_dead_jobs()

        logger.info(f"Cleared {cleared} job(s) from dead-letter queue")
        return cleared

    async def count(self) -> int:
        async with get_session_context() as session:
            counts = await JobRepository(session).count_by_state()
        return counts[JobState.DEAD.value]
