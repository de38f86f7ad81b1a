"""
Lease protocol for job execution.

A worker owns a job from the moment its claim lands until the outcome update
clears locked_at/locked_by. A lease older than the configured lock timeout is
expired: the job becomes claimable again and the next claim overwrites the
lease fields. The old holder's late outcome write is rejected because
transitions check locked_by.
"""

import logging
from datetime import datetime

from sqlalchemy.exc import SQLAlchemyError

from cmdqueue.constants import SPAN_CLAIM_JOB
from cmdqueue.core.app_config import AppConfig
from cmdqueue.core.backoff import utcnow
from cmdqueue.db.connection import get_session_context
from cmdqueue.db.models import Job
from cmdqueue.db.repository import JobRepository, lease_cutoff
from cmdqueue.observability.metrics import get_metrics
from cmdqueue.observability.tracing import get_tracer

logger = logging.getLogger(__name__)


def is_lease_expired(job: Job, lease_timeout_ms: int, now: datetime | None = None) -> bool:
    """
    Check whether a job's lease has expired.

    A job without a lease counts as expired.
    """
    if job.locked_at is None:
        return True
    return job.locked_at < lease_cutoff(now or utcnow(), lease_timeout_ms)


class LeaseManager:
    """
    Acquires and force-releases job leases against the store.

    Store errors on claim are treated as transient: they are logged and the
    claim reports no job, so the caller simply polls again.
    """

    def __init__(self, config: AppConfig):
        self._config = config
        self._metrics = get_metrics()

    async def claim(self, worker_id: str) -> Job | None:
        """
        Claim the next eligible job for a worker.

        Args:
            worker_id: The claiming worker.

        Returns:
            The claimed Job, or None when nothing is eligible or the store failed.
        """
        lease_timeout_ms = await self._config.lock_timeout_ms()

        with get_tracer().start_as_current_span(SPAN_CLAIM_JOB) as span:
            span.set_attribute("worker_id", worker_id)
            try:
                async with get_session_context() as session:
                    job = await JobRepository(session).claim_next(
                        worker_id=worker_id,
                        lease_timeout_ms=lease_timeout_ms,
                    )
            except SQLAlchemyError as e:
                logger.error(
                    f"Error claiming next job: {e}",
                    extra={"worker_id": worker_id},
                )
                return None

            if job is None:
                return None

            span.set_attribute("job_id", job.id)

        self._metrics.record_lease_acquired(worker_id)
        return job

    async def release(self, job_id: str, worker_id: str | None = None) -> bool:
        """
        Force-release a job's lease so another worker can claim it.

        Args:
            job_id: The job identifier.
            worker_id: Only release if this worker still holds the lease.

        Returns:
            True if a lease was released.
        """
        try:
            async with get_session_context() as session:
                job = await JobRepository(session).release_lease(job_id, worker_id)
        except SQLAlchemyError as e:
            logger.error(f"Error releasing lease: {e}", extra={"job_id": job_id})
            return False

        if job is None:
            return False

        self._metrics.record_lease_released()
        return True
