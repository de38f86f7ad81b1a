"""
Job management service.

The operations API, CLI and dashboard layers call to submit and inspect jobs.
"""

import logging
from collections.abc import Sequence

from cmdqueue.constants import DEFAULT_LIST_LIMIT, JobState
from cmdqueue.core.app_config import AppConfig
from cmdqueue.db.connection import get_session_context
from cmdqueue.db.models import Job
from cmdqueue.db.repository import JobRepository
from cmdqueue.observability.metrics import get_metrics
from cmdqueue.types.job import JobCreate

logger = logging.getLogger(__name__)


class JobManager:
    """Create, inspect and delete jobs."""

    def __init__(self, config: AppConfig | None = None):
        self._config = config or AppConfig()
        self._metrics = get_metrics()

    async def create_job(
        self,
        command: str,
        priority: int = 0,
        max_retries: int | None = None,
        job_id: str | None = None,
    ) -> Job:
        """
        Submit a new job in the PENDING state.

        Args:
            command: Shell command to run.
            priority: Higher values are claimed first.
            max_retries: Retry ceiling, defaults to the max-retries config value.
            job_id: Optional caller-supplied identifier.

        Returns:
            The created Job.

        Raises:
            pydantic.ValidationError: If the input is invalid. The store is not touched.
        """
        request = JobCreate(
            command=command,
            priority=priority,
            max_retries=max_retries,
            id=job_id,
        )

        if request.max_retries is None:
            request.max_retries = await self._config.max_retries()

        async with get_session_context() as session:
            job = await JobRepository(session).create_job(
                command=request.command,
                max_retries=request.max_retries,
                priority=request.priority,
                job_id=request.id,
            )

        self._metrics.record_job_created()
        return job

    async def get_job(self, job_id: str) -> Job | None:
        async with get_session_context() as session:
            return await JobRepository(session).get_job(job_id)

    async def list_jobs(
        self,
        state: JobState | str | None = None,
        limit: int = DEFAULT_LIST_LIMIT,
    ) -> Sequence[Job]:
        """
        List jobs, newest first.

        Args:
            state: Optional state filter, as enum or value.
            limit: Maximum number of jobs to return.

        Raises:
            ValueError: If state is not a known job state.
        """
        if state is not None:
            state = JobState(state)

        async with get_session_context() as session:
            return await JobRepository(session).list_jobs(state=state, limit=limit)

    async def delete_job(self, job_id: str) -> bool:
        async with get_session_context() as session:
            return await JobRepository(session).delete_job(job_id)

    async def get_stats(self) -> dict[str, int]:
        """
        Aggregate job counts.

        Returns:
            Count per state plus "total".
        """
        async with get_session_context() as session:
            counts = await JobRepository(session).count_by_state()

        counts["total"] = sum(counts.values())
        return counts
