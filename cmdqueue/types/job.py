"""
Job-related type definitions for internal use.
"""

from dataclasses import dataclass

from pydantic import BaseModel, Field, field_validator


class JobCreate(BaseModel):
    """
    Validated input for creating a job.
    Rejects bad input before anything touches the store.
    """

    command: str = Field(..., min_length=1, description="Shell command to execute")
    priority: int = Field(default=0, description="Higher values are claimed first")
    max_retries: int | None = Field(
        default=None,
        ge=0,
        description="Attempts allowed before dead-lettering; config default if omitted",
    )
    id: str | None = Field(default=None, min_length=1, max_length=64)

    @field_validator("command")
    @classmethod
    def command_not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("command must not be blank")
        return value


class CommandResult(BaseModel):
    """
    Result of running a job's command.
    Returned by the executor; failures never raise.
    """

    success: bool
    output: str = ""
    error: str | None = None
    duration_ms: float | None = None


@dataclass(frozen=True)
class WorkerInfo:
    """
    Read-only snapshot of a worker loop.
    Used by status views to show what each worker is doing.
    """

    worker_id: str
    current_job_id: str | None
    processed_count: int
    running: bool

    @property
    def is_idle(self) -> bool:
        """Check if the worker is between jobs."""
        return self.current_job_id is None
