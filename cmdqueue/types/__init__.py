"""
Type definitions for the job queue.
Contains input/output type definitions shared across modules.
"""

from cmdqueue.types.job import CommandResult, JobCreate, WorkerInfo

__all__ = [
    "JobCreate",
    "CommandResult",
    "WorkerInfo",
]
