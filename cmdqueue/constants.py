"""
Application constants.
Centralized location for all constant values used across the application.
"""

from enum import StrEnum


class JobState(StrEnum):
    """
    Job lifecycle states.

    State transitions:
    - PENDING -> PROCESSING (claimed)
    - FAILED -> PROCESSING (claimed once next_retry_at has passed)
    - PROCESSING -> PROCESSING (expired lease reclaimed by another worker)
    - PROCESSING -> COMPLETED (success)
    - PROCESSING -> FAILED (failure, retries left)
    - PROCESSING -> DEAD (failure, retries exhausted)
    - PROCESSING -> PENDING (lease force-released on shutdown)
    - DEAD -> PENDING (manual retry from the dead-letter queue)
    """

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    DEAD = "dead"


# States a worker may claim from (plus PROCESSING with an expired lease)
CLAIMABLE_STATES = (JobState.PENDING, JobState.FAILED)

# States a job only leaves through a manual dead-letter retry, or never
TERMINAL_STATES = (JobState.COMPLETED, JobState.DEAD)

# Runtime config keys
CONFIG_MAX_RETRIES = "max-retries"
CONFIG_BACKOFF_BASE = "backoff-base"
CONFIG_LOCK_TIMEOUT = "lock-timeout"
CONFIG_POLL_INTERVAL = "worker-poll-interval"
CONFIG_COMMAND_TIMEOUT = "command-timeout"
CONFIG_DRAIN_TIMEOUT = "drain-timeout"

# Default values
DEFAULT_PRIORITY = 0
DEFAULT_LIST_LIMIT = 100

# Upper bound on a single retry delay (7 days)
MAX_BACKOFF_SECONDS = 7 * 24 * 60 * 60

# Error messages written to the job record
ERROR_UNKNOWN = "Unknown error"
ERROR_MAX_RETRIES = "Max retries exceeded"

# Metrics names
METRIC_JOBS_CREATED = "cmdqueue_jobs_created_total"
METRIC_JOBS_PROCESSED = "cmdqueue_jobs_processed_total"
METRIC_JOB_DURATION = "cmdqueue_job_duration_seconds"
METRIC_LEASE_ACQUIRED = "cmdqueue_lease_acquired_total"
METRIC_LEASE_RELEASED = "cmdqueue_lease_force_released_total"
METRIC_ACTIVE_WORKERS = "cmdqueue_active_workers"

# Trace span names
SPAN_CLAIM_JOB = "claim_job"
SPAN_EXECUTE_JOB = "execute_job"
SPAN_RECORD_OUTCOME = "record_outcome"
