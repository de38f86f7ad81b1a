"""
cmdqueue - persistent background job queue for shell commands.

Workers claim jobs through an atomic lease, retry failures with exponential
backoff and quarantine jobs that exhaust their retries in a dead-letter queue.
"""

__version__ = "1.0.0"
