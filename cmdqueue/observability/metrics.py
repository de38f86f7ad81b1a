"""
Prometheus metrics collection.
"""

from prometheus_client import (
    REGISTRY,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    start_http_server,
)

from cmdqueue.constants import (
    METRIC_ACTIVE_WORKERS,
    METRIC_JOB_DURATION,
    METRIC_JOBS_CREATED,
    METRIC_JOBS_PROCESSED,
    METRIC_LEASE_ACQUIRED,
    METRIC_LEASE_RELEASED,
)

# Global metrics instance
_metrics: "MetricsCollector | None" = None


class MetricsCollector:
    """
    Prometheus metrics collector for the job queue.

    Collects metrics for:
    - Job creation and processing outcomes
    - Job execution duration
    - Lease acquisition and forced release
    - Active worker count
    """

    def __init__(self, registry: CollectorRegistry | None = None):
        """
        Initialize the metrics collector.

        Args:
            registry: Optional custom registry. Uses default if not provided.
        """
        self._registry = registry or REGISTRY

        self.jobs_created = Counter(
            METRIC_JOBS_CREATED,
            "Total number of jobs created",
            registry=self._registry,
        )

        # Outcome is the state the job moved to: completed, failed or dead
        self.jobs_processed = Counter(
            METRIC_JOBS_PROCESSED,
            "Total number of job executions by outcome",
            ["outcome"],
            registry=self._registry,
        )

        self.job_duration = Histogram(
            METRIC_JOB_DURATION,
            "Command execution duration in seconds",
            ["outcome"],
            buckets=(0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0, 300.0),
            registry=self._registry,
        )

        self.lease_acquired = Counter(
            METRIC_LEASE_ACQUIRED,
            "Total number of job leases acquired",
            ["worker_id"],
            registry=self._registry,
        )

        self.lease_released = Counter(
            METRIC_LEASE_RELEASED,
            "Total number of leases force-released after the drain timeout",
            registry=self._registry,
        )

        self.active_workers = Gauge(
            METRIC_ACTIVE_WORKERS,
            "Number of worker loops registered in this process",
            registry=self._registry,
        )

    def record_job_created(self) -> None:
        self.jobs_created.inc()

    def record_job_processed(self, outcome: str, duration_seconds: float) -> None:
        """Record one finished worker cycle."""
        self.jobs_processed.labels(outcome=outcome).inc()
        self.job_duration.labels(outcome=outcome).observe(duration_seconds)

    def record_lease_acquired(self, worker_id: str) -> None:
        self.lease_acquired.labels(worker_id=worker_id).inc()

    def record_lease_released(self, count: int = 1) -> None:
        self.lease_released.inc(count)

    def set_active_workers(self, count: int) -> None:
        self.active_workers.set(count)


def setup_metrics(port: int | None = None) -> MetricsCollector:
    """
    Set up and return the metrics collector.

    Args:
        port: If given, serve /metrics over HTTP on this port.

    Returns:
        MetricsCollector: The metrics collector instance.
    """
    global _metrics
    if _metrics is None:
        _metrics = MetricsCollector()
    if port is not None:
        start_http_server(port)
    return _metrics


def get_metrics() -> MetricsCollector:
    """
    Get the metrics collector instance, creating it on first use.

    Returns:
        MetricsCollector: The metrics collector instance.
    """
    if _metrics is None:
        return setup_metrics()
    return _metrics
