"""
Prometheus metrics collection.
"""

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    REGISTRY,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
    start_http_server,
)

from tenant_queue.constants import (
    METRIC_JOB_DURATION,
    METRIC_JOBS_ENQUEUED,
    METRIC_JOBS_PROCESSED,
    METRIC_LEASE_ACQUIRED,
    METRIC_POLL_ERRORS,
    METRIC_QUEUE_DEPTH,
    METRIC_TENANT_RESOLUTION_FAILURES,
)

# Label value for jobs that run on the default connection
DEFAULT_TENANT_LABEL = "default"

# Global metrics instance
_metrics: "MetricsCollector | None" = None


def _tenant_label(tenant_id: str | None) -> str:
    return tenant_id if tenant_id is not None else DEFAULT_TENANT_LABEL


class MetricsCollector:
    """
    Prometheus metrics collector for the job queue.

    Collects metrics for:
    - Queue depth
    - Job submissions and outcomes
    - Job execution duration
    - Lease acquisitions
    - Tenant resolution and polling failures
    """

    def __init__(self, registry: CollectorRegistry | None = None):
        """
        Initialize the metrics collector.

        Args:
            registry: Optional custom registry. Uses default if not provided.
        """
        self._registry = registry or REGISTRY

        self.queue_depth = Gauge(
            METRIC_QUEUE_DEPTH,
            "Number of active jobs in a queue",
            ["queue"],
            registry=self._registry,
        )

        self.jobs_enqueued = Counter(
            METRIC_JOBS_ENQUEUED,
            "Total number of jobs enqueued",
            ["queue", "tenant_id"],
            registry=self._registry,
        )

        self.jobs_processed = Counter(
            METRIC_JOBS_PROCESSED,
            "Total number of reservations resolved, by outcome",
            ["queue", "tenant_id", "outcome"],
            registry=self._registry,
        )

        self.job_duration = Histogram(
            METRIC_JOB_DURATION,
            "Job execution duration in seconds",
            ["queue", "outcome"],
            buckets=(0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0),
            registry=self._registry,
        )

        self.lease_acquired = Counter(
            METRIC_LEASE_ACQUIRED,
            "Total number of leases acquired",
            ["worker_id", "queue"],
            registry=self._registry,
        )

        self.tenant_resolution_failures = Counter(
            METRIC_TENANT_RESOLUTION_FAILURES,
            "Total number of failed tenant connection resolutions",
            ["reason"],
            registry=self._registry,
        )

        self.poll_errors = Counter(
            METRIC_POLL_ERRORS,
            "Total number of store failures while polling",
            ["worker_id"],
            registry=self._registry,
        )

    def record_job_enqueued(self, queue: str, tenant_id: str | None) -> None:
        """Record a job submission."""
        self.jobs_enqueued.labels(queue=queue, tenant_id=_tenant_label(tenant_id)).inc()

    def record_job_processed(
        self,
        queue: str,
        tenant_id: str | None,
        outcome: str,
        duration_seconds: float,
    ) -> None:
        """Record how a reservation was resolved."""
        self.jobs_processed.labels(
            queue=queue,
            tenant_id=_tenant_label(tenant_id),
            outcome=outcome,
        ).inc()
        self.job_duration.labels(queue=queue, outcome=outcome).observe(duration_seconds)

    def record_lease_acquired(self, worker_id: str, queue: str) -> None:
        """Record lease acquisition."""
        self.lease_acquired.labels(worker_id=worker_id, queue=queue).inc()

    def record_tenant_resolution_failure(self, reason: str) -> None:
        """Record a tenant that could not be resolved or reached."""
        self.tenant_resolution_failures.labels(reason=reason).inc()

    def record_poll_error(self, worker_id: str) -> None:
        """Record a store failure during polling."""
        self.poll_errors.labels(worker_id=worker_id).inc()

    def update_queue_depth(self, queue: str, depth: int) -> None:
        """Update depth for a queue."""
        self.queue_depth.labels(queue=queue).set(depth)

    def get_metrics(self) -> bytes:
        """Get all metrics in Prometheus format."""
        return generate_latest(self._registry)

    def get_content_type(self) -> str:
        """Get the content type for metrics response."""
        return CONTENT_TYPE_LATEST


def setup_metrics(port: int | None = None) -> MetricsCollector:
    """
    Set up and return the metrics collector.

    Args:
        port: If given, also serve the registry over HTTP on this port.

    Returns:
        MetricsCollector: The metrics collector instance.
    """
    global _metrics
    if _metrics is None:
        _metrics = MetricsCollector()
    if port is not None:
        start_http_server(port, registry=_metrics._registry)
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
