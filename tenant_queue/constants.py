"""
Application constants.
Centralized location for all constant values used across the application.
"""

from enum import StrEnum


class JobOutcome(StrEnum):
    """
    Result of one reservation, as resolved by the worker.

    State transitions per reservation:
    - RESERVED -> COMPLETED (handler succeeded, record deleted)
    - RESERVED -> RELEASED (handler failed, retries left, record back in lane)
    - RESERVED -> DEAD_LETTERED (retries exhausted or payload undecodable)
    - RESERVED -> LEASE_LOST (lease expired and another worker took the job;
      the record is left to that worker)
    """

    COMPLETED = "completed"
    RELEASED = "released"
    DEAD_LETTERED = "dead_lettered"
    LEASE_LOST = "lease_lost"


class QueueDriver(StrEnum):
    """Built-in queue store drivers."""

    DATABASE = "database"
    MEMORY = "memory"


# Default values
DEFAULT_QUEUE = "default"
DEFAULT_JOBS_TABLE = "jobs"
DEFAULT_FAILED_TABLE = "failed_jobs"
DEFAULT_TENANTS_TABLE = "tenants"
DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_LEASE_DURATION_SECONDS = 60
# Handlers are cut off at this share of the lease so they finish while it holds
MAX_TIMEOUT_LEASE_FRACTION = 0.9
DEFAULT_BACKOFF_BASE_SECONDS = 5.0
DEFAULT_BACKOFF_MAX_SECONDS = 300.0
DEFAULT_BACKOFF_JITTER = 0.5

# Metrics names
METRIC_QUEUE_DEPTH = "queue_depth"
METRIC_JOBS_ENQUEUED = "jobs_enqueued_total"
METRIC_JOBS_PROCESSED = "jobs_processed_total"
METRIC_JOB_DURATION = "job_duration_seconds"
METRIC_LEASE_ACQUIRED = "lease_acquired_total"
METRIC_TENANT_RESOLUTION_FAILURES = "tenant_resolution_failures_total"
METRIC_POLL_ERRORS = "worker_poll_errors_total"

# Trace span names
SPAN_ENQUEUE_JOB = "enqueue_job"
SPAN_RESERVE_JOB = "reserve_job"
SPAN_EXECUTE_JOB = "execute_job"
