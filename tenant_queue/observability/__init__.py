"""
Observability module.
Contains logging, metrics, and tracing setup.
"""

from tenant_queue.observability.logging import (
    bind_context,
    job_log_context,
    setup_logging,
)
from tenant_queue.observability.metrics import (
    MetricsCollector,
    get_metrics,
    setup_metrics,
)
from tenant_queue.observability.tracing import get_tracer, job_span, setup_tracing

__all__ = [
    "setup_logging",
    "bind_context",
    "job_log_context",
    "setup_metrics",
    "get_metrics",
    "MetricsCollector",
    "setup_tracing",
    "get_tracer",
    "job_span",
]
