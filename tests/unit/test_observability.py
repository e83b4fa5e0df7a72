"""
Unit tests for metrics, log context and spans.
"""

import structlog
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import SimpleSpanProcessor
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter
from prometheus_client import CollectorRegistry

from tenant_queue.config import Settings
from tenant_queue.constants import JobOutcome
from tenant_queue.observability import tracing
from tenant_queue.observability.logging import job_log_context, setup_logging
from tenant_queue.observability.metrics import MetricsCollector


class TestMetricsCollector:
    """Tests for MetricsCollector."""

    def test_job_processed_labels(self):
        """Test that jobs without a tenant are labelled default."""
        registry = CollectorRegistry()
        metrics = MetricsCollector(registry)

        metrics.record_job_processed("emails", "42", JobOutcome.COMPLETED, 0.2)
        metrics.record_job_processed("emails", None, JobOutcome.RELEASED, 0.1)

        assert registry.get_sample_value(
            "jobs_processed_total",
            {"queue": "emails", "tenant_id": "42", "outcome": "completed"},
        ) == 1
        assert registry.get_sample_value(
            "jobs_processed_total",
            {"queue": "emails", "tenant_id": "default", "outcome": "released"},
        ) == 1

    def test_queue_depth_and_exposition(self):
        """Test the gauge and the text exposition."""
        registry = CollectorRegistry()
        metrics = MetricsCollector(registry)

        metrics.update_queue_depth("default", 7)
        metrics.record_poll_error("worker-1")

        assert registry.get_sample_value("queue_depth", {"queue": "default"}) == 7
        assert b"worker_poll_errors_total" in metrics.get_metrics()
        assert metrics.get_content_type().startswith("text/plain")


class TestJobLogContext:
    """Tests for per-job log context."""

    def test_binds_and_restores(self):
        """Test that job fields are visible only inside the block."""
        setup_logging(Settings(log_format="console"))
        structlog.contextvars.bind_contextvars(worker_id="w1")

        with job_log_context(job_id=5, tenant_id="42"):
            bound = structlog.contextvars.get_contextvars()
            assert bound["job_id"] == 5
            assert bound["tenant_id"] == "42"
            assert bound["worker_id"] == "w1"

        after = structlog.contextvars.get_contextvars()
        assert "job_id" not in after
        assert after["worker_id"] == "w1"
        structlog.contextvars.clear_contextvars()


class TestJobSpan:
    """Tests for span helpers."""

    def test_skips_missing_attributes(self, monkeypatch):
        """Test that None attributes are left off the span."""
        exporter = InMemorySpanExporter()
        provider = TracerProvider()
        provider.add_span_processor(SimpleSpanProcessor(exporter))
        monkeypatch.setattr(tracing, "_tracer", provider.get_tracer("test"))

        with tracing.job_span("enqueue_job", queue="emails", tenant_id=None):
            pass

        (span,) = exporter.get_finished_spans()
        assert span.name == "enqueue_job"
        assert dict(span.attributes) == {"queue": "emails"}
