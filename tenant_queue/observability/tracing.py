"""
OpenTelemetry tracing setup.

Until setup_tracing() runs, spans come from the global provider, which is a
no-op unless the host application installed one. Library use (an enqueuer
inside a web app) therefore never starts an exporter on its own.
"""

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.sqlalchemy import SQLAlchemyInstrumentor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter
from opentelemetry.trace import Span, Tracer

from tenant_queue import __version__
from tenant_queue.config import Settings, get_settings

logger = logging.getLogger(__name__)

_tracer: Tracer | None = None


def setup_tracing(settings: Settings | None = None, console: bool = False) -> Tracer:
    """
    Install a tracer provider exporting to the configured OTLP endpoint.

    Args:
        settings: Application settings. Defaults to the cached settings.
        console: Also print finished spans, for local debugging.
    """
    global _tracer

    settings = settings or get_settings()
    provider = TracerProvider(
        resource=Resource.create(
            {
                "service.name": settings.otel_service_name,
                "service.version": __version__,
            }
        )
    )

    try:
        exporter = OTLPSpanExporter(endpoint=settings.otel_exporter_otlp_endpoint, insecure=True)
    except Exception as e:
        logger.warning(f"OTLP exporter unavailable, spans will not be exported: {e}")
    else:
        provider.add_span_processor(BatchSpanProcessor(exporter))

    if console:
        provider.add_span_processor(BatchSpanProcessor(ConsoleSpanExporter()))

    trace.set_tracer_provider(provider)
    _tracer = trace.get_tracer(settings.otel_service_name)
    logger.info(
        "Tracing enabled",
        extra={"endpoint": settings.otel_exporter_otlp_endpoint},
    )
    return _tracer


def instrument_sqlalchemy(engine: Any) -> None:
    """Trace statements of an engine (pass the sync_engine of an async engine)."""
    SQLAlchemyInstrumentor().instrument(engine=engine)


def get_tracer() -> Tracer:
    if _tracer is None:
        return trace.get_tracer(__name__)
    return _tracer


@contextmanager
def job_span(name: str, **attributes: Any) -> Iterator[Span]:
    """
    Start a span and set every attribute that is not None.

    Jobs without a tenant simply have no tenant_id attribute.
    """
    with get_tracer().start_as_current_span(name) as span:
        for key, value in attributes.items():
            if value is not None:
                span.set_attribute(key, value)
        yield span
