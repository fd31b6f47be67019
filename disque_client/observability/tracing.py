"""
OpenTelemetry tracing for client operations.

The client opens spans for job submission, consumption and acknowledgement
through ``command_span``. They are dropped unless the application installs a
tracer provider, or calls ``setup_tracing()`` to install one that exports to
the configured OTLP endpoint.
"""

from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter
from opentelemetry.trace import Span, Tracer

from disque_client import __version__
from disque_client.config import get_settings

_tracer: Tracer | None = None


def setup_tracing(enable_console_export: bool = False) -> Tracer:
    """
    Install a tracer provider for the client's spans.

    Args:
        enable_console_export: Also print finished spans to stdout.

    Returns:
        Tracer: The client tracer.
    """
    global _tracer

    settings = get_settings()
    provider = TracerProvider(
        resource=Resource.create(
            {
                "service.name": settings.otel_service_name,
                "service.version": __version__,
            }
        )
    )

    if settings.otel_exporter_otlp_endpoint:
        provider.add_span_processor(
            BatchSpanProcessor(
                OTLPSpanExporter(endpoint=settings.otel_exporter_otlp_endpoint, insecure=True)
            )
        )
    if enable_console_export:
        provider.add_span_processor(BatchSpanProcessor(ConsoleSpanExporter()))

    trace.set_tracer_provider(provider)
    _tracer = provider.get_tracer(__name__, __version__)
    return _tracer


def get_tracer() -> Tracer:
    """
    Get the client tracer.

    Before ``setup_tracing()`` this comes from the globally installed
    provider, which is a no-op one unless the application set its own.
    """
    if _tracer is None:
        return trace.get_tracer(__name__, __version__)
    return _tracer


@contextmanager
def command_span(name: str, **attributes: Any) -> Iterator[Span]:
    """
    Run a block inside a client span.

    Attributes are recorded under the ``disque.`` namespace; None values are
    skipped. Exceptions are recorded on the span and re-raised.

    Args:
        name: Span name.
        **attributes: Span attributes.
    """
    with get_tracer().start_as_current_span(name) as span:
        for key, value in attributes.items():
            if value is not None:
                span.set_attribute(f"disque.{key}", value)
        yield span
