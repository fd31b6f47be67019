"""
Observability module.
Contains logging, metrics, and tracing setup.
"""

from disque_client.observability.logging import (
    bind_context,
    clear_context,
    get_logger,
    setup_logging,
)
from disque_client.observability.metrics import (
    MetricsCollector,
    get_metrics,
    setup_metrics,
)
from disque_client.observability.tracing import command_span, get_tracer, setup_tracing

__all__ = [
    "setup_logging",
    "get_logger",
    "bind_context",
    "clear_context",
    "setup_metrics",
    "get_metrics",
    "MetricsCollector",
    "setup_tracing",
    "get_tracer",
    "command_span",
]
