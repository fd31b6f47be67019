"""
Prometheus metrics collection.
"""

from prometheus_client import (
    REGISTRY,
    CollectorRegistry,
    Counter,
    Histogram,
    generate_latest,
)

from disque_client.constants import (
    METRIC_COMMAND_LATENCY,
    METRIC_COMMANDS,
    METRIC_CONNECTIONS_CLOSED,
    METRIC_CONNECTIONS_OPENED,
    METRIC_HINTED_FETCHES,
    METRIC_ROUTING_SWITCHES,
)

# Global metrics instance
_metrics: "MetricsCollector | None" = None


class MetricsCollector:
    """
    Prometheus metrics collector for the client.

    Collects metrics for:
    - Commands sent and their outcome
    - Command round-trip latency
    - Node connections opened and closed
    - Routing switches and hinted consumption attempts
    """

    def __init__(self, registry: CollectorRegistry | None = None):
        """
        Args:
            registry: Registry to register the metrics in. Defaults to the
                process-wide prometheus_client registry.
        """
        self._registry = registry or REGISTRY

        self.commands = Counter(
            METRIC_COMMANDS,
            "Total number of commands sent",
            ["command", "outcome"],
            registry=self._registry,
        )

        self.command_latency = Histogram(
            METRIC_COMMAND_LATENCY,
            "Command round-trip latency in seconds",
            ["command"],
            buckets=(0.0005, 0.001, 0.0025, 0.005, 0.01, 0.025, 0.05, 0.1, 0.5, 1.0),
            registry=self._registry,
        )

        self.connections_opened = Counter(
            METRIC_CONNECTIONS_OPENED,
            "Total number of node connections established",
            ["address"],
            registry=self._registry,
        )

        self.connections_closed = Counter(
            METRIC_CONNECTIONS_CLOSED,
            "Total number of node connections closed",
            ["address", "reason"],
            registry=self._registry,
        )

        self.routing_switches = Counter(
            METRIC_ROUTING_SWITCHES,
            "Total number of primary node switches",
            registry=self._registry,
        )

        self.hinted_fetches = Counter(
            METRIC_HINTED_FETCHES,
            "Consumption attempts sent to a hinted node",
            ["outcome"],
            registry=self._registry,
        )

    def record_command(self, command: str, outcome: str, duration_seconds: float) -> None:
        """Record a completed command."""
        self.commands.labels(command=command, outcome=outcome).inc()
        self.command_latency.labels(command=command).observe(duration_seconds)

    def record_connection_opened(self, address: str) -> None:
        self.connections_opened.labels(address=address).inc()

    def record_connection_closed(self, address: str, reason: str) -> None:
        self.connections_closed.labels(address=address, reason=reason).inc()

    def record_routing_switch(self) -> None:
        self.routing_switches.inc()

    def record_hinted_fetch(self, outcome: str) -> None:
        """Record a hinted GETJOB attempt (hit, miss, or failed)."""
        self.hinted_fetches.labels(outcome=outcome).inc()

    def get_metrics(self) -> bytes:
        """Render the registry in the Prometheus text exposition format."""
        return generate_latest(self._registry)


def setup_metrics(registry: CollectorRegistry | None = None) -> MetricsCollector:
    """
    Create the process-wide collector. Later calls return the same one.

    Args:
        registry: Registry for the first call; ignored afterwards.
    """
    global _metrics
    if _metrics is None:
        _metrics = MetricsCollector(registry)
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
