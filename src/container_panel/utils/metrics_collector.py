"""Prometheus metrics collection for Container Panel."""

from typing import Optional

from prometheus_client import (
    REGISTRY,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)


class MetricsCollector:
    """Collects and exposes Prometheus metrics for panel operations."""

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        self.registry = registry if registry is not None else REGISTRY

        self.container_operations_total = Counter(
            "container_panel_container_operations_total",
            "Total number of container lifecycle operations",
            ["action", "outcome"],
            registry=self.registry,
        )

        self.image_pulls_total = Counter(
            "container_panel_image_pulls_total",
            "Total number of image pulls triggered by create or recreate",
            ["image", "outcome"],
            registry=self.registry,
        )

        self.fs_operations_total = Counter(
            "container_panel_fs_operations_total",
            "Total number of filesystem operations",
            ["op_type"],
            registry=self.registry,
        )

        self.archive_tool_runs_total = Counter(
            "container_panel_archive_tool_runs_total",
            "Total number of external archive tool invocations",
            ["tool", "outcome"],
            registry=self.registry,
        )

        self.recreate_duration_seconds = Histogram(
            "container_panel_recreate_duration_seconds",
            "Wall time of the stop/remove/create/start recreate sequence",
            buckets=[0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0],
            registry=self.registry,
        )

        self.active_log_subscriptions = Gauge(
            "container_panel_active_log_subscriptions",
            "Number of open log viewer subscriptions",
            registry=self.registry,
        )

    def record_container_operation(self, action: str, outcome: str) -> None:
        """
        Record a lifecycle operation.

        Args:
            action: create, start, stop, restart, delete, update_settings or migrate
            outcome: success or failure
        """
        self.container_operations_total.labels(action=action, outcome=outcome).inc()

    def record_image_pull(self, image: str, outcome: str) -> None:
        self.image_pulls_total.labels(image=image, outcome=outcome).inc()

    def record_fs_operation(self, op_type: str) -> None:
        """
        Record a filesystem operation.

        Args:
            op_type: Type of operation (list, read, write, delete, extract, ...)
        """
        self.fs_operations_total.labels(op_type=op_type).inc()

    def record_archive_tool_run(self, tool: str, outcome: str) -> None:
        self.archive_tool_runs_total.labels(tool=tool, outcome=outcome).inc()

    def record_recreate_duration(self, duration_seconds: float) -> None:
        self.recreate_duration_seconds.observe(duration_seconds)

    def set_active_log_subscriptions(self, count: int) -> None:
        self.active_log_subscriptions.set(count)

    def get_metrics(self) -> bytes:
        """
        Get current metrics in Prometheus format.

        Returns:
            Metrics data in bytes
        """
        return generate_latest(self.registry)


# Global metrics collector instance
_metrics_collector: Optional[MetricsCollector] = None


def get_metrics_collector() -> MetricsCollector:
    """
    Get the global metrics collector instance.

    Returns:
        MetricsCollector instance
    """
    global _metrics_collector
    if _metrics_collector is None:
        _metrics_collector = MetricsCollector()
    return _metrics_collector
