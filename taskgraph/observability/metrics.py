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

from taskgraph.constants import (
    METRIC_LEASE_ACQUIRED,
    METRIC_LEASE_LOST,
    METRIC_LEASE_RECLAIMED,
    METRIC_QUEUE_DEPTH,
    METRIC_TASK_DURATION,
    METRIC_TASKS_COMPLETED,
    METRIC_TASKS_SUBMITTED,
)

# Process-wide collector, see setup_metrics()
_metrics: "MetricsCollector | None" = None


class MetricsCollector:
    """
    Scheduler metrics: submissions, attempt outcomes and durations, lease
    traffic per worker, reclaimer recoveries and the QUEUED backlog.

    Args:
        registry: Registry to register on. Defaults to the global one.
    """

    def __init__(self, registry: CollectorRegistry | None = None):
        self._registry = registry or REGISTRY

        self.queue_depth = Gauge(
            METRIC_QUEUE_DEPTH,
            "Number of QUEUED tasks",
            registry=self._registry,
        )

        self.tasks_submitted = Counter(
            METRIC_TASKS_SUBMITTED,
            "Total number of tasks submitted",
            ["initial_status"],
            registry=self._registry,
        )

        # Outcome of each attempt: completed, retry or failed
        self.tasks_completed = Counter(
            METRIC_TASKS_COMPLETED,
            "Total number of finished task attempts",
            ["worker_id", "status"],
            registry=self._registry,
        )

        self.task_duration = Histogram(
            METRIC_TASK_DURATION,
            "Task execution duration in seconds",
            ["status"],
            buckets=(0.01, 0.05, 0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0),
            registry=self._registry,
        )

        self.lease_acquired = Counter(
            METRIC_LEASE_ACQUIRED,
            "Total number of leases acquired",
            ["worker_id"],
            registry=self._registry,
        )

        self.lease_lost = Counter(
            METRIC_LEASE_LOST,
            "Total number of leases lost while running",
            ["worker_id"],
            registry=self._registry,
        )

        self.lease_reclaimed = Counter(
            METRIC_LEASE_RECLAIMED,
            "Total number of expired leases reclaimed",
            ["outcome"],
            registry=self._registry,
        )

    def record_task_submitted(self, initial_status: str) -> None:
        """Record a task submission."""
        self.tasks_submitted.labels(initial_status=initial_status).inc()

    def record_task_finished(
        self,
        worker_id: str,
        status: str,
        duration_seconds: float,
    ) -> None:
        """Record the outcome of one attempt."""
        self.tasks_completed.labels(worker_id=worker_id, status=status).inc()
        self.task_duration.labels(status=status).observe(duration_seconds)

    def record_lease_acquired(self, worker_id: str, count: int = 1) -> None:
        """Record lease acquisition."""
        self.lease_acquired.labels(worker_id=worker_id).inc(count)

    def record_lease_lost(self, worker_id: str) -> None:
        """Record a lease taken away from a running worker."""
        self.lease_lost.labels(worker_id=worker_id).inc()

    def record_leases_reclaimed(self, requeued: int, failed: int) -> None:
        """Record tasks recovered by the reclaimer."""
        if requeued:
            self.lease_reclaimed.labels(outcome="requeued").inc(requeued)
        if failed:
            self.lease_reclaimed.labels(outcome="failed").inc(failed)

    def update_queue_depth(self, depth: int) -> None:
        """Update the QUEUED task gauge."""
        self.queue_depth.set(depth)

    def get_metrics(self) -> bytes:
        """Render the registry in the Prometheus text format."""
        return generate_latest(self._registry)

    def get_content_type(self) -> str:
        return CONTENT_TYPE_LATEST


def setup_metrics() -> MetricsCollector:
    """
    Create the process-wide collector on first call; later calls return it.

    Metric families register on the default registry, so a second collector
    would fail with duplicated timeseries.
    """
    global _metrics
    if _metrics is None:
        _metrics = MetricsCollector()
    return _metrics


def get_metrics() -> MetricsCollector:
    return _metrics or setup_metrics()


def serve_metrics(port: int) -> None:
    """Expose metrics over HTTP for processes without an API server."""
    start_http_server(port)
