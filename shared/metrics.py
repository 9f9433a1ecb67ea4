"""
Shared metrics configuration for the Records Access Layer.
"""

from typing import Dict, Any, Optional

from prometheus_client import REGISTRY, Counter, Histogram, Gauge, Info, CollectorRegistry, start_http_server


class MetricsCollector:
    """Centralized metrics collector for the access layer.

    Metrics are registered on ``registry`` only; with the default ``None``
    they are created unregistered so several collectors can coexist in tests.
    """

    def __init__(self, service_name: str, registry: Optional[CollectorRegistry] = None):
        self.service_name = service_name
        self.registry = registry
        self._metrics: Dict[str, Any] = {}
        self._setup_metrics()

    def _setup_metrics(self):
        """Set up access layer metrics."""

        self._metrics["service_info"] = Info(
            "service_info",
            "Service information",
            registry=self.registry
        )
        self._metrics["service_info"].info({
            "service": self.service_name,
            "version": "1.0.0"
        })

        # Backend traffic
        self._metrics["backend_requests_total"] = Counter(
            "backend_requests_total",
            "Total requests dispatched to the records backend",
            ["method", "outcome"],
            registry=self.registry
        )

        self._metrics["backend_request_duration_seconds"] = Histogram(
            "backend_request_duration_seconds",
            "Records backend request duration in seconds",
            ["method"],
            registry=self.registry
        )

        # Scheduler
        self._metrics["scheduler_queue_depth"] = Gauge(
            "scheduler_queue_depth",
            "Operations waiting in the request scheduler",
            ["lane"],
            registry=self.registry
        )

        self._metrics["scheduler_window_requests"] = Gauge(
            "scheduler_window_requests",
            "Requests dispatched in the current rate window",
            registry=self.registry
        )

        self._metrics["rate_limit_requeues_total"] = Counter(
            "rate_limit_requeues_total",
            "Operations requeued after a 429 response",
            ["lane"],
            registry=self.registry
        )

        # Retry
        self._metrics["retry_attempts_total"] = Counter(
            "retry_attempts_total",
            "Retry executor attempt outcomes",
            ["outcome"],
            registry=self.registry
        )

        # Cache
        self._metrics["cache_operations_total"] = Counter(
            "cache_operations_total",
            "Cache store operations",
            ["operation", "result"],
            registry=self.registry
        )

    def get_metric(self, name: str):
        """Get a metric by name."""
        return self._metrics.get(name)

    def start_metrics_server(self, port: int = 9090):
        """Start the Prometheus metrics server."""
        start_http_server(port, registry=self.registry or REGISTRY)

    def record_backend_request(self, method: str, outcome: str, duration: float):
        """Record one dispatched backend request."""
        self._metrics["backend_requests_total"].labels(method=method, outcome=outcome).inc()
        self._metrics["backend_request_duration_seconds"].labels(method=method).observe(duration)

    def increment_counter(self, metric_name: str, **labels):
        """Increment a counter metric."""
        if metric_name in self._metrics:
            metric = self._metrics[metric_name]
            (metric.labels(**labels) if labels else metric).inc()

    def set_gauge(self, metric_name: str, value: float, **labels):
        """Set a gauge metric value."""
        if metric_name in self._metrics:
            metric = self._metrics[metric_name]
            (metric.labels(**labels) if labels else metric).set(value)

    def observe_histogram(self, metric_name: str, value: float, **labels):
        """Observe a histogram metric."""
        if metric_name in self._metrics:
            metric = self._metrics[metric_name]
            (metric.labels(**labels) if labels else metric).observe(value)


def get_metrics_collector(service_name: str, registry: Optional[CollectorRegistry] = None) -> MetricsCollector:
    """Get a metrics collector for a service."""
    return MetricsCollector(service_name, registry)
