"""
Prometheus metrics for the RBAC decision engine.
"""

from typing import Dict, Any, Optional
import time
import threading
from contextlib import contextmanager

from prometheus_client import Counter, Histogram, Info, CollectorRegistry, REGISTRY


class MetricsCollector:
    """Centralized metrics collector for the engine and its supervisor."""

    def __init__(self, service_name: str = "rbac", registry: Optional[CollectorRegistry] = None):
        self.service_name = service_name
        self.registry = registry if registry is not None else REGISTRY
        self._metrics: Dict[str, Any] = {}
        self._lock = threading.Lock()
        self._setup_metrics()

    def _setup_metrics(self):
        """Set up RBAC metrics."""

        self._metrics["service_info"] = Info(
            "rbac_service_info",
            "RBAC engine information",
            registry=self.registry
        )
        self._metrics["service_info"].info({
            "service": self.service_name,
        })

        self._metrics["rbac_decisions_total"] = Counter(
            "rbac_decisions_total",
            "Total authorization decisions",
            ["decision", "reason"],
            registry=self.registry
        )

        self._metrics["rbac_decision_duration_seconds"] = Histogram(
            "rbac_decision_duration_seconds",
            "Authorization decision duration in seconds",
            registry=self.registry
        )

        self._metrics["rbac_role_extraction_failures_total"] = Counter(
            "rbac_role_extraction_failures_total",
            "Total requests whose role could not be extracted",
            registry=self.registry
        )

        self._metrics["rbac_role_cache_lookups_total"] = Counter(
            "rbac_role_cache_lookups_total",
            "Total role cache lookups",
            ["result"],
            registry=self.registry
        )

        self._metrics["rbac_config_reloads_total"] = Counter(
            "rbac_config_reloads_total",
            "Total configuration reload attempts",
            ["status"],
            registry=self.registry
        )

    def get_metric(self, name: str):
        """Get a metric by name."""
        return self._metrics.get(name)

    def record_decision(self, allowed: bool, reason: str, duration: float):
        """Record one authorization decision."""
        self.increment_counter(
            "rbac_decisions_total",
            decision="allow" if allowed else "deny",
            reason=reason or "denied"
        )
        self.observe_histogram("rbac_decision_duration_seconds", duration)

    def record_reload(self, status: str):
        """Record a reload attempt (applied, unchanged, failed)."""
        self.increment_counter("rbac_config_reloads_total", status=status)

    @contextmanager
    def time_operation(self, operation_name: str, **labels):
        """Context manager to time an operation."""
        start_time = time.time()
        try:
            yield
        finally:
            self.observe_histogram(operation_name, time.time() - start_time, **labels)

    def increment_counter(self, metric_name: str, **labels):
        """Increment a counter metric."""
        metric = self._metrics.get(metric_name)
        if metric is None:
            return
        with self._lock:
            (metric.labels(**labels) if labels else metric).inc()

    def observe_histogram(self, metric_name: str, value: float, **labels):
        """Observe a histogram metric."""
        metric = self._metrics.get(metric_name)
        if metric is None:
            return
        (metric.labels(**labels) if labels else metric).observe(value)
