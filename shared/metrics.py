"""
Shared metrics configuration for the bundle pricing services.
"""

from prometheus_client import Counter, Histogram, Info, CollectorRegistry
from typing import Any, Dict, Optional


class MetricsCollector:
    """Centralized metrics collector for services."""

    def __init__(self, service_name: str, registry: Optional[CollectorRegistry] = None):
        self.service_name = service_name
        self.registry = registry
        self._metrics: Dict[str, Any] = {}
        self._setup_metrics()

    def _setup_metrics(self):
        """Set up common metrics for the service."""

        # Service info
        self._metrics["service_info"] = Info(
            "service_info",
            "Service information",
            registry=self.registry
        )
        self._metrics["service_info"].info({
            "service": self.service_name,
            "version": "1.0.0"
        })

        # Error metrics
        self._metrics["errors_total"] = Counter(
            "errors_total",
            "Total errors",
            ["error_type", "service"],
            registry=self.registry
        )

        # Service-specific metrics
        if self.service_name == "pricing":
            self._setup_pricing_metrics()

    def _setup_pricing_metrics(self):
        """Set up pricing-specific metrics."""
        self._metrics["pricing_calculations_total"] = Counter(
            "pricing_calculations_total",
            "Total pricing calculations",
            ["outcome"],
            registry=self.registry
        )

        self._metrics["pricing_calculation_duration_seconds"] = Histogram(
            "pricing_calculation_duration_seconds",
            "Pricing calculation duration in seconds",
            ["strategy"],
            registry=self.registry
        )

        self._metrics["rule_cache_events_total"] = Counter(
            "rule_cache_events_total",
            "Rule cache hits, misses and reloads",
            ["event"],
            registry=self.registry
        )

        self._metrics["coupon_validations_total"] = Counter(
            "coupon_validations_total",
            "Total coupon validations",
            ["result"],
            registry=self.registry
        )

    def record_error(self, error_type: str, service: Optional[str] = None):
        """Record error metrics."""
        service_name = service or self.service_name
        self._metrics["errors_total"].labels(error_type=error_type, service=service_name).inc()

    def increment_counter(self, metric_name: str, **labels):
        """Increment a counter metric."""
        if metric_name in self._metrics:
            self._metrics[metric_name].labels(**labels).inc()

    def observe_histogram(self, metric_name: str, value: float, **labels):
        """Observe a histogram metric."""
        if metric_name in self._metrics:
            self._metrics[metric_name].labels(**labels).observe(value)


def get_metrics_collector(service_name: str, registry: Optional[CollectorRegistry] = None) -> MetricsCollector:
    """Get a metrics collector for a service."""
    return MetricsCollector(service_name, registry)

