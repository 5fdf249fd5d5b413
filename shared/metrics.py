"""
Shared metrics configuration for the Ferremas services.
"""

from prometheus_client import Counter, Histogram, Gauge, Info, CollectorRegistry
from typing import Dict, Any, Optional


class MetricsCollector:
    """Centralized metrics collector for services.

    Each collector owns its own ``CollectorRegistry`` so several service
    instances can live in one process (tests build many of them).
    """

    def __init__(self, service_name: str, registry: Optional[CollectorRegistry] = None,
                 version: str = "1.0.0"):
        self.service_name = service_name
        self.version = version
        self.registry = registry or CollectorRegistry()
        self._metrics: Dict[str, Any] = {}
        self._setup_metrics()

    def _setup_metrics(self):
        """Set up common metrics for the service."""

        self._metrics["service_info"] = Info(
            "service_info",
            "Service information",
            registry=self.registry
        )
        self._metrics["service_info"].info({
            "service": self.service_name,
            "version": self.version
        })

        # HTTP metrics
        self._metrics["http_requests_total"] = Counter(
            "http_requests_total",
            "Total HTTP requests",
            ["method", "endpoint", "status_code"],
            registry=self.registry
        )

        self._metrics["http_request_duration_seconds"] = Histogram(
            "http_request_duration_seconds",
            "HTTP request duration in seconds",
            ["method", "endpoint"],
            registry=self.registry
        )

        self._metrics["health_check_total"] = Counter(
            "health_check_total",
            "Total health check requests",
            ["status"],
            registry=self.registry
        )

        self._metrics["errors_total"] = Counter(
            "errors_total",
            "Total errors",
            ["error_type", "service"],
            registry=self.registry
        )

        if self.service_name == "gateway":
            self._setup_gateway_metrics()
        elif self.service_name == "auth":
            self._setup_auth_metrics()

    def _setup_gateway_metrics(self):
        """Set up gateway-specific metrics."""
        self._metrics["proxy_requests_total"] = Counter(
            "proxy_requests_total",
            "Requests forwarded to downstream services",
            ["service", "outcome"],
            registry=self.registry
        )

        self._metrics["proxy_request_duration_seconds"] = Histogram(
            "proxy_request_duration_seconds",
            "Downstream round trip duration in seconds",
            ["service"],
            registry=self.registry
        )

        self._metrics["upstream_healthy"] = Gauge(
            "upstream_healthy",
            "1 when the last probe of the service succeeded",
            ["service"],
            registry=self.registry
        )

        self._metrics["rate_limit_hits_total"] = Counter(
            "rate_limit_hits_total",
            "Total rate limit rejections",
            ["policy"],
            registry=self.registry
        )

    def _setup_auth_metrics(self):
        """Set up auth-specific metrics."""
        self._metrics["tokens_issued_total"] = Counter(
            "tokens_issued_total",
            "Token pairs and access tokens issued",
            ["kind"],
            registry=self.registry
        )

        self._metrics["token_validations_total"] = Counter(
            "token_validations_total",
            "Total token validations",
            ["status"],
            registry=self.registry
        )

        self._metrics["sessions_cleaned_total"] = Counter(
            "sessions_cleaned_total",
            "Expired refresh sessions removed by the cleanup sweep",
            registry=self.registry
        )

    def get_metric(self, name: str):
        """Get a metric by name."""
        return self._metrics.get(name)

    def record_http_request(self, method: str, endpoint: str, status_code: int, duration: float):
        """Record HTTP request metrics."""
        self._metrics["http_requests_total"].labels(
            method=method,
            endpoint=endpoint,
            status_code=str(status_code)
        ).inc()

        self._metrics["http_request_duration_seconds"].labels(
            method=method,
            endpoint=endpoint
        ).observe(duration)

    def record_health_check(self, status: str):
        """Record health check metrics."""
        self._metrics["health_check_total"].labels(status=status).inc()

    def record_error(self, error_type: str, service: Optional[str] = None):
        """Record error metrics."""
        service_name = service or self.service_name
        self._metrics["errors_total"].labels(error_type=error_type, service=service_name).inc()

    def increment_counter(self, metric_name: str, amount: float = 1, **labels):
        """Increment a counter metric."""
        metric = self._metrics.get(metric_name)
        if metric is None:
            return
        if labels:
            metric = metric.labels(**labels)
        metric.inc(amount)

    def set_gauge(self, metric_name: str, value: float, **labels):
        """Set a gauge metric value."""
        if metric_name in self._metrics:
            self._metrics[metric_name].labels(**labels).set(value)

    def observe_histogram(self, metric_name: str, value: float, **labels):
        """Observe a histogram metric."""
        if metric_name in self._metrics:
            self._metrics[metric_name].labels(**labels).observe(value)


def get_metrics_collector(service_name: str, registry: Optional[CollectorRegistry] = None,
                          version: str = "1.0.0") -> MetricsCollector:
    """Get a metrics collector for a service."""
    return MetricsCollector(service_name, registry, version=version)
