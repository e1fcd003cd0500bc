"""
Prometheus metrics for the QuillAuth service.
"""
from prometheus_client import Counter, Histogram, Gauge, Info, CollectorRegistry
import psutil


class Metrics:
    """
    Centralized metrics for the credential service.
    """

    def __init__(self, service_name: str = "quillauth", version: str = "0.1.0", registry=None):
        self.service_name = service_name
        self.version = version
        self.registry = registry or CollectorRegistry()

        # HTTP Metrics
        self.http_requests_total = Counter(
            "http_requests_total",
            "Total HTTP requests",
            ["service", "method", "path", "status"],
            registry=self.registry,
        )

        self.http_request_duration = Histogram(
            "http_request_duration_seconds",
            "HTTP request duration in seconds",
            ["service", "method", "path"],
            registry=self.registry,
        )

        self.http_requests_active = Gauge(
            "http_requests_active",
            "Number of active HTTP requests",
            ["service"],
            registry=self.registry,
        )

        # Application Info
        self.app_info = Info(
            "app",
            "Application information",
            registry=self.registry,
        )
        self.app_info.info({"service": service_name, "version": version})

        self.app_up = Gauge(
            "app_up",
            "Application up status (1=up, 0=down)",
            ["service", "version"],
            registry=self.registry,
        )
        self.app_up.labels(service=service_name, version=version).set(1)

        # Credential lifecycle
        self.auth_events_total = Counter(
            "quillauth_auth_events_total",
            "Credential lifecycle operations by flow and outcome",
            ["flow", "outcome"],
            registry=self.registry,
        )

        self.process_memory_bytes = Gauge(
            "process_resident_memory_bytes",
            "Resident memory size in bytes",
            ["service"],
            registry=self.registry,
        )

    def record_auth_event(self, flow: str, outcome: str):
        """Count one lifecycle operation, e.g. ("refresh", "invalid_token")."""
        self.auth_events_total.labels(flow=flow, outcome=outcome).inc()

    def update_system_metrics(self):
        """Refresh process gauges from psutil."""
        try:
            rss = psutil.Process().memory_info().rss
        except psutil.Error:
            return
        self.process_memory_bytes.labels(service=self.service_name).set(rss)
