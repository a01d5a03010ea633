"""Prometheus metrics for WindowGate."""

from prometheus_client import Counter, Histogram, Info

from windowgate import __version__


class WindowGateMetrics:
    """Metrics collection for WindowGate."""

    def __init__(self) -> None:
        # Application info
        self.info = Info("windowgate", "WindowGate admission control")
        self.info.info({"version": __version__, "algorithm": "fixed_window_rolling_reset"})

        # Decisions
        self.checks_total = Counter(
            "windowgate_checks_total",
            "Total number of rate limit checks",
            ["namespace", "result"],
        )

        self.throttled_responses_total = Counter(
            "windowgate_throttled_responses_total",
            "Total 429 responses emitted by the admission middleware",
            ["scope"],
        )

        self.http_requests_total = Counter(
            "windowgate_http_requests_total",
            "Total HTTP requests",
            ["method", "endpoint", "status"],
        )

        self.http_request_duration = Histogram(
            "windowgate_http_request_duration_seconds",
            "Duration of HTTP requests",
            ["method", "endpoint"],
            buckets=[0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0],
        )

        # Counter store
        self.store_operations_total = Counter(
            "windowgate_store_operations_total",
            "Total counter store operations",
            ["backend", "operation", "status"],
        )

        self.store_latency = Histogram(
            "windowgate_store_latency_seconds",
            "Counter store operation latency",
            ["backend", "operation"],
            buckets=[0.0005, 0.001, 0.005, 0.01, 0.025, 0.05, 0.1],
        )


# Singleton instance
metrics = WindowGateMetrics()
