"""
Prometheus metrics for the RekLog client.

In-memory counters exposed through the host application's Prometheus
registry.
"""

from typing import Optional

import structlog
from prometheus_client import REGISTRY, CollectorRegistry, Counter, Gauge, Histogram

logger = structlog.get_logger(__name__)


class MetricsCollector:
    """
    Centralized metrics collection for the client.

    One instance per registry; trackers share the process-wide instance
    returned by get_metrics_collector().
    """

    def __init__(self, registry: CollectorRegistry = REGISTRY) -> None:
        # Session metrics
        self.sessions_started_total = Counter(
            "reklog_sessions_started_total",
            "Total tracked sessions started",
            registry=registry,
        )

        self.sessions_active = Gauge(
            "reklog_sessions_active",
            "Sessions started and not yet ended",
            registry=registry,
        )

        self.unknown_sessions_total = Counter(
            "reklog_unknown_sessions_total",
            "Total end calls for unknown or already consumed sessions",
            registry=registry,
        )

        self.tracked_response_time = Histogram(
            "reklog_tracked_response_time_seconds",
            "Response time of tracked requests in seconds",
            ["method"],
            buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
            registry=registry,
        )

        # Delivery metrics
        self.delivery_attempts_total = Counter(
            "reklog_delivery_attempts_total",
            "Total delivery attempts to the collector",
            ["outcome"],
            registry=registry,
        )

        self.records_delivered_total = Counter(
            "reklog_records_delivered_total",
            "Total log records accepted by the collector",
            registry=registry,
        )

        self.records_dropped_total = Counter(
            "reklog_records_dropped_total",
            "Total log records dropped after exhausting retries",
            registry=registry,
        )

    def record_session_started(self) -> None:
        """Record a new tracked session."""
        self.sessions_started_total.inc()
        self.sessions_active.inc()

    def record_session_ended(self, method: str, response_time_ms: int) -> None:
        """Record a completed session and its response time."""
        self.sessions_active.dec()
        self.tracked_response_time.labels(method=method).observe(response_time_ms / 1000)

    def record_session_discarded(self) -> None:
        """Record a session dropped without producing a record."""
        self.sessions_active.dec()

    def record_unknown_session(self) -> None:
        """Record an end call that matched no session."""
        self.unknown_sessions_total.inc()

    def record_attempt(self, outcome: str) -> None:
        """Record one delivery attempt (success, error or timeout)."""
        self.delivery_attempts_total.labels(outcome=outcome).inc()

    def record_delivered(self) -> None:
        """Record a record accepted by the collector."""
        self.records_delivered_total.inc()

    def record_dropped(self) -> None:
        """Record a record dropped after the retry ceiling."""
        self.records_dropped_total.inc()


# Global metrics instance
_metrics_collector: Optional[MetricsCollector] = None


def get_metrics_collector() -> MetricsCollector:
    """Get or create the global metrics collector instance."""
    global _metrics_collector

    if _metrics_collector is None:
        _metrics_collector = MetricsCollector()
        logger.debug("Metrics collector initialized")

    return _metrics_collector
