"""Prometheus metrics for panel-link."""

from prometheus_client import (
    CollectorRegistry, Counter, Gauge, Histogram, generate_latest, CONTENT_TYPE_LATEST,
)


class MetricsCollector:
    """Holds every collector in a private registry so tests can build their own."""

    def __init__(self, registry: CollectorRegistry = None):
        self.registry = registry or CollectorRegistry()

        self.ticks = Counter(
            "panel_link_scheduler_ticks_total",
            "Scheduler ticks that ran",
            registry=self.registry,
        )
        self.ticks_skipped = Counter(
            "panel_link_scheduler_ticks_skipped_total",
            "Scheduler ticks skipped because the previous tick was still running",
            registry=self.registry,
        )
        self.tick_duration = Histogram(
            "panel_link_scheduler_tick_seconds",
            "Wall time of one scheduler tick",
            buckets=[0.1, 0.5, 1, 2, 5, 10, 30],
            registry=self.registry,
        )
        self.polls = Counter(
            "panel_link_polls_total",
            "Per-subscription poll outcomes",
            ["outcome"],
            registry=self.registry,
        )
        self.evictions = Counter(
            "panel_link_subscription_evictions_total",
            "Subscriptions evicted by the scheduler",
            ["reason"],
            registry=self.registry,
        )
        self.active_subscriptions = Gauge(
            "panel_link_active_subscriptions",
            "Currently registered live status subscriptions",
            registry=self.registry,
        )
        self.verifications = Counter(
            "panel_link_verification_attempts_total",
            "Ownership verification attempts by outcome",
            ["outcome"],
            registry=self.registry,
        )
        self.rate_limited = Counter(
            "panel_link_rate_limited_total",
            "Requests rejected by the per-user rate limiter",
            ["action"],
            registry=self.registry,
        )

    def render(self) -> bytes:
        """Metrics in Prometheus text exposition format."""
        return generate_latest(self.registry)


CONTENT_TYPE = CONTENT_TYPE_LATEST

# Global metrics instance
metrics = MetricsCollector()
