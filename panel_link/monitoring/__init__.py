"""Monitoring for panel-link."""

from .metrics import MetricsCollector, metrics

__all__ = ["MetricsCollector", "metrics"]
