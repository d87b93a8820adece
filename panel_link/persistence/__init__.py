"""Persistence layer for panel-link."""

from .database import LinkStore, TELEMETRY_HISTORY_LIMIT

__all__ = ["LinkStore", "TELEMETRY_HISTORY_LIMIT"]
