"""Clients for upstream services."""

from .panel_client import PanelClient, format_bytes, format_uptime

__all__ = ["PanelClient", "format_bytes", "format_uptime"]
