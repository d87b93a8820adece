"""Plain-data status view handed to the chat bot for rendering."""

from datetime import datetime, UTC
from typing import Any, Dict, Optional

from ..clients.panel_client import format_bytes, format_uptime

MIB = 1024 * 1024

STATE_COLOURS = {
    "running": "#00ff00",
    "offline": "#ff0000",
    "stopped": "#ff0000",
}
DEFAULT_COLOUR = "#ffff00"


def _usage_text(used: int, limit_mib: Optional[int]) -> str:
    if not used:
        return "N/A"
    if not limit_mib:
        return f"{format_bytes(used)} / Unlimited"
    return f"{format_bytes(used)} / {format_bytes(limit_mib * MIB)}"


def build_status_view(details: Dict[str, Any], resources: Dict[str, Any],
                      update_count: Optional[int] = None,
                      now: Optional[datetime] = None) -> Dict[str, Any]:
    """Combine server detail and live resources into one renderable dict."""
    usage = resources.get("resources") or resources
    limits = details.get("limits") or {}
    state = resources.get("current_state") or "unknown"

    cpu = usage.get("cpu_absolute")
    memory = int(usage.get("memory_bytes") or 0)
    disk = int(usage.get("disk_bytes") or 0)
    uptime_ms = int(usage.get("uptime") or 0)

    view = {
        "name": details.get("name"),
        "identifier": details.get("identifier"),
        "state": state,
        "colour": STATE_COLOURS.get(state, DEFAULT_COLOUR),
        "cpu_percent": round(float(cpu), 2) if cpu is not None else None,
        "cpu_text": f"{float(cpu):.2f}%" if cpu is not None else "N/A",
        "memory_bytes": memory,
        "memory_limit_bytes": (limits.get("memory") or 0) * MIB,
        "memory_text": _usage_text(memory, limits.get("memory")),
        "disk_bytes": disk,
        "disk_limit_bytes": (limits.get("disk") or 0) * MIB,
        "disk_text": _usage_text(disk, limits.get("disk")),
        "uptime_ms": uptime_ms,
        "uptime_text": format_uptime(uptime_ms / 1000) if uptime_ms else "N/A",
        "updated_at": (now or datetime.now(UTC)).isoformat(),
    }
    if update_count is not None:
        view["update_count"] = update_count
        view["footer"] = f"Last updated • Update #{update_count}"
    return view
