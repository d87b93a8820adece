"""Operator view over every linked server."""

from collections import Counter
from datetime import datetime, timedelta, UTC
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends

from ..identity import AppServices, get_services
from ..schemas import LinkedResource

router = APIRouter(prefix="/admin", tags=["admin"])

ACTIVE_WINDOW = timedelta(days=7)


def summarize(resources: List[LinkedResource], now: Optional[datetime] = None) -> Dict[str, Any]:
    """Aggregate statistics for the report view."""
    now = now or datetime.now(UTC)
    origins = Counter(
        str(r.origin_context.get("guild_id"))
        for r in resources
        if r.origin_context.get("guild_id") is not None
    )
    return {
        "total_links": len(resources),
        "unique_users": len({r.user_id for r in resources}),
        "unique_servers": len({r.resource_id for r in resources}),
        "active_last_7_days": sum(1 for r in resources if now - r.last_active <= ACTIVE_WINDOW),
        "links_by_origin": dict(origins),
    }


@router.get("/servers")
def all_servers(services: AppServices = Depends(get_services)):
    resources = services.store.list_all_linked_resources()
    return {
        "generated_at": datetime.now(UTC).isoformat(),
        "statistics": summarize(resources),
        "servers": [r.to_dict() for r in resources],
    }
