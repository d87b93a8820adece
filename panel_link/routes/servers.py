"""Server linking, power control and status routes."""

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from ..identity import AppServices, get_request_user_id, get_services
from ..persistence import TELEMETRY_HISTORY_LIMIT
from ..schemas import PowerSignal

router = APIRouter(prefix="/servers", tags=["servers"])


class LinkRequest(BaseModel):
    server_id: str = Field(..., min_length=1, max_length=64)


class VerifyRequest(BaseModel):
    server_id: str = Field(..., min_length=1, max_length=64)
    code: str = Field(..., min_length=1, max_length=32)
    origin_context: Optional[Dict[str, Any]] = None


class PowerRequest(BaseModel):
    signal: PowerSignal


@router.post("/link")
def link_server(
    req: LinkRequest,
    user_id: str = Depends(get_request_user_id),
    services: AppServices = Depends(get_services),
):
    """Start ownership verification for a server."""
    issued = services.verification.issue_challenge(user_id, req.server_id.strip())
    return issued.to_dict()


@router.post("/verify")
def verify_server(
    req: VerifyRequest,
    user_id: str = Depends(get_request_user_id),
    services: AppServices = Depends(get_services),
):
    linked = services.verification.adjudicate(
        user_id, req.server_id.strip(), req.code, origin_context=req.origin_context
    )
    return {"linked": True, "server": linked.to_dict()}


@router.get("")
def list_servers(
    user_id: str = Depends(get_request_user_id),
    services: AppServices = Depends(get_services),
):
    servers = services.verification.list_linked(user_id)
    return {"servers": [s.to_dict() for s in servers], "count": len(servers)}


@router.delete("/{server_id}")
def unlink_server(
    server_id: str,
    user_id: str = Depends(get_request_user_id),
    services: AppServices = Depends(get_services),
):
    services.verification.unlink(user_id, server_id)
    return {"unlinked": True, "server_id": server_id}


@router.post("/{server_id}/power")
def power_server(
    server_id: str,
    req: PowerRequest,
    user_id: str = Depends(get_request_user_id),
    services: AppServices = Depends(get_services),
):
    return services.control.send_power(user_id, server_id, req.signal)


@router.get("/{server_id}/status")
def server_status(
    server_id: str,
    user_id: str = Depends(get_request_user_id),
    services: AppServices = Depends(get_services),
):
    return services.control.fetch_status(user_id, server_id)


@router.get("/{server_id}/stats")
def server_stats(
    server_id: str,
    limit: int = Query(TELEMETRY_HISTORY_LIMIT, ge=1, le=TELEMETRY_HISTORY_LIMIT),
    user_id: str = Depends(get_request_user_id),
    services: AppServices = Depends(get_services),
):
    samples = services.control.history(user_id, server_id, limit=limit)
    return {"server_id": server_id, "samples": samples, "count": len(samples)}
