"""Live status view subscription routes."""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from ..errors import PermissionDenied
from ..identity import AppServices, get_request_user_id, get_services
router = APIRouter(prefix="/subscriptions", tags=["subscriptions"])


class SubscribeRequest(BaseModel):
    subscription_id: str = Field(..., min_length=1, max_length=128)
    channel_ref: str = Field(..., min_length=1, max_length=128)
    server_id: str = Field(..., min_length=1, max_length=64)
    callback_url: Optional[str] = None


@router.post("")
def subscribe(
    req: SubscribeRequest,
    user_id: str = Depends(get_request_user_id),
    services: AppServices = Depends(get_services),
):
    """Register a rendered status view for periodic refresh."""
    services.verification.require_permission(user_id, req.server_id)
    if req.callback_url and not req.callback_url.startswith(("http://", "https://")):
        raise HTTPException(status_code=400, detail="callback_url must be an http(s) URL")

    subscription = services.scheduler.register(
        req.subscription_id,
        req.channel_ref,
        req.server_id,
        user_id,
        callback_url=req.callback_url,
    )
    services.store.touch_resource(user_id, req.server_id)
    return {"registered": True, "subscription": subscription.to_dict()}


@router.delete("/{subscription_id}")
def unsubscribe(
    subscription_id: str,
    user_id: str = Depends(get_request_user_id),
    services: AppServices = Depends(get_services),
):
    current = services.scheduler.get(subscription_id)
    if current is None:
        return {"removed": False}
    if current.user_id != user_id:
        raise PermissionDenied("This status view belongs to another user.")
    return {"removed": services.scheduler.unregister(subscription_id)}


@router.get("/status")
def scheduler_status(services: AppServices = Depends(get_services)):
    return services.scheduler.get_status()
