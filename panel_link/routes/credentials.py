"""Panel API key routes."""

from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from ..identity import AppServices, get_request_user_id, get_services

router = APIRouter(prefix="/credentials", tags=["credentials"])


class CredentialSubmitRequest(BaseModel):
    api_key: str = Field(..., min_length=1, max_length=256)
    panel_url: Optional[str] = None


@router.post("")
def submit_credentials(
    req: CredentialSubmitRequest,
    user_id: str = Depends(get_request_user_id),
    services: AppServices = Depends(get_services),
):
    """Validate and store the caller's panel client API key."""
    summary = services.credentials.submit_api_key(user_id, req.api_key, req.panel_url)
    return {"stored": True, **summary}


@router.get("")
def get_credentials(
    user_id: str = Depends(get_request_user_id),
    services: AppServices = Depends(get_services),
):
    # Never returns the key itself
    info = services.credentials.describe(user_id)
    return {"has_credentials": info is not None, "credential": info}


@router.delete("")
def delete_credentials(
    user_id: str = Depends(get_request_user_id),
    services: AppServices = Depends(get_services),
):
    return {"removed": services.credentials.remove(user_id)}
