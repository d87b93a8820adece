"""Single source of truth for caller identity and service lookup."""

from dataclasses import dataclass
from typing import Any

from fastapi import HTTPException
from starlette.requests import Request


@dataclass
class AppServices:
    """Long-lived service objects, built once at startup."""
    config: Any
    store: Any
    vault: Any
    limiter: Any
    credentials: Any
    verification: Any
    control: Any
    render_target: Any
    scheduler: Any
    metrics: Any


def get_services(request: Request) -> AppServices:
    return request.app.state.services


def get_request_user_id(request: Request) -> str:
    """
    Chat-platform user the bot is acting for.

    The bot is authenticated by AuthMiddleware; it forwards the end user's
    id in X-User-ID.
    """
    user_id = (request.headers.get("X-User-ID") or "").strip()
    if not user_id:
        raise HTTPException(status_code=400, detail="X-User-ID header required")
    return user_id
