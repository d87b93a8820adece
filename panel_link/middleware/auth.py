"""Bot authentication: only the chat bot holding the shared token may call panel-link."""

import hmac
import logging
from typing import Optional

from fastapi import Request, status
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse

logger = logging.getLogger(__name__)

TOKEN_HEADER = "X-Panel-Link-Token"
BEARER_PREFIX = "bearer "


def get_token_from_header(request: Request) -> Optional[str]:
    """Bot token from X-Panel-Link-Token, else from an Authorization Bearer header."""
    explicit = (request.headers.get(TOKEN_HEADER) or "").strip()
    if explicit:
        return explicit

    authorization = (request.headers.get("Authorization") or "").strip()
    if authorization.lower().startswith(BEARER_PREFIX):
        return authorization[len(BEARER_PREFIX):].strip() or None
    return None


def verify_token(token: Optional[str], expected: Optional[str]) -> bool:
    """Constant-time comparison; an unset expected token never matches."""
    presented = (token or "").strip().encode()
    wanted = (expected or "").strip().encode()
    return bool(presented and wanted) and hmac.compare_digest(presented, wanted)


def _unauthorized(detail: str) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_401_UNAUTHORIZED,
        content={"detail": detail, "code": "unauthorized"},
        headers={"WWW-Authenticate": "Bearer"},
    )


class AuthMiddleware(BaseHTTPMiddleware):
    """Rejects every non-public request that lacks the bot's API token."""

    PUBLIC_ENDPOINTS = frozenset({"/health", "/metrics", "/docs", "/redoc", "/openapi.json"})

    def __init__(self, app, enabled: bool = True, api_token: Optional[str] = None):
        super().__init__(app)
        self.enabled = enabled
        self.api_token = api_token
        if enabled and not api_token:
            logger.warning("Bot auth is enabled but PANEL_LINK_API_TOKEN is not set; "
                           "every protected request will be rejected")

    def is_public(self, path: str) -> bool:
        return (path.rstrip("/") or "/") in self.PUBLIC_ENDPOINTS

    async def dispatch(self, request: Request, call_next):
        if not self.enabled or self.is_public(request.url.path):
            return await call_next(request)

        token = get_token_from_header(request)
        if token is None:
            return _unauthorized(
                f"Missing bot token. Send {TOKEN_HEADER} or Authorization: Bearer <token>."
            )
        if not verify_token(token, self.api_token):
            return _unauthorized("Invalid bot token")
        return await call_next(request)
