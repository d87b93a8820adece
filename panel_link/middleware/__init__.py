"""panel-link middleware package."""

from .auth import AuthMiddleware, verify_token, get_token_from_header
from .rate_limit import RateLimitMiddleware, RateLimiter, resolve_action

__all__ = [
    "AuthMiddleware",
    "verify_token",
    "get_token_from_header",
    "RateLimitMiddleware",
    "RateLimiter",
    "resolve_action",
]
