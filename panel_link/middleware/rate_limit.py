"""Per-user rate limiting: in-memory fixed-window limiter and its middleware."""

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Tuple
import logging
import threading
import time

from ..errors import RateLimited

logger = logging.getLogger(__name__)

DEFAULT_WINDOW_SECONDS = 60
DEFAULT_MAX_REQUESTS = 10


@dataclass
class RateLimitBucket:
    count: int
    window_start: float


class RateLimiter:
    """Fixed-window request throttle keyed by (user_id, action).

    A window opens on the first call and lasts ``window_seconds``. Calls
    inside an open window increment the bucket; once the count exceeds
    ``max_requests`` further calls are rejected without moving the window.
    State lives in memory only, so a restart clears every limit.
    """

    def __init__(
        self,
        max_requests: int = DEFAULT_MAX_REQUESTS,
        window_seconds: float = DEFAULT_WINDOW_SECONDS,
        clock: Callable[[], float] = time.monotonic,
        enabled: bool = True,
    ):
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.enabled = enabled
        self._clock = clock
        self._buckets: Dict[Tuple[str, str], RateLimitBucket] = {}
        self._lock = threading.Lock()
        self._last_prune = clock()

    @classmethod
    def from_config(cls, cfg) -> "RateLimiter":
        return cls(
            max_requests=cfg.RATE_LIMIT_MAX,
            window_seconds=cfg.RATE_LIMIT_WINDOW,
            enabled=cfg.RATE_LIMIT_ENABLED,
        )

    def is_limited(self, user_id: str, action: str = "general") -> bool:
        """Record a call and report whether it must be rejected."""
        if not self.enabled:
            return False

        key = (user_id, action)
        now = self._clock()
        with self._lock:
            # Sweep closed windows at most once per window
            if now - self._last_prune >= self.window_seconds:
                self._prune_locked(now)
            bucket = self._buckets.get(key)
            if bucket is None or now - bucket.window_start >= self.window_seconds:
                self._buckets[key] = RateLimitBucket(count=1, window_start=now)
                return False
            bucket.count += 1
            return bucket.count > self.max_requests

    def retry_after(self, user_id: str, action: str = "general") -> int:
        """Seconds until the current window for the key rolls over."""
        now = self._clock()
        with self._lock:
            bucket = self._buckets.get((user_id, action))
            if bucket is None:
                return 0
            remaining = self.window_seconds - (now - bucket.window_start)
        return max(0, int(remaining + 0.999))

    def prune(self) -> int:
        """Drop buckets whose window has closed. Returns how many were removed."""
        with self._lock:
            return self._prune_locked(self._clock())

    def _prune_locked(self, now: float) -> int:
        stale = [
            key for key, bucket in self._buckets.items()
            if now - bucket.window_start >= self.window_seconds
        ]
        for key in stale:
            del self._buckets[key]
        self._last_prune = now
        return len(stale)

    def reset(self) -> None:
        with self._lock:
            self._buckets.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._buckets)


# Route prefix -> rate limit action (first match wins)
ACTION_PREFIXES = (
    ("/servers/", "server_command"),
    ("/servers", "server_command"),
    ("/credentials", "credentials"),
    ("/subscriptions", "subscriptions"),
)


def resolve_action(method: str, path: str) -> Optional[str]:
    """Map a request to the action bucket it counts against."""
    if method == "POST" and path.startswith("/servers/") and path.endswith("/power"):
        return "power_action"
    for prefix, action in ACTION_PREFIXES:
        if path == prefix or path.startswith(prefix):
            return action
    return None


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Middleware to enforce per-user rate limiting."""

    # Endpoints that don't count toward rate limits
    EXCLUDED_ENDPOINTS = {
        "/health",
        "/docs",
        "/openapi.json",
        "/redoc",
        "/metrics",
    }

    def __init__(self, app, limiter: Optional[RateLimiter] = None):
        """Initialize rate limit middleware.

        Args:
            app: FastAPI application
            limiter: Limiter to use (defaults to the one on app.state.services)
        """
        super().__init__(app)
        self._limiter = limiter

    def _get_limiter(self, request: Request) -> Optional[RateLimiter]:
        if self._limiter is not None:
            return self._limiter
        services = getattr(request.app.state, "services", None)
        return services.limiter if services is not None else None

    async def dispatch(self, request: Request, call_next):
        if request.url.path in self.EXCLUDED_ENDPOINTS:
            return await call_next(request)

        limiter = self._get_limiter(request)
        user_id = request.headers.get("X-User-ID")
        action = resolve_action(request.method, request.url.path)

        # Anonymous or unmapped requests are rejected later by the routes themselves
        if limiter is None or not user_id or action is None:
            return await call_next(request)

        if limiter.is_limited(user_id, action):
            services = getattr(request.app.state, "services", None)
            if services is not None:
                services.metrics.rate_limited.labels(action=action).inc()
            logger.info(
                "Rate limited user %s on %s", user_id, action,
                extra={"user_id": user_id, "action": action},
            )
            error = RateLimited(
                "You are being rate limited. Please wait a moment before trying again."
            )
            return JSONResponse(
                status_code=error.status_code,
                content=error.to_dict(),
                headers={"Retry-After": str(limiter.retry_after(user_id, action) or 1)},
            )

        return await call_next(request)
