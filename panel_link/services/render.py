"""Render targets: where the scheduler delivers refreshed status views."""

import logging
import threading
from typing import Any, Dict, Optional, Protocol

import requests

from ..schemas import ActiveSubscription

logger = logging.getLogger(__name__)

GONE_STATUSES = {404, 410}


class RenderTargetError(Exception):
    """Delivery to a live render target failed (counts as a poll failure)."""


class RenderTarget(Protocol):
    def resolve(self, subscription: ActiveSubscription) -> Optional[Any]:
        """Return a handle for the view, or None if it no longer exists."""

    def render(self, handle: Any, view: Dict[str, Any]) -> None:
        """Replace the view's contents. Raises RenderTargetError on failure."""


class WebhookRenderTarget:
    """
    Chat bot exposes one callback URL per status view:
      GET  -> 200 while the view exists, 404/410 once it is gone
      PUT  -> replaces the view with the JSON body
    """

    def __init__(self, timeout: float = 10, headers: Optional[Dict[str, str]] = None):
        self.timeout = timeout
        self.headers = headers or {}

    def resolve(self, subscription: ActiveSubscription) -> Optional[str]:
        url = subscription.callback_url
        if not url:
            return None
        try:
            r = requests.get(url, headers=self.headers, timeout=self.timeout)
        except requests.exceptions.RequestException as e:
            raise RenderTargetError(f"Render target unreachable: {e}") from e
        if r.status_code in GONE_STATUSES:
            return None
        if r.status_code >= 400:
            raise RenderTargetError(f"Render target returned HTTP {r.status_code}")
        return url

    def render(self, handle: str, view: Dict[str, Any]) -> None:
        try:
            r = requests.put(handle, json=view, headers=self.headers, timeout=self.timeout)
        except requests.exceptions.RequestException as e:
            raise RenderTargetError(f"Render target unreachable: {e}") from e
        if r.status_code >= 400:
            raise RenderTargetError(f"Render target returned HTTP {r.status_code}")


class InMemoryRenderTarget:
    """Keeps rendered views in a dict keyed by subscription id."""

    def __init__(self):
        self.views: Dict[str, Dict[str, Any]] = {}
        self.live: set = set()
        self._lock = threading.Lock()

    def open(self, subscription_id: str) -> None:
        with self._lock:
            self.live.add(subscription_id)

    def close(self, subscription_id: str) -> None:
        with self._lock:
            self.live.discard(subscription_id)

    def resolve(self, subscription: ActiveSubscription) -> Optional[str]:
        with self._lock:
            return subscription.subscription_id if subscription.subscription_id in self.live else None

    def render(self, handle: str, view: Dict[str, Any]) -> None:
        with self._lock:
            self.views[handle] = view
