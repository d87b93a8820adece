"""Live status polling scheduler.

Keeps every registered status view fresh: each tick snapshots the
subscription set, polls every subscription concurrently on a bounded thread
pool, and evicts subscriptions that lost permission, lost their render
target, failed too many polls in a row, or went idle.
"""

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import replace
from typing import Any, Callable, Dict, List, Optional

from ..errors import PanelLinkError
from ..schemas import ActiveSubscription, EvictionReason, TelemetrySample
from .render import RenderTargetError
from .status_view import build_status_view

logger = logging.getLogger(__name__)

OUTCOME_SUCCESS = "success"
OUTCOME_FAILURE = "failure"
OUTCOME_EVICTED = "evicted"


class StatusPollingScheduler:
    """Owns the active subscriptions and the periodic refresh loop."""

    def __init__(
        self,
        store,
        verification,
        control,
        render_target,
        interval: float = 30,
        cleanup_interval: float = 300,
        idle_ttl: float = 3600,
        max_failures: int = 3,
        max_workers: int = 8,
        clock: Callable[[], float] = time.time,
        metrics=None,
    ):
        self.store = store
        self.verification = verification
        self.control = control
        self.render_target = render_target
        self.interval = interval
        self.cleanup_interval = cleanup_interval
        self.idle_ttl = idle_ttl
        self.max_failures = max_failures
        self.max_workers = max(1, max_workers)
        self._clock = clock
        if metrics is None:
            from ..monitoring.metrics import metrics
        self.metrics = metrics

        self._subscriptions: Dict[str, ActiveSubscription] = {}
        self._lock = threading.Lock()
        self._tick_lock = threading.Lock()
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._last_cleanup = clock()
        self._tick_count = 0
        self._last_tick_at: Optional[float] = None

    @classmethod
    def from_config(cls, cfg, store, verification, control, render_target,
                    metrics=None) -> "StatusPollingScheduler":
        return cls(
            store, verification, control, render_target,
            metrics=metrics,
            interval=cfg.UPDATE_INTERVAL,
            cleanup_interval=cfg.CLEANUP_INTERVAL,
            idle_ttl=cfg.SUBSCRIPTION_TTL,
            max_failures=cfg.MAX_POLL_FAILURES,
            max_workers=cfg.MAX_CONCURRENT_POLLS,
        )

    # ------------------------------------------------------------------
    # Subscription set
    # ------------------------------------------------------------------

    def register(self, subscription_id: str, channel_ref: str, resource_id: str,
                 user_id: str, callback_url: Optional[str] = None) -> ActiveSubscription:
        """Start tracking a rendered view. Re-registering an id replaces it."""
        subscription = ActiveSubscription(
            subscription_id=subscription_id,
            channel_ref=channel_ref,
            resource_id=resource_id,
            user_id=user_id,
            last_update=self._clock(),
            callback_url=callback_url,
        )
        with self._lock:
            self._subscriptions[subscription_id] = subscription
            self.metrics.active_subscriptions.set(len(self._subscriptions))
        logger.info("Registered status view %s for server %s", subscription_id, resource_id,
                    extra={"subscription_id": subscription_id, "resource_id": resource_id,
                           "user_id": user_id})
        return replace(subscription)

    def unregister(self, subscription_id: str) -> bool:
        """Stop tracking a view. Safe to call for unknown ids."""
        with self._lock:
            removed = self._subscriptions.pop(subscription_id, None) is not None
            self.metrics.active_subscriptions.set(len(self._subscriptions))
        if removed:
            logger.info("Unregistered status view %s", subscription_id,
                        extra={"subscription_id": subscription_id})
        return removed

    def get(self, subscription_id: str) -> Optional[ActiveSubscription]:
        """Copy of a subscription's current state."""
        with self._lock:
            subscription = self._subscriptions.get(subscription_id)
            return replace(subscription) if subscription else None

    def snapshot(self) -> List[ActiveSubscription]:
        with self._lock:
            return [replace(s) for s in self._subscriptions.values()]

    def __len__(self) -> int:
        with self._lock:
            return len(self._subscriptions)

    def _evict(self, subscription: ActiveSubscription, reason: EvictionReason) -> bool:
        """Remove ``subscription`` if it is still the registered instance."""
        with self._lock:
            if self._subscriptions.get(subscription.subscription_id) is not subscription:
                return False
            del self._subscriptions[subscription.subscription_id]
            self.metrics.active_subscriptions.set(len(self._subscriptions))
        self.metrics.evictions.labels(reason=reason.value).inc()
        logger.info("Evicted status view %s (%s)", subscription.subscription_id, reason.value,
                    extra={"subscription_id": subscription.subscription_id,
                           "resource_id": subscription.resource_id})
        return True

    # ------------------------------------------------------------------
    # Tick
    # ------------------------------------------------------------------

    def tick(self) -> Optional[Dict[str, int]]:
        """Poll every registered subscription once.

        Returns:
            Outcome counts, or None if another tick is still in flight
        """
        if not self._tick_lock.acquire(blocking=False):
            self.metrics.ticks_skipped.inc()
            logger.warning("Previous status tick still running; skipping this one")
            return None
        try:
            started = time.monotonic()
            with self._lock:
                live = list(self._subscriptions.values())

            summary = {OUTCOME_SUCCESS: 0, OUTCOME_FAILURE: 0, OUTCOME_EVICTED: 0}
            if live:
                logger.debug("Updating %d active status views", len(live))
                workers = min(self.max_workers, len(live))
                with ThreadPoolExecutor(max_workers=workers,
                                        thread_name_prefix="panel-link-poll") as pool:
                    for outcome in pool.map(self._safe_poll, live):
                        summary[outcome] += 1

            self._tick_count += 1
            self._last_tick_at = self._clock()
            self.metrics.ticks.inc()
            self.metrics.tick_duration.observe(time.monotonic() - started)
            return summary
        finally:
            self._tick_lock.release()

    def _safe_poll(self, subscription: ActiveSubscription) -> str:
        try:
            outcome = self._poll(subscription)
        except Exception:
            logger.exception("Unexpected error updating status view %s",
                             subscription.subscription_id,
                             extra={"subscription_id": subscription.subscription_id})
            outcome = self._record_failure(subscription)
        self.metrics.polls.labels(outcome=outcome).inc()
        return outcome

    def _poll(self, subscription: ActiveSubscription) -> str:
        user_id = subscription.user_id
        resource_id = subscription.resource_id

        if not self.verification.has_permission(user_id, resource_id):
            self._evict(subscription, EvictionReason.PERMISSION_LOST)
            return OUTCOME_EVICTED

        try:
            handle = self.render_target.resolve(subscription)
        except RenderTargetError as e:
            logger.warning("Render target check failed for %s: %s",
                           subscription.subscription_id, e)
            return self._record_failure(subscription)
        if handle is None:
            self._evict(subscription, EvictionReason.TARGET_GONE)
            return OUTCOME_EVICTED

        try:
            details, resources = self.control.fetch_snapshot(user_id, resource_id)
        except PanelLinkError as e:
            logger.warning("Failed to fetch data for server %s: %s", resource_id, e.message,
                           extra={"subscription_id": subscription.subscription_id,
                                  "resource_id": resource_id})
            return self._record_failure(subscription)

        self.store.append_telemetry(TelemetrySample.from_resources(resource_id, resources))

        with self._lock:
            if self._subscriptions.get(subscription.subscription_id) is not subscription:
                return OUTCOME_EVICTED
            update_count = subscription.update_count + 1

        try:
            self.render_target.render(handle, build_status_view(details, resources, update_count))
        except RenderTargetError as e:
            logger.warning("Failed to render status view %s: %s",
                           subscription.subscription_id, e)
            return self._record_failure(subscription)

        with self._lock:
            subscription.fail_count = 0
            subscription.update_count = update_count
            subscription.last_update = self._clock()
        return OUTCOME_SUCCESS

    def _record_failure(self, subscription: ActiveSubscription) -> str:
        with self._lock:
            if self._subscriptions.get(subscription.subscription_id) is not subscription:
                return OUTCOME_EVICTED
            subscription.fail_count += 1
            exhausted = subscription.fail_count >= self.max_failures
        if exhausted:
            self._evict(subscription, EvictionReason.POLL_FAILURES)
            logger.warning("Removed status view %s after %d failed attempts",
                           subscription.subscription_id, self.max_failures,
                           extra={"subscription_id": subscription.subscription_id})
            return OUTCOME_EVICTED
        return OUTCOME_FAILURE

    # ------------------------------------------------------------------
    # Cleanup
    # ------------------------------------------------------------------

    def cleanup(self) -> int:
        """Evict subscriptions not updated within ``idle_ttl``."""
        now = self._clock()
        self._last_cleanup = now
        with self._lock:
            idle = [
                s for s in self._subscriptions.values()
                if now - s.last_update > self.idle_ttl
            ]
        evicted = sum(1 for s in idle if self._evict(s, EvictionReason.IDLE))
        if evicted:
            logger.info("Cleaned up %d idle status views", evicted)
        return evicted

    def _cleanup_due(self) -> bool:
        return self._clock() - self._last_cleanup >= self.cleanup_interval

    # ------------------------------------------------------------------
    # Loop
    # ------------------------------------------------------------------

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run_loop, name="panel-link-scheduler", daemon=True
        )
        self._thread.start()
        logger.info("Status scheduler started (%ss interval)", self.interval)

    def stop(self, timeout: Optional[float] = 10) -> None:
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
        logger.info("Status scheduler stopped")

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def _run_loop(self) -> None:
        # A tick that overruns the interval delays the next one instead of overlapping it
        while not self._stop_event.wait(self.interval):
            try:
                self.tick()
                if self._cleanup_due():
                    self.cleanup()
            except Exception:
                logger.exception("Status scheduler iteration failed")

    def get_status(self) -> Dict[str, Any]:
        return {
            "is_running": self.is_running,
            "active_subscriptions": len(self),
            "update_interval": self.interval,
            "cleanup_interval": self.cleanup_interval,
            "ticks": self._tick_count,
            "last_tick_at": self._last_tick_at,
        }
