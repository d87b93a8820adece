"""Status polling scheduler: refresh, failure counting and eviction."""

import threading

import pytest

from panel_link.schemas import LinkedResource
from panel_link.services.control import ControlService
from panel_link.services.credentials import CredentialService
from panel_link.services.render import InMemoryRenderTarget, RenderTargetError
from panel_link.services.scheduler import StatusPollingScheduler
from panel_link.services.verification import MODE_SHAPE, OwnershipVerificationService

PANEL_URL = "https://panel.example.com"


class SecondsClock:
    def __init__(self):
        self.t = 10_000.0

    def __call__(self):
        return self.t


@pytest.fixture
def seconds():
    return SecondsClock()


@pytest.fixture
def target():
    return InMemoryRenderTarget()


@pytest.fixture
def scheduler(store, panel, collector, seconds, target, api_key):
    credentials = CredentialService(store, default_panel_url=PANEL_URL,
                                    client_factory=panel.client_factory)
    verification = OwnershipVerificationService(store, credentials, mode=MODE_SHAPE,
                                                metrics=collector)
    control = ControlService(store, verification, credentials)
    store.save_credential("u1", api_key, PANEL_URL)
    store.upsert_resource(LinkedResource(user_id="u1", resource_id="abc123"))
    return StatusPollingScheduler(
        store, verification, control, target,
        interval=30, cleanup_interval=300, idle_ttl=3600, max_failures=3,
        max_workers=4, clock=seconds, metrics=collector,
    )


def _subscribe(scheduler, target, sub_id="m1", resource_id="abc123"):
    target.open(sub_id)
    return scheduler.register(sub_id, "channel-1", resource_id, "u1")


def _sample(collector, name, labels=None):
    return collector.registry.get_sample_value(name, labels or {}) or 0


def test_tick_with_no_subscriptions_is_noop(scheduler, collector):
    summary = scheduler.tick()
    assert summary == {"success": 0, "failure": 0, "evicted": 0}
    assert _sample(collector, "panel_link_scheduler_ticks_total") == 1


def test_successful_poll_renders_and_records(scheduler, target, store, seconds):
    _subscribe(scheduler, target)
    seconds.t += 30

    summary = scheduler.tick()

    assert summary["success"] == 1
    view = target.views["m1"]
    assert view["update_count"] == 1
    assert view["footer"].endswith("Update #1")
    assert view["state"] == "running"
    assert len(store.get_telemetry("abc123")) == 1
    sub = scheduler.get("m1")
    assert sub.update_count == 1
    assert sub.fail_count == 0
    assert sub.last_update == seconds.t


def test_failures_reset_after_success(scheduler, target, panel):
    _subscribe(scheduler, target)
    panel.down = True
    scheduler.tick()
    scheduler.tick()
    assert scheduler.get("m1").fail_count == 2

    panel.down = False
    scheduler.tick()

    sub = scheduler.get("m1")
    assert sub.fail_count == 0
    assert sub.update_count == 1


def test_three_consecutive_failures_evict(scheduler, target, panel, collector):
    _subscribe(scheduler, target)
    panel.down = True

    outcomes = [scheduler.tick() for _ in range(3)]

    assert outcomes[0]["failure"] == 1
    assert outcomes[2]["evicted"] == 1
    assert scheduler.get("m1") is None
    assert _sample(collector, "panel_link_subscription_evictions_total",
                   {"reason": "poll_failures"}) == 1


def test_lost_permission_evicts(scheduler, target, store):
    _subscribe(scheduler, target)
    store.remove_resource("u1", "abc123")

    assert scheduler.tick()["evicted"] == 1
    assert len(scheduler) == 0


def test_missing_render_target_evicts(scheduler, target):
    scheduler.register("m1", "channel-1", "abc123", "u1")

    assert scheduler.tick()["evicted"] == 1
    assert scheduler.get("m1") is None


def test_idle_subscription_cleaned_up(scheduler, target, seconds):
    _subscribe(scheduler, target)

    seconds.t += 3600
    assert scheduler.cleanup() == 0

    seconds.t += 1
    assert scheduler.cleanup() == 1
    assert scheduler.get("m1") is None


def test_fresh_subscription_survives_cleanup(scheduler, target, seconds):
    _subscribe(scheduler, target)
    seconds.t += 3000
    scheduler.tick()
    seconds.t += 1000

    assert scheduler.cleanup() == 0


def test_unregister_is_idempotent(scheduler, target):
    _subscribe(scheduler, target)
    assert scheduler.unregister("m1") is True
    assert scheduler.unregister("m1") is False
    assert scheduler.unregister("never-registered") is False


def test_one_bad_subscription_does_not_affect_others(scheduler, target, store):
    store.upsert_resource(LinkedResource(user_id="u1", resource_id="def456"))

    class ExplodingTarget(InMemoryRenderTarget):
        def render(self, handle, view):
            if handle == "bad":
                raise RuntimeError("boom")
            super().render(handle, view)

    exploding = ExplodingTarget()
    scheduler.render_target = exploding
    _subscribe(scheduler, exploding, "good", "abc123")
    _subscribe(scheduler, exploding, "bad", "def456")

    summary = scheduler.tick()

    assert summary == {"success": 1, "failure": 1, "evicted": 0}
    assert "good" in exploding.views
    assert scheduler.get("bad").fail_count == 1


def test_render_failures_accumulate_and_evict(scheduler, store, collector):
    class FlakyTarget(InMemoryRenderTarget):
        def render(self, handle, view):
            raise RenderTargetError("HTTP 500")

    flaky = FlakyTarget()
    scheduler.render_target = flaky
    _subscribe(scheduler, flaky)

    assert scheduler.tick()["failure"] == 1
    assert scheduler.tick()["failure"] == 1
    state = scheduler.get("m1")
    assert state.fail_count == 2
    assert state.update_count == 0

    assert scheduler.tick()["evicted"] == 1
    assert scheduler.get("m1") is None
    assert _sample(collector, "panel_link_subscription_evictions_total",
                   {"reason": "poll_failures"}) == 1


def test_overlapping_tick_is_skipped(scheduler, collector):
    entered = threading.Event()
    release = threading.Event()

    class BlockingTarget(InMemoryRenderTarget):
        def resolve(self, subscription):
            entered.set()
            release.wait(5)
            return super().resolve(subscription)

    blocking = BlockingTarget()
    scheduler.render_target = blocking
    _subscribe(scheduler, blocking)

    results = []
    worker = threading.Thread(target=lambda: results.append(scheduler.tick()))
    worker.start()
    assert entered.wait(5)

    assert scheduler.tick() is None
    release.set()
    worker.join(5)

    assert results[0]["success"] == 1
    assert _sample(collector, "panel_link_scheduler_ticks_skipped_total") == 1


def test_start_and_stop(scheduler):
    scheduler.start()
    try:
        assert scheduler.is_running
        assert scheduler.get_status()["is_running"] is True
    finally:
        scheduler.stop()
    assert not scheduler.is_running
