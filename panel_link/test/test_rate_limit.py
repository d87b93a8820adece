"""Per-user fixed-window rate limiter."""

from panel_link.middleware.rate_limit import RateLimiter, resolve_action


class TickClock:
    def __init__(self):
        self.t = 1000.0

    def __call__(self):
        return self.t


def test_eleventh_call_in_window_is_limited():
    clock = TickClock()
    limiter = RateLimiter(max_requests=10, window_seconds=60, clock=clock)

    results = [limiter.is_limited("u1", "server_command") for _ in range(11)]

    assert results[:10] == [False] * 10
    assert results[10] is True


def test_window_resets_after_expiry():
    clock = TickClock()
    limiter = RateLimiter(max_requests=10, window_seconds=60, clock=clock)
    for _ in range(11):
        limiter.is_limited("u1", "server_command")

    clock.t += 61
    assert limiter.is_limited("u1", "server_command") is False


def test_rejected_calls_do_not_move_the_window():
    clock = TickClock()
    limiter = RateLimiter(max_requests=2, window_seconds=60, clock=clock)
    limiter.is_limited("u1")
    limiter.is_limited("u1")

    clock.t += 30
    assert limiter.is_limited("u1") is True
    clock.t += 30
    # Window opened at t=1000, so it has closed now
    assert limiter.is_limited("u1") is False


def test_keys_are_isolated_by_user_and_action():
    limiter = RateLimiter(max_requests=1, window_seconds=60, clock=TickClock())
    assert limiter.is_limited("u1", "power_action") is False
    assert limiter.is_limited("u1", "power_action") is True

    assert limiter.is_limited("u2", "power_action") is False
    assert limiter.is_limited("u1", "server_command") is False


def test_disabled_limiter_never_limits():
    limiter = RateLimiter(max_requests=1, window_seconds=60, clock=TickClock(), enabled=False)
    assert not any(limiter.is_limited("u1") for _ in range(5))
    assert len(limiter) == 0


def test_retry_after_and_prune():
    clock = TickClock()
    limiter = RateLimiter(max_requests=1, window_seconds=60, clock=clock)
    limiter.is_limited("u1")
    clock.t += 20
    assert limiter.retry_after("u1") == 40
    assert limiter.retry_after("nobody") == 0

    clock.t += 40
    assert limiter.prune() == 1
    assert len(limiter) == 0


def test_closed_windows_are_swept_during_normal_use():
    clock = TickClock()
    limiter = RateLimiter(max_requests=10, window_seconds=60, clock=clock)
    for n in range(1000):
        limiter.is_limited(f"user-{n}", "server_command")
    assert len(limiter) == 1000

    clock.t += 3600
    limiter.is_limited("late-user", "server_command")

    assert len(limiter) == 1


def test_resolve_action_groups_routes():
    assert resolve_action("POST", "/servers/abc/power") == "power_action"
    assert resolve_action("GET", "/servers/abc/status") == "server_command"
    assert resolve_action("POST", "/servers/link") == "server_command"
    assert resolve_action("GET", "/servers") == "server_command"
    assert resolve_action("POST", "/credentials") == "credentials"
    assert resolve_action("DELETE", "/subscriptions/x") == "subscriptions"
    assert resolve_action("GET", "/admin/servers") is None
