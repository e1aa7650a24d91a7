"""Unit tests for auth/ratelimit.py -- fixed-window RateLimiter.

Covers:
- Rule parsing from limits-style rate strings
- Admission up to the limit, rejection with a whole-second Retry-After
- Window reset after window_seconds
- Independence of clients and of route classes
- Unconfigured routes always admitted
- reset() and purge_expired()
- Concurrent callers cannot exceed the limit
"""

import threading

import pytest

from auth.ratelimit import Admitted, RateLimiter, RateLimitRule, Rejected


@pytest.fixture
def limiter(clock) -> RateLimiter:
    return RateLimiter(
        {"login": RateLimitRule(amount=3, window_seconds=60), "register": RateLimitRule(amount=1, window_seconds=3600)},
        clock=clock,
    )


class TestRuleParse:
    @pytest.mark.parametrize(
        "expression, amount, window",
        [("5/minute", 5, 60), ("3/hour", 3, 3600), ("30 per minute", 30, 60), ("10/second", 10, 1)],
    )
    def test_parse(self, expression: str, amount: int, window: int) -> None:
        assert RateLimitRule.parse(expression) == RateLimitRule(amount, window)

    def test_parse_rejects_nonsense(self) -> None:
        with pytest.raises(ValueError):
            RateLimitRule.parse("lots")


class TestAdmit:
    def test_admits_up_to_limit_then_rejects(self, limiter: RateLimiter) -> None:
        decisions = [limiter.admit("1.2.3.4", "login") for _ in range(4)]
        assert decisions[:3] == [Admitted(2), Admitted(1), Admitted(0)]
        assert isinstance(decisions[3], Rejected)

    def test_retry_after_counts_down_to_window_end(self, limiter: RateLimiter, clock) -> None:
        for _ in range(3):
            limiter.admit("1.2.3.4", "login")
        clock.advance(20.5)
        decision = limiter.admit("1.2.3.4", "login")
        assert decision == Rejected(retry_after=40)

    def test_retry_after_is_at_least_one(self, limiter: RateLimiter, clock) -> None:
        for _ in range(3):
            limiter.admit("1.2.3.4", "login")
        clock.advance(59.9)
        assert limiter.admit("1.2.3.4", "login") == Rejected(retry_after=1)

    def test_window_resets_after_elapsed(self, limiter: RateLimiter, clock) -> None:
        for _ in range(4):
            limiter.admit("1.2.3.4", "login")
        clock.advance(60)
        assert limiter.admit("1.2.3.4", "login") == Admitted(2)

    def test_rejections_do_not_extend_window(self, limiter: RateLimiter, clock) -> None:
        for _ in range(3):
            limiter.admit("1.2.3.4", "login")
        for _ in range(10):
            clock.advance(5)
            limiter.admit("1.2.3.4", "login")
        clock.advance(10)
        assert isinstance(limiter.admit("1.2.3.4", "login"), Admitted)

    def test_clients_are_independent(self, limiter: RateLimiter) -> None:
        for _ in range(3):
            limiter.admit("1.2.3.4", "login")
        assert isinstance(limiter.admit("5.6.7.8", "login"), Admitted)

    def test_routes_are_independent(self, limiter: RateLimiter) -> None:
        for _ in range(3):
            limiter.admit("1.2.3.4", "login")
        assert isinstance(limiter.admit("1.2.3.4", "register"), Admitted)

    def test_unconfigured_route_always_admitted(self, limiter: RateLimiter) -> None:
        for _ in range(100):
            assert isinstance(limiter.admit("1.2.3.4", "profile"), Admitted)


class TestHousekeeping:
    def test_reset_clears_window(self, limiter: RateLimiter) -> None:
        limiter.admit("1.2.3.4", "register")
        assert isinstance(limiter.admit("1.2.3.4", "register"), Rejected)
        limiter.reset("1.2.3.4", "register")
        assert isinstance(limiter.admit("1.2.3.4", "register"), Admitted)

    def test_purge_drops_only_elapsed_windows(self, limiter: RateLimiter, clock) -> None:
        limiter.admit("1.2.3.4", "login")
        limiter.admit("1.2.3.4", "register")
        clock.advance(61)
        assert limiter.purge_expired() == 1
        # The hour-long register window survives the purge.
        assert isinstance(limiter.admit("1.2.3.4", "register"), Rejected)


def test_concurrent_callers_cannot_exceed_limit(clock) -> None:
    limiter = RateLimiter({"login": RateLimitRule(amount=10, window_seconds=60)}, clock=clock)
    results: list = []
    lock = threading.Lock()
    barrier = threading.Barrier(8)

    def worker() -> None:
        barrier.wait()
        for _ in range(25):
            decision = limiter.admit("1.2.3.4", "login")
            with lock:
                results.append(decision)

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert sum(isinstance(d, Admitted) for d in results) == 10
    assert sum(isinstance(d, Rejected) for d in results) == 190
