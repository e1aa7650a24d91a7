"""
auth/ratelimit.py -- In-memory fixed-window rate limiter for auth operations.

Windows are keyed by (client key, route class), e.g. ("203.0.113.9", "login").
Keying on the route as well as the client means a flood against /login
cannot throttle the same client's /refresh calls.

A window starts at the first hit and resets once window_seconds have
elapsed. Rules are expressed as rate strings ("5/minute", "3/hour") and
parsed with the `limits` library, the same notation slowapi uses for the
transport-level limit in api/limiter.py.

Concurrency: each window carries its own lock, so counting is serialized per
(client, route) key only. The registry lock is held just long enough to look
up or create a window object.

State lives in process memory and is lost on restart. Rate limiting is a
best-effort defense, not a durability guarantee.
"""

from __future__ import annotations

import math
import threading
from dataclasses import dataclass
from typing import Union

from limits import parse

from core.clock import Clock, utc_now


@dataclass(frozen=True)
class RateLimitRule:
    amount: int
    window_seconds: int

    @classmethod
    def parse(cls, expression: str) -> "RateLimitRule":
        """Build a rule from a limits-style rate string such as "5/minute"."""
        item = parse(expression)
        return cls(amount=item.amount, window_seconds=item.get_expiry())


@dataclass(frozen=True)
class Admitted:
    remaining: int


@dataclass(frozen=True)
class Rejected:
    retry_after: int  # whole seconds, at least 1


Decision = Union[Admitted, Rejected]


class _Window:
    __slots__ = ("lock", "count", "started_at")

    def __init__(self, started_at: float) -> None:
        self.lock = threading.Lock()
        self.count = 0
        self.started_at = started_at


class RateLimiter:
    """Fixed-window counters per (client, route) with an injected clock.

    Usage:
        limiter = RateLimiter({"login": RateLimitRule.parse("5/minute")})
        decision = limiter.admit("203.0.113.9", "login")
        if isinstance(decision, Rejected): ...
    """

    def __init__(self, rules: dict[str, RateLimitRule], clock: Clock = utc_now) -> None:
        self._rules = dict(rules)
        self._clock = clock
        self._registry_lock = threading.Lock()
        self._windows: dict[tuple[str, str], _Window] = {}

    def rule_for(self, route: str) -> RateLimitRule | None:
        return self._rules.get(route)

    def admit(self, client: str, route: str) -> Decision:
        """Count one hit for (client, route) and decide whether to let it through.

        Routes with no configured rule are always admitted.
        """
        rule = self._rules.get(route)
        if rule is None:
            return Admitted(remaining=-1)

        now = self._clock().timestamp()
        key = (client, route)
        with self._registry_lock:
            window = self._windows.get(key)
            if window is None:
                window = self._windows[key] = _Window(now)

        with window.lock:
            if now - window.started_at >= rule.window_seconds:
                window.count = 0
                window.started_at = now
            if window.count >= rule.amount:
                retry_after = window.started_at + rule.window_seconds - now
                return Rejected(retry_after=max(1, math.ceil(retry_after)))
            window.count += 1
            return Admitted(remaining=rule.amount - window.count)

    def reset(self, client: str, route: str) -> None:
        with self._registry_lock:
            self._windows.pop((client, route), None)

    def purge_expired(self) -> int:
        """Drop windows whose time bucket has elapsed. Returns the number removed."""
        now = self._clock().timestamp()
        removed = 0
        with self._registry_lock:
            for key, window in list(self._windows.items()):
                rule = self._rules.get(key[1])
                if rule is None or now - window.started_at >= rule.window_seconds:
                    del self._windows[key]
                    removed += 1
        return removed
