"""
auth/lockout.py -- Account lockout policy.

Pure functions over LockoutState. No I/O and no clock of its own: the caller
passes "now", and the store persists whatever state comes back. That keeps
the policy trivially testable and lets UserStore.transition_lockout() apply
it inside a single database transaction.

Rules:
  - A lock is active while locked_until is strictly in the future.
  - Each failure increments failed_attempts. Reaching the threshold sets
    locked_until = now + duration.
  - A lock that has already expired does not carry its count forward: the
    next failure starts again from zero, so one wrong password after the
    lock lapses does not immediately re-lock the account.
  - Success resets to (0, None).
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional, Union


@dataclass(frozen=True)
class LockoutState:
    failed_attempts: int = 0
    locked_until: Optional[datetime] = None


@dataclass(frozen=True)
class Locked:
    until: datetime


@dataclass(frozen=True)
class Unlocked:
    pass


LockStatus = Union[Locked, Unlocked]


class LockoutPolicy:
    def __init__(self, threshold: int, duration: timedelta) -> None:
        if threshold < 1:
            raise ValueError("Lockout threshold must be at least 1.")
        self.threshold = threshold
        self.duration = duration

    def evaluate(self, state: LockoutState, now: datetime) -> LockStatus:
        if state.locked_until is not None and state.locked_until > now:
            return Locked(state.locked_until)
        return Unlocked()

    def record_failure(self, state: LockoutState, now: datetime) -> LockoutState:
        attempts = state.failed_attempts
        if state.locked_until is not None and state.locked_until <= now:
            attempts = 0
        attempts += 1
        if attempts >= self.threshold:
            return LockoutState(failed_attempts=attempts, locked_until=now + self.duration)
        return LockoutState(failed_attempts=attempts, locked_until=None)

    def record_success(self) -> LockoutState:
        return LockoutState()
