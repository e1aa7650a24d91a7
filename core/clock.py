"""
core/clock.py -- Injectable time source.

Every component that compares against "now" (token expiry, lockout windows,
rate-limit windows, revocation purging) takes a Clock instead of calling
datetime.now() itself, so tests can advance time without sleeping.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime, timezone

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    """Production clock: timezone-aware current UTC time."""
    return datetime.now(timezone.utc)
