"""
api/limiter.py -- Shared slowapi rate limiter instance.

This is the coarse transport-level throttle: every API route gets
API_RATE_LIMIT per client address through SlowAPIMiddleware. The
fine-grained per-operation limits (login, register, refresh) live in the
engine's own RateLimiter, which the engine consults before touching the
user store.

Using a single shared instance ensures all routes share the same in-memory
counter store. If this were instantiated in each module separately, each
module would get its own isolated counter and rate limits would never trigger.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

from core.config import get_settings

limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[get_settings().api_rate_limit],
    storage_uri="memory://",
    headers_enabled=False,
)
