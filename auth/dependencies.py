"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

Bearer tokens travel in the Authorization header:
    Authorization: Bearer <token>

bearer_token() is the soft extractor (returns None when the header is absent
or not a Bearer credential). The engine decides what a missing token means,
so route handlers pass the result straight through and never build 401
responses themselves.

client_key() is the caller's network address as the transport sees it. It
keys the engine's rate-limit windows and is recorded as last_login_ip.

Layer rule: no imports from api/.
  auth/dependencies.py may import from fastapi (for Request) because this
  module is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

from fastapi import Request

from auth.engine import AuthEngine

_BEARER_PREFIX = "bearer "


def get_engine(request: Request) -> AuthEngine:
    """Return the AuthEngine wired into app.state by the lifespan."""
    return request.app.state.engine


def bearer_token(request: Request) -> str | None:
    """Extract the token from an Authorization: Bearer header.

    The scheme is matched case-insensitively (RFC 6750 section 2.1).
    """
    header = request.headers.get("Authorization", "")
    if header[: len(_BEARER_PREFIX)].lower() != _BEARER_PREFIX:
        return None
    token = header[len(_BEARER_PREFIX) :].strip()
    return token or None


def client_key(request: Request) -> str:
    return request.client.host if request.client else "unknown"
