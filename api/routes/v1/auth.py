"""
api/routes/v1/auth.py -- Authentication and account REST endpoints.

Routes:
  POST  /api/v1/auth/register    -- create account; 201 user + token pair
  POST  /api/v1/auth/login       -- password login; 200 user + token pair
  GET   /api/v1/auth/profile     -- current user's profile (requires auth)
  PATCH /api/v1/auth/profile     -- edit nickname/avatar/gender/birthday/bio
  POST  /api/v1/auth/password    -- change password; 204
  POST  /api/v1/auth/deactivate  -- soft-delete own account; 204
  POST  /api/v1/auth/refresh     -- exchange refresh token for a new pair
  POST  /api/v1/auth/logout      -- revoke access (and refresh) token

Handlers are thin: extract the bearer token and client key, call the engine,
map the result to a response model. Engine errors (AuthError) propagate to
the single handler in api/main.py, which owns the error envelope and the
Retry-After / locked_until details.

Security:
  Per-operation rate limits (login, register, refresh) are enforced inside
  the engine before it touches the store, so they hold for any transport.
  Cache-Control: no-store on every response that carries tokens.
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Response
from fastapi.responses import JSONResponse

from api.models import (
    AuthResponse,
    DeactivateRequest,
    LoginRequest,
    LogoutRequest,
    MessageResponse,
    PasswordChange,
    ProfilePatch,
    RefreshRequest,
    RegisterRequest,
    TokenResponse,
    UserResponse,
)
from auth.dependencies import bearer_token, client_key, get_engine
from auth.engine import AuthEngine
from auth.models import Registration

# Auth policy:
# - POST  /auth/register, /auth/login, /auth/refresh: public (rate-limited in the engine)
# - everything else: requires a valid, unrevoked access token
router = APIRouter()


def _no_store(payload: dict, status_code: int = 200) -> JSONResponse:
    resp = JSONResponse(status_code=status_code, content=payload)
    resp.headers["Cache-Control"] = "no-store"
    return resp


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@router.post("/auth/register", response_model=AuthResponse, status_code=201)
def register(
    body: RegisterRequest,
    engine: AuthEngine = Depends(get_engine),
    client: str = Depends(client_key),
) -> JSONResponse:
    """Create an account and return it with a fresh token pair."""
    result = engine.register(
        Registration(
            username=body.username,
            email=body.email,
            password=body.password,
            phone=body.phone or None,
            nickname=body.nickname or None,
        ),
        client=client,
    )
    return _no_store(AuthResponse.from_result(result).model_dump(mode="json"), status_code=201)


@router.post("/auth/login", response_model=AuthResponse)
def login(
    body: LoginRequest,
    engine: AuthEngine = Depends(get_engine),
    client: str = Depends(client_key),
) -> JSONResponse:
    """Authenticate with identity and password.

    Unknown identity and wrong password return the same 401
    invalid_credentials so the response never reveals which accounts exist.
    """
    result = engine.login(body.identity, body.password, client=client)
    return _no_store(AuthResponse.from_result(result).model_dump(mode="json"))


@router.post("/auth/refresh", response_model=TokenResponse)
def refresh(
    body: RefreshRequest,
    engine: AuthEngine = Depends(get_engine),
    client: str = Depends(client_key),
) -> JSONResponse:
    """Exchange a refresh token for a new pair. The old refresh token stops working."""
    pair = engine.refresh(body.refresh_token, client=client)
    return _no_store(TokenResponse.from_pair(pair).model_dump(mode="json"))


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.post("/auth/logout", response_model=MessageResponse)
def logout(
    body: Optional[LogoutRequest] = None,
    engine: AuthEngine = Depends(get_engine),
    token: Optional[str] = Depends(bearer_token),
) -> MessageResponse:
    """Revoke the presented access token, and the refresh token if one is sent."""
    engine.logout(token, body.refresh_token if body else None)
    return MessageResponse(message="Logged out.")


@router.get("/auth/profile", response_model=UserResponse)
def get_profile(
    engine: AuthEngine = Depends(get_engine),
    token: Optional[str] = Depends(bearer_token),
) -> UserResponse:
    return UserResponse.from_profile(engine.profile(token))


@router.patch("/auth/profile", response_model=UserResponse)
def patch_profile(
    body: ProfilePatch,
    engine: AuthEngine = Depends(get_engine),
    token: Optional[str] = Depends(bearer_token),
) -> UserResponse:
    """Update the fields present in the body. Sending null clears a field."""
    return UserResponse.from_profile(engine.update_profile(token, body.model_dump(exclude_unset=True)))


@router.post("/auth/password", status_code=204)
def change_password(
    body: PasswordChange,
    engine: AuthEngine = Depends(get_engine),
    token: Optional[str] = Depends(bearer_token),
) -> Response:
    engine.change_password(token, body.current_password, body.new_password)
    return Response(status_code=204)


@router.post("/auth/deactivate", status_code=204)
def deactivate(
    body: DeactivateRequest,
    engine: AuthEngine = Depends(get_engine),
    token: Optional[str] = Depends(bearer_token),
) -> Response:
    """Soft-delete the caller's account. Requires the current password."""
    engine.deactivate(token, body.password)
    return Response(status_code=204)
