"""
API request and response models for AuthGate REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.

Request models only check shape and types. Business rules (username
charset, password strength, profile limits) are enforced by the engine so
every caller gets the same 400 validation_error envelope listing every
violation at once, rather than a 422 that stops at pydantic's view.

Separation of concerns: auth/ models = domain truth; api/ models = API contract.
"""

from datetime import datetime
from typing import Optional, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from auth.models import AuthResult, TokenPair, UserProfile

# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class RegisterRequest(BaseModel):
    """Request body for POST /api/v1/auth/register."""

    model_config = ConfigDict(str_strip_whitespace=True)

    username: str = Field(max_length=255)
    email: str = Field(max_length=320)
    password: str = Field(max_length=1024)
    phone: Optional[str] = Field(default=None, max_length=32)
    nickname: Optional[str] = Field(default=None, max_length=255)


class LoginRequest(BaseModel):
    """Request body for POST /api/v1/auth/login.

    The identity may be sent as "identity" or under the name of the field it
    holds ("email", "username", "phone"). Which fields are actually searched
    is decided by LOGIN_IDENTITY_FIELDS, not by the key the client used.
    """

    identity: str = Field(
        min_length=1,
        max_length=320,
        validation_alias=AliasChoices("identity", "email", "username", "phone"),
    )
    password: str = Field(min_length=1, max_length=1024)


class RefreshRequest(BaseModel):
    """Request body for POST /api/v1/auth/refresh. A missing token is a 401, not a 422."""

    refresh_token: Optional[str] = Field(default=None, max_length=4096)


class LogoutRequest(BaseModel):
    refresh_token: Optional[str] = Field(default=None, max_length=4096)


class ProfilePatch(BaseModel):
    """Request body for PATCH /api/v1/auth/profile. Only fields that are sent are changed."""

    model_config = ConfigDict(str_strip_whitespace=True, extra="forbid")

    nickname: Optional[str] = Field(default=None, max_length=1024)
    avatar: Optional[str] = Field(default=None, max_length=2048)
    gender: Optional[str] = Field(default=None, max_length=16)
    birthday: Optional[str] = Field(default=None, max_length=32)
    bio: Optional[str] = Field(default=None, max_length=2048)


class PasswordChange(BaseModel):
    current_password: str = Field(min_length=1, max_length=1024)
    new_password: str = Field(min_length=1, max_length=1024)


class DeactivateRequest(BaseModel):
    password: str = Field(min_length=1, max_length=1024)


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class UserResponse(BaseModel):
    """Public user projection. Never carries the password digest or lockout state."""

    model_config = ConfigDict(frozen=True)

    id: int
    username: str
    email: str
    phone: Optional[str]
    nickname: Optional[str]
    avatar: Optional[str]
    gender: str
    birthday: Optional[str]
    bio: Optional[str]
    status: str
    email_verified: bool
    phone_verified: bool
    last_login_at: Optional[datetime]
    created_at: Optional[datetime]

    @classmethod
    def from_profile(cls, profile: UserProfile) -> "UserResponse":
        """Build a UserResponse from the engine's UserProfile.

        Factory Method: the mapping lives here, colocated with the output
        model, rather than scattered across route handlers.
        """
        return cls(
            id=profile.id,
            username=profile.username,
            email=profile.email,
            phone=profile.phone,
            nickname=profile.nickname,
            avatar=profile.avatar,
            gender=profile.gender.value,
            birthday=profile.birthday,
            bio=profile.bio,
            status=profile.status.value,
            email_verified=profile.email_verified,
            phone_verified=profile.phone_verified,
            last_login_at=profile.last_login_at,
            created_at=profile.created_at,
        )


class TokenResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    access_token: str
    refresh_token: str
    token_type: str
    expires_in: int
    refresh_expires_in: int

    @classmethod
    def from_pair(cls, pair: TokenPair) -> "TokenResponse":
        return cls(
            access_token=pair.access_token,
            refresh_token=pair.refresh_token,
            token_type=pair.token_type,
            expires_in=pair.expires_in,
            refresh_expires_in=pair.refresh_expires_in,
        )


class AuthResponse(BaseModel):
    """Response for register and login: the account plus a fresh token pair."""

    model_config = ConfigDict(frozen=True)

    user: UserResponse
    tokens: TokenResponse

    @classmethod
    def from_result(cls, result: AuthResult) -> "AuthResponse":
        return cls(user=UserResponse.from_profile(result.user), tokens=TokenResponse.from_pair(result.tokens))


class MessageResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[Union[dict, list, str]] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str]
