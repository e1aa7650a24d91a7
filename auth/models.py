"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). Stores, the engine
and routes do the work; these types only own the shape.

Layer rule: no imports from api/.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional


class Gender(str, Enum):
    unknown = "unknown"
    male = "male"
    female = "female"


class UserStatus(str, Enum):
    disabled = "disabled"
    active = "active"


class TokenKind(str, Enum):
    access = "access"
    refresh = "refresh"


@dataclass
class User:
    """A user directory record.

    hashed_password is a bcrypt digest; it never leaves the auth layer.
    failed_attempts / locked_until are the persisted lockout state (see
    auth/lockout.py). deleted_at is set by soft delete; deleted rows are
    invisible to every store lookup and do not hold their username, email
    or phone.

    token_version is stamped into every issued token. Raising it (password
    change) invalidates all tokens issued before.

    external_provider / external_subject store a reference to an identity at
    a third-party provider. Nothing in AuthGate authenticates against it.

    id is None before the record is written to the database.
    """

    username: str
    email: str
    hashed_password: str
    id: Optional[int] = None
    phone: Optional[str] = None
    nickname: Optional[str] = None
    avatar: Optional[str] = None
    gender: Gender = Gender.unknown
    birthday: Optional[str] = None  # ISO 8601 date
    bio: Optional[str] = None
    status: UserStatus = UserStatus.active
    email_verified: bool = False
    phone_verified: bool = False
    failed_attempts: int = 0
    locked_until: Optional[datetime] = None
    token_version: int = 0
    last_login_at: Optional[datetime] = None
    last_login_ip: Optional[str] = None
    external_provider: Optional[str] = None
    external_subject: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    deleted_at: Optional[datetime] = None


@dataclass(frozen=True)
class UserProfile:
    """Public projection of a User. Safe to hand to callers."""

    id: int
    username: str
    email: str
    phone: Optional[str]
    nickname: Optional[str]
    avatar: Optional[str]
    gender: Gender
    birthday: Optional[str]
    bio: Optional[str]
    status: UserStatus
    email_verified: bool
    phone_verified: bool
    last_login_at: Optional[datetime]
    created_at: Optional[datetime]


@dataclass(frozen=True)
class Registration:
    """Input to AuthEngine.register(). Validated by the engine, not here."""

    username: str
    email: str
    password: str
    phone: Optional[str] = None
    nickname: Optional[str] = None


@dataclass(frozen=True)
class TokenClaims:
    subject: int
    kind: TokenKind
    jti: str
    issued_at: datetime
    expires_at: datetime
    version: int = 0


@dataclass(frozen=True)
class IssuedToken:
    token: str
    claims: TokenClaims


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    refresh_token: str
    expires_in: int  # access token lifetime, seconds
    refresh_expires_in: int
    token_type: str = "bearer"


@dataclass(frozen=True)
class AuthResult:
    """What register() and login() hand back: who you are and how to prove it."""

    user: UserProfile
    tokens: TokenPair


@dataclass(frozen=True)
class RevocationEntry:
    jti: str
    subject: int
    kind: TokenKind
    expires_at: datetime
