"""
auth/errors.py -- Domain error taxonomy for the authentication engine.

Every AuthError carries a stable machine-readable `code` and the HTTP
`status_code` the transport should use. api/main.py registers a single
handler for the whole family, so routes never build error responses for
engine failures themselves.

InvalidCredentialsError deliberately covers both "no such account" and
"wrong password". Do not add a more specific error for unknown identities:
that would let callers enumerate accounts.

StorageError is NOT an AuthError. It signals infrastructure trouble
(database unreachable, locked, disk full) and maps to 503.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime


@dataclass(frozen=True)
class Violation:
    field: str
    message: str


class AuthError(Exception):
    """Base class for engine errors surfaced to callers."""

    status_code: int = 400
    code: str = "auth_error"
    message: str = "Authentication error."

    def __init__(self, message: str | None = None) -> None:
        if message is not None:
            self.message = message
        super().__init__(self.message)

    def detail(self) -> dict:
        """Structured extra context for the error envelope. Empty by default."""
        return {}


class ValidationError(AuthError):
    status_code = 400
    code = "validation_error"
    message = "Input validation failed."

    def __init__(self, violations: list[Violation]) -> None:
        self.violations = list(violations)
        super().__init__()

    def detail(self) -> dict:
        return {"violations": [{"field": v.field, "message": v.message} for v in self.violations]}


class ConflictError(AuthError):
    status_code = 409
    code = "conflict"

    def __init__(self, field: str) -> None:
        self.field = field
        super().__init__(f"An account with that {field} already exists.")

    def detail(self) -> dict:
        return {"field": self.field}


class InvalidCredentialsError(AuthError):
    status_code = 401
    code = "invalid_credentials"
    message = "Invalid credentials."


class AccountLockedError(AuthError):
    status_code = 423
    code = "account_locked"
    message = "Account is temporarily locked."

    def __init__(self, until: datetime) -> None:
        self.until = until
        super().__init__()

    def detail(self) -> dict:
        return {"locked_until": self.until.isoformat()}


class MissingTokenError(AuthError):
    status_code = 401
    code = "missing_token"
    message = "Authentication token is required."


class InvalidTokenError(AuthError):
    status_code = 401
    code = "invalid_token"
    message = "Token is invalid or expired."


class RevokedTokenError(AuthError):
    status_code = 401
    code = "revoked_token"
    message = "Token has been revoked."


class RateLimitedError(AuthError):
    status_code = 429
    code = "rate_limited"
    message = "Too many requests."

    def __init__(self, retry_after: int) -> None:
        self.retry_after = retry_after
        super().__init__()

    def detail(self) -> dict:
        return {"retry_after": self.retry_after}


class StorageError(Exception):
    """The persistence layer is unavailable. Maps to 503, never retried here."""
