"""
auth/passwords.py -- Password hashing and strength policy.

Security design decisions:
  Hashing: bcrypt directly rather than through passlib. passlib's internal
       wrap-bug detection creates a password longer than 72 bytes, which
       bcrypt 4.x rejects with an explicit error. The cost factor comes from
       Settings.bcrypt_rounds (default 12).

  72-byte limit: bcrypt only looks at the first 72 bytes of its input.
       check_password_strength() rejects longer passwords at registration
       so two passwords sharing a 72-byte prefix can never collide.

  Timing equalization: DUMMY_HASH is computed once at module load so the
       engine can run a full bcrypt verify even when the identity does not
       exist. Response time then does not reveal which accounts exist.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import re

import bcrypt

from core.config import get_settings

_settings = get_settings()

_MAX_PASSWORD_BYTES = 72


def hash_password(plain: str) -> str:
    """Return a bcrypt hash of the given plaintext password."""
    salt = bcrypt.gensalt(rounds=_settings.bcrypt_rounds)
    return bcrypt.hashpw(plain.encode("utf-8"), salt).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash.

    Any failure inside bcrypt (malformed digest, over-long input) counts as
    a mismatch rather than an error.
    """
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except (ValueError, TypeError):
        return False


DUMMY_HASH: str = hash_password("authgate_timing_dummy")


def check_password_strength(plain: str, min_length: int | None = None) -> list[str]:
    """Return the list of policy violations for a candidate password.

    An empty list means the password is acceptable.
    """
    min_length = min_length if min_length is not None else _settings.password_min_length
    issues: list[str] = []
    if len(plain) < min_length:
        issues.append(f"must be at least {min_length} characters")
    if len(plain.encode("utf-8")) > _MAX_PASSWORD_BYTES:
        issues.append(f"must be at most {_MAX_PASSWORD_BYTES} bytes")
    if not re.search(r"[a-z]", plain):
        issues.append("must contain a lowercase letter")
    if not re.search(r"[A-Z]", plain):
        issues.append("must contain an uppercase letter")
    if not re.search(r"[0-9]", plain):
        issues.append("must contain a digit")
    return issues
