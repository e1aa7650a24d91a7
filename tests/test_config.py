"""Unit tests for core/config.py -- Settings validation.

Covers:
- Defaults for token lifetimes, lockout and rate limits
- SECRET_KEY policy in debug and production mode
- Rate-limit strings validated by the limits parser
- Login identity fields restricted to known fields and deduplicated
"""

import pytest
from pydantic import ValidationError

from core.config import Settings

KEY = "k" * 40


def test_defaults() -> None:
    settings = Settings(secret_key=KEY)
    assert settings.access_token_expire_seconds == 900
    assert settings.refresh_token_expire_seconds == 604800
    assert settings.lockout_threshold == 5
    assert settings.lockout_duration_seconds == 86400
    assert settings.login_rate_limit == "5/minute"
    assert settings.register_rate_limit == "3/hour"
    assert settings.login_identity_fields == ["email"]


def test_debug_generates_secret_key() -> None:
    settings = Settings(debug=True, secret_key="")
    assert len(settings.secret_key) >= 32


def test_production_requires_secret_key() -> None:
    with pytest.raises(ValidationError, match="SECRET_KEY is required"):
        Settings(debug=False, secret_key="")


def test_short_secret_key_rejected() -> None:
    with pytest.raises(ValidationError, match="at least 32"):
        Settings(secret_key="too-short")


@pytest.mark.parametrize("field", ["login_rate_limit", "register_rate_limit", "refresh_rate_limit", "api_rate_limit"])
def test_bad_rate_limit_rejected(field: str) -> None:
    with pytest.raises(ValidationError):
        Settings(secret_key=KEY, **{field: "often"})


def test_identity_fields_deduplicated() -> None:
    settings = Settings(secret_key=KEY, login_identity_fields=["username", "email", "username"])
    assert settings.login_identity_fields == ["username", "email"]


@pytest.mark.parametrize("fields", [[], ["nickname"]])
def test_bad_identity_fields_rejected(fields: list) -> None:
    with pytest.raises(ValidationError):
        Settings(secret_key=KEY, login_identity_fields=fields)


def test_bcrypt_rounds_bounds() -> None:
    with pytest.raises(ValidationError):
        Settings(secret_key=KEY, bcrypt_rounds=3)


def test_reads_environment(monkeypatch) -> None:
    monkeypatch.setenv("LOCKOUT_THRESHOLD", "7")
    monkeypatch.setenv("LOGIN_IDENTITY_FIELDS", '["phone", "email"]')
    settings = Settings(secret_key=KEY)
    assert settings.lockout_threshold == 7
    assert settings.login_identity_fields == ["phone", "email"]
