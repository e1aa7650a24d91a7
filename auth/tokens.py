"""
auth/tokens.py -- JWT encode/decode for access and refresh tokens.

Security design decisions:
  JWT: python-jose with HS256. Tokens are signed with SECRET_KEY and carry
       sub (user id as a string, as RFC 7519 requires), typ (access or
       refresh), jti, ver, iat and exp. Nothing else: tokens are opaque to
       callers and the user record is the source of truth for everything
       mutable.

  ver: the subject's token_version at issue time. The engine rejects a
       token whose ver is below the user's current token_version, which
       is how a password change ends every older session at once.

  jti: secrets.token_hex(16) gives 128 random bits per token, which makes
       collisions within a token's lifetime negligible and jtis unguessable.
       The revocation registry targets tokens by jti.

  Expiry: jose's own exp check reads wall-clock time. It is disabled and exp
       is compared against the injected clock instead, so tests can advance
       time deterministically. A token whose exp equals "now" is expired.

  Errors: every decode failure raises InvalidTokenError. The caller never
       learns whether the signature, the structure or the expiry was wrong.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import secrets
from datetime import datetime, timedelta, timezone

from jose import JWTError, jwt

from auth.errors import InvalidTokenError
from auth.models import IssuedToken, TokenClaims, TokenKind
from core.clock import Clock, utc_now

_ALGORITHM = "HS256"
_REQUIRED_CLAIMS = ("sub", "typ", "jti", "ver", "iat", "exp")


class TokenCodec:
    """Issues and decodes signed, expiring tokens.

    Usage:
        codec = TokenCodec(secret_key, access_ttl=900, refresh_ttl=604800)
        issued = codec.issue(42, TokenKind.access)
        claims = codec.decode(issued.token, TokenKind.access)
    """

    def __init__(
        self,
        secret_key: str,
        access_ttl: int,
        refresh_ttl: int,
        clock: Clock = utc_now,
    ) -> None:
        self._secret_key = secret_key
        self._ttl = {TokenKind.access: access_ttl, TokenKind.refresh: refresh_ttl}
        self._clock = clock

    def ttl(self, kind: TokenKind) -> int:
        """Lifetime in seconds for tokens of the given kind."""
        return self._ttl[kind]

    def issue(self, subject: int, kind: TokenKind, version: int = 0) -> IssuedToken:
        """Sign a fresh token for subject with the kind-appropriate expiry."""
        # JWT timestamps are whole seconds; truncate so claims round-trip exactly.
        issued_at = self._clock().replace(microsecond=0)
        claims = TokenClaims(
            subject=subject,
            kind=kind,
            jti=secrets.token_hex(16),
            issued_at=issued_at,
            expires_at=issued_at + timedelta(seconds=self._ttl[kind]),
            version=version,
        )
        payload = {
            "sub": str(subject),
            "typ": kind.value,
            "jti": claims.jti,
            "ver": claims.version,
            "iat": int(claims.issued_at.timestamp()),
            "exp": int(claims.expires_at.timestamp()),
        }
        token = jwt.encode(payload, self._secret_key, algorithm=_ALGORITHM)
        return IssuedToken(token=token, claims=claims)

    def decode(self, token: str, kind: TokenKind | None = None) -> TokenClaims:
        """Verify and decode a token. Raises InvalidTokenError on any failure.

        If kind is given, a token of the other kind is rejected too: an
        access token can never be exchanged for a new pair, and a refresh
        token can never open a protected resource.
        """
        try:
            payload = jwt.decode(
                token,
                self._secret_key,
                algorithms=[_ALGORITHM],
                options={"verify_exp": False},
            )
        except JWTError as exc:
            raise InvalidTokenError() from exc

        if any(name not in payload for name in _REQUIRED_CLAIMS):
            raise InvalidTokenError()
        try:
            claims = TokenClaims(
                subject=int(payload["sub"]),
                kind=TokenKind(payload["typ"]),
                jti=str(payload["jti"]),
                issued_at=datetime.fromtimestamp(int(payload["iat"]), tz=timezone.utc),
                expires_at=datetime.fromtimestamp(int(payload["exp"]), tz=timezone.utc),
                version=int(payload["ver"]),
            )
        except (TypeError, ValueError, OverflowError, OSError) as exc:
            raise InvalidTokenError() from exc

        if kind is not None and claims.kind is not kind:
            raise InvalidTokenError()
        if claims.expires_at <= self._clock():
            raise InvalidTokenError()
        return claims
