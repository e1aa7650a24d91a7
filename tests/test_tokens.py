"""Unit tests for auth/tokens.py -- TokenCodec issue/decode.

Covers:
- Issued claims carry subject, kind, a fresh jti and a TTL-based expiry
- Expiry is judged by the injected clock, with exp == now counting as expired
- Kind mismatch, tampering, foreign keys and garbage all raise InvalidTokenError
- Tokens missing a required claim are rejected
- The token version given at issue comes back on decode
"""

from datetime import timedelta

import pytest
from jose import jwt

from auth.errors import InvalidTokenError
from auth.models import TokenKind
from auth.tokens import TokenCodec

OTHER_SECRET = "another-secret-key-that-is-at-least-32-chars"


class TestIssue:
    def test_claims_match_request(self, codec: TokenCodec, clock) -> None:
        issued = codec.issue(42, TokenKind.access)
        assert issued.claims.subject == 42
        assert issued.claims.kind is TokenKind.access
        assert issued.claims.expires_at - issued.claims.issued_at == timedelta(seconds=900)
        assert len(issued.claims.jti) == 32

    def test_refresh_uses_refresh_ttl(self, codec: TokenCodec) -> None:
        issued = codec.issue(7, TokenKind.refresh)
        assert issued.claims.expires_at - issued.claims.issued_at == timedelta(days=7)

    def test_every_token_gets_a_fresh_jti(self, codec: TokenCodec) -> None:
        jtis = {codec.issue(1, TokenKind.access).claims.jti for _ in range(50)}
        assert len(jtis) == 50

    def test_subject_is_encoded_as_string(self, codec: TokenCodec) -> None:
        """RFC 7519 requires sub to be a string."""
        token = codec.issue(42, TokenKind.access).token
        assert jwt.get_unverified_claims(token)["sub"] == "42"


class TestDecode:
    def test_round_trip_returns_issued_claims(self, codec: TokenCodec) -> None:
        issued = codec.issue(42, TokenKind.refresh)
        assert codec.decode(issued.token, TokenKind.refresh) == issued.claims

    def test_version_round_trips(self, codec: TokenCodec) -> None:
        issued = codec.issue(42, TokenKind.access, version=3)
        assert codec.decode(issued.token).version == 3

    def test_decode_without_kind_accepts_either(self, codec: TokenCodec) -> None:
        token = codec.issue(3, TokenKind.refresh).token
        assert codec.decode(token).kind is TokenKind.refresh

    def test_wrong_kind_rejected(self, codec: TokenCodec) -> None:
        token = codec.issue(42, TokenKind.refresh).token
        with pytest.raises(InvalidTokenError):
            codec.decode(token, TokenKind.access)

    def test_valid_until_just_before_expiry(self, codec: TokenCodec, clock) -> None:
        token = codec.issue(42, TokenKind.access).token
        clock.advance(899)
        assert codec.decode(token, TokenKind.access).subject == 42

    def test_expired_at_exact_expiry(self, codec: TokenCodec, clock) -> None:
        """A token whose exp equals now is already expired."""
        token = codec.issue(42, TokenKind.access).token
        clock.advance(900)
        with pytest.raises(InvalidTokenError):
            codec.decode(token, TokenKind.access)

    def test_signed_with_other_key_rejected(self, codec: TokenCodec, clock) -> None:
        foreign = TokenCodec(OTHER_SECRET, access_ttl=900, refresh_ttl=900, clock=clock)
        token = foreign.issue(42, TokenKind.access).token
        with pytest.raises(InvalidTokenError):
            codec.decode(token)

    def test_tampered_payload_rejected(self, codec: TokenCodec) -> None:
        header, _payload, signature = codec.issue(42, TokenKind.access).token.split(".")
        forged = codec.issue(1, TokenKind.access).token.split(".")[1]
        with pytest.raises(InvalidTokenError):
            codec.decode(f"{header}.{forged}.{signature}")

    @pytest.mark.parametrize("garbage", ["", "not-a-jwt", "a.b.c", "Bearer xyz"])
    def test_garbage_rejected(self, codec: TokenCodec, garbage: str) -> None:
        with pytest.raises(InvalidTokenError):
            codec.decode(garbage)

    @pytest.mark.parametrize("missing", ["sub", "typ", "jti", "ver", "iat", "exp"])
    def test_missing_claim_rejected(self, codec: TokenCodec, clock, secret_key: str, missing: str) -> None:
        now = int(clock().timestamp())
        claims = {"sub": "42", "typ": "access", "jti": "ab" * 16, "ver": 0, "iat": now, "exp": now + 900}
        del claims[missing]
        token = jwt.encode(claims, secret_key, algorithm="HS256")
        with pytest.raises(InvalidTokenError):
            codec.decode(token)

    def test_unknown_kind_rejected(self, codec: TokenCodec, clock, secret_key: str) -> None:
        now = int(clock().timestamp())
        claims = {"sub": "42", "typ": "session", "jti": "ab" * 16, "ver": 0, "iat": now, "exp": now + 900}
        token = jwt.encode(claims, secret_key, algorithm="HS256")
        with pytest.raises(InvalidTokenError):
            codec.decode(token)

    def test_non_numeric_subject_rejected(self, codec: TokenCodec, clock, secret_key: str) -> None:
        now = int(clock().timestamp())
        claims = {"sub": "admin", "typ": "access", "jti": "ab" * 16, "ver": 0, "iat": now, "exp": now + 900}
        token = jwt.encode(claims, secret_key, algorithm="HS256")
        with pytest.raises(InvalidTokenError):
            codec.decode(token)
