"""
auth/revocation.py -- Token revocation registry (a jti blacklist).

A token is revoked by inserting its jti. The jti is the primary key, which
gives two properties for free:
  - is_revoked() is a single index lookup.
  - revoke() is idempotent and race-safe: concurrent inserts of the same jti
    resolve to exactly one winner. revoke() reports whether this call was the
    one that revoked the token, which is what makes refresh tokens single-use
    under concurrency.

Entries only matter until the token would have expired anyway, because
TokenCodec rejects expired tokens on its own. purge_expired() deletes
entries past their expires_at; the API lifespan calls it periodically. Not
purging is harmless apart from table growth.

expires_at is stored as epoch seconds (REAL) so the purge is a single
numeric comparison.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone

from sqlalchemy import Column, Float, Integer, MetaData, String, Table, func, select
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import IntegrityError, OperationalError

from auth.errors import StorageError
from auth.models import RevocationEntry, TokenClaims, TokenKind
from auth.store import make_engine
from core.clock import Clock, utc_now
from core.config import get_settings

logger = logging.getLogger("authgate.revocation")

_metadata = MetaData()

_revoked = Table(
    "revoked_tokens",
    _metadata,
    Column("jti", String(64), primary_key=True),
    Column("subject", Integer, nullable=False),
    Column("kind", String(10), nullable=False),
    Column("expires_at", Float, nullable=False, index=True),
    Column("revoked_at", String(32), nullable=False),
)


class RevocationRegistry:
    """Durable set of revoked token identifiers.

    Usage:
        registry = RevocationRegistry()
        registry.revoke_claims(claims)
        registry.is_revoked(claims.jti)  # True
    """

    def __init__(self, db_url: str | None = None, clock: Clock = utc_now) -> None:
        self.engine: Engine = make_engine(db_url or get_settings().database_url)
        self._clock = clock
        with self._begin() as conn:
            _metadata.create_all(conn)

    @contextmanager
    def _begin(self) -> Iterator[Connection]:
        try:
            with self.engine.begin() as conn:
                yield conn
        except OperationalError as exc:
            logger.error("Revocation registry unavailable: %s", exc.orig)
            raise StorageError("Revocation registry is unavailable.") from exc

    def revoke(self, jti: str, subject: int, kind: TokenKind, expires_at: datetime) -> bool:
        """Mark jti as revoked. Returns True if newly revoked, False if it already was."""
        try:
            with self._begin() as conn:
                conn.execute(
                    _revoked.insert().values(
                        jti=jti,
                        subject=subject,
                        kind=kind.value,
                        expires_at=expires_at.timestamp(),
                        revoked_at=self._clock().isoformat(),
                    )
                )
        except IntegrityError:
            return False
        return True

    def revoke_claims(self, claims: TokenClaims) -> bool:
        return self.revoke(claims.jti, claims.subject, claims.kind, claims.expires_at)

    def is_revoked(self, jti: str) -> bool:
        with self._begin() as conn:
            row = conn.execute(select(_revoked.c.jti).where(_revoked.c.jti == jti)).fetchone()
        return row is not None

    def get(self, jti: str) -> RevocationEntry | None:
        with self._begin() as conn:
            row = conn.execute(_revoked.select().where(_revoked.c.jti == jti)).fetchone()
        if row is None:
            return None
        return RevocationEntry(
            jti=row.jti,
            subject=row.subject,
            kind=TokenKind(row.kind),
            expires_at=datetime.fromtimestamp(row.expires_at, tz=timezone.utc),
        )

    def count(self) -> int:
        with self._begin() as conn:
            return conn.execute(select(func.count()).select_from(_revoked)).scalar() or 0

    def purge_expired(self) -> int:
        """Delete entries whose token has expired. Returns number of rows removed."""
        cutoff = self._clock().timestamp()
        with self._begin() as conn:
            result = conn.execute(_revoked.delete().where(_revoked.c.expires_at <= cutoff))
        if result.rowcount:
            logger.info("Purged %d expired revocation entries", result.rowcount)
        return result.rowcount

    def close(self) -> None:
        self.engine.dispose()
