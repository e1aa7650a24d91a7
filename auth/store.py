"""
auth/store.py -- SQLAlchemy Core persistence layer for the user directory.

Pattern: Repository + Data Mapper. UserStore is the repository; _row_to_user
is the mapper. The engine and routes never touch SQL directly.

Lookups are a closed set of named methods (get_by_email, get_by_username,
get_by_phone, ...) rather than an open "find by arbitrary column" helper, so
the store's contract stays statically checkable.

Security:
  All queries use bound parameters. No f-strings in SQL.

Uniqueness:
  username, email and phone are unique among non-deleted rows only. That is
  expressed as partial unique indexes (WHERE deleted_at IS NULL), supported
  by both SQLite and PostgreSQL, so a soft-deleted account releases its
  identifiers and concurrent registrations are arbitrated by the database.
  A losing insert surfaces as ConflictError naming the contested field.

  UNIQUE(external_provider, external_subject) is enforced in code rather
  than SQL because SQLite treats two NULL values as distinct in UNIQUE
  constraints. link_external_identity() performs the check.

Atomicity:
  transition_lockout() runs read-modify-write of the lockout fields inside
  one transaction, and its first statement is a write (stamping updated_at)
  so the row/database write lock is held before the read. Two concurrent
  failed logins therefore cannot both read the same failed_attempts value.

  update_password() and soft_delete() increment token_version in SQL
  (token_version + 1), so concurrent writers never lose a bump.

Timestamps are stored as ISO 8601 UTC strings and mapped back to aware
datetimes.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from datetime import datetime
from typing import Optional

from sqlalchemy import Boolean, Column, Index, Integer, MetaData, String, Table, Text, create_engine, event, select
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import IntegrityError, OperationalError

from auth.errors import ConflictError, StorageError
from auth.lockout import LockoutState
from auth.models import Gender, User, UserStatus
from core.clock import Clock, utc_now
from core.config import get_settings

logger = logging.getLogger("authgate.store")

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("username", String(50), nullable=False),
    Column("email", String(255), nullable=False),
    Column("phone", String(20)),
    Column("hashed_password", Text, nullable=False),
    Column("nickname", String(50)),
    Column("avatar", String(500)),
    Column("gender", String(10), nullable=False, server_default=Gender.unknown.value),
    Column("birthday", String(10)),  # ISO 8601 date
    Column("bio", String(500)),
    Column("status", String(10), nullable=False, server_default=UserStatus.active.value),
    Column("email_verified", Boolean, nullable=False, server_default="0"),
    Column("phone_verified", Boolean, nullable=False, server_default="0"),
    Column("failed_attempts", Integer, nullable=False, server_default="0"),
    Column("locked_until", String(32)),
    Column("token_version", Integer, nullable=False, server_default="0"),
    Column("last_login_at", String(32)),
    Column("last_login_ip", String(45)),
    Column("external_provider", String(30)),
    Column("external_subject", Text),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
    Column("deleted_at", String(32)),
)

_live = _users.c.deleted_at.is_(None)
_bumped_version = _users.c.token_version + 1

# Partial unique indexes: identifiers are unique among live rows only.
for _column in ("username", "email", "phone"):
    Index(
        f"ux_users_{_column}_live",
        _users.c[_column],
        unique=True,
        sqlite_where=_live,
        postgresql_where=_live,
    )

# Fields each update method is allowed to touch. Validated before any SQL
# write so column names never come from caller input.
_LOGIN_STATE_FIELDS = frozenset({"failed_attempts", "locked_until", "last_login_at", "last_login_ip"})
_PROFILE_FIELDS = frozenset({"nickname", "avatar", "gender", "birthday", "bio"})

# ---------------------------------------------------------------------------
# WAL mode
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode for concurrent read safety.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool. In-memory databases ignore it.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _to_iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _from_iso(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


def _storable(fields: dict) -> dict:
    """Convert datetimes and enums to their column representation."""
    out = {}
    for key, value in fields.items():
        if isinstance(value, datetime):
            value = value.isoformat()
        elif isinstance(value, (Gender, UserStatus)):
            value = value.value
        out[key] = value
    return out


def make_engine(db_url: str) -> Engine:
    """Create a SQLAlchemy engine with the SQLite tweaks both stores need."""
    connect_args: dict = {}
    if db_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
    engine = create_engine(db_url, connect_args=connect_args)
    if db_url.startswith("sqlite"):
        event.listen(engine, "connect", _set_wal_mode)
    return engine


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for User records.

    Usage:
        store = UserStore()
        user_id = store.create_user(User(username="ada", email="ada@example.com", hashed_password=digest))
        user = store.get_by_email("ada@example.com")
        store.close()
    """

    def __init__(self, db_url: str | None = None, clock: Clock = utc_now) -> None:
        self.engine: Engine = make_engine(db_url or get_settings().database_url)
        self._clock = clock
        with self._begin() as conn:
            _metadata.create_all(conn)

    @contextmanager
    def _connect(self) -> Iterator[Connection]:
        """Yield a connection, translating driver-level failures into StorageError."""
        try:
            with self.engine.connect() as conn:
                yield conn
        except OperationalError as exc:
            logger.error("User store unavailable: %s", exc.orig)
            raise StorageError("User store is unavailable.") from exc

    @contextmanager
    def _begin(self) -> Iterator[Connection]:
        """Like _connect(), but the block runs in one transaction (commit or rollback)."""
        try:
            with self.engine.begin() as conn:
                yield conn
        except OperationalError as exc:
            logger.error("User store unavailable: %s", exc.orig)
            raise StorageError("User store is unavailable.") from exc

    def _now_iso(self) -> str:
        return self._clock().isoformat()

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def _get_one(self, condition) -> User | None:
        with self._connect() as conn:
            row = conn.execute(_users.select().where(condition & _live)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_id(self, user_id: int) -> User | None:
        """Look up a live user by primary key. Returns None if absent or soft-deleted."""
        return self._get_one(_users.c.id == user_id)

    def get_by_email(self, email: str) -> User | None:
        """Look up a live user by exact email address."""
        return self._get_one(_users.c.email == email)

    def get_by_username(self, username: str) -> User | None:
        """Look up a live user by exact username (case-sensitive)."""
        return self._get_one(_users.c.username == username)

    def get_by_phone(self, phone: str) -> User | None:
        return self._get_one(_users.c.phone == phone)

    def get_by_external_identity(self, provider: str, subject: str) -> User | None:
        """Look up a live user by (external_provider, external_subject) pair."""
        return self._get_one((_users.c.external_provider == provider) & (_users.c.external_subject == subject))

    def ping(self) -> bool:
        """Return True if the database answers a trivial query."""
        try:
            with self._connect() as conn:
                conn.execute(select(1))
        except StorageError:
            return False
        return True

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create_user(self, user: User) -> int:
        """Insert a new user and return its assigned database ID.

        Raises ConflictError(field) if a live row already holds the username,
        email or phone. The check is the database's unique index, so two
        concurrent registrations for the same identifier cannot both succeed.
        """
        now = self._now_iso()
        try:
            with self._begin() as conn:
                result = conn.execute(
                    _users.insert().values(
                        username=user.username,
                        email=user.email,
                        phone=user.phone,
                        hashed_password=user.hashed_password,
                        nickname=user.nickname,
                        avatar=user.avatar,
                        gender=user.gender.value,
                        birthday=user.birthday,
                        bio=user.bio,
                        status=user.status.value,
                        email_verified=user.email_verified,
                        phone_verified=user.phone_verified,
                        failed_attempts=user.failed_attempts,
                        locked_until=_to_iso(user.locked_until),
                        token_version=user.token_version,
                        external_provider=user.external_provider,
                        external_subject=user.external_subject,
                        created_at=now,
                        updated_at=now,
                    )
                )
                return result.inserted_primary_key[0]
        except IntegrityError as exc:
            raise ConflictError(self._contested_field(user)) from exc

    def _contested_field(self, user: User) -> str:
        """Work out which identifier made an insert collide."""
        if self.get_by_email(user.email) is not None:
            return "email"
        if user.phone and self.get_by_phone(user.phone) is not None:
            return "phone"
        return "username"

    def update_login_state(self, user_id: int, **fields) -> bool:
        """Write login bookkeeping fields (lockout counters, last-login metadata).

        Accepted fields: failed_attempts, locked_until, last_login_at,
        last_login_ip. Returns True if a live row was updated.
        """
        unknown = set(fields) - _LOGIN_STATE_FIELDS
        if unknown:
            raise ValueError(f"Unknown login state fields: {unknown!r}")
        return self._update(user_id, _storable(fields))

    def transition_lockout(
        self, user_id: int, transition: Callable[[LockoutState], LockoutState]
    ) -> LockoutState | None:
        """Atomically apply transition to the user's lockout state and persist it.

        Returns the new state, or None if no live user has that id.
        """
        with self._begin() as conn:
            # Write first so the lock is held before the read.
            touched = conn.execute(
                _users.update().where((_users.c.id == user_id) & _live).values(updated_at=self._now_iso())
            )
            if touched.rowcount == 0:
                return None
            row = conn.execute(
                select(_users.c.failed_attempts, _users.c.locked_until).where(_users.c.id == user_id)
            ).one()
            new_state = transition(LockoutState(row.failed_attempts, _from_iso(row.locked_until)))
            conn.execute(
                _users.update()
                .where(_users.c.id == user_id)
                .values(failed_attempts=new_state.failed_attempts, locked_until=_to_iso(new_state.locked_until))
            )
        return new_state

    def unlock(self, user_id: int) -> bool:
        """Clear failed_attempts and locked_until. Admin recovery path."""
        return self._update(user_id, {"failed_attempts": 0, "locked_until": None})

    def update_profile(self, user_id: int, **fields) -> bool:
        """Update profile fields: nickname, avatar, gender, birthday, bio.

        Unknown keys raise ValueError rather than being silently ignored.
        """
        unknown = set(fields) - _PROFILE_FIELDS
        if unknown:
            raise ValueError(f"Unknown profile fields: {unknown!r}")
        if not fields:
            return False
        return self._update(user_id, _storable(fields))

    def update_password(self, user_id: int, hashed_password: str) -> bool:
        """Store a new digest and bump token_version, ending every existing session."""
        return self._update(user_id, {"hashed_password": hashed_password, "token_version": _bumped_version})

    def set_status(self, user_id: int, status: UserStatus) -> bool:
        return self._update(user_id, {"status": status.value})

    def link_external_identity(self, user_id: int, provider: str, subject: str) -> None:
        """Store a reference to the user's identity at a third-party provider.

        Raises ConflictError("external_identity") if another live user already
        holds the same (provider, subject) pair.
        """
        owner = self.get_by_external_identity(provider, subject)
        if owner is not None and owner.id != user_id:
            raise ConflictError("external_identity")
        self._update(user_id, {"external_provider": provider, "external_subject": subject})

    def soft_delete(self, user_id: int) -> bool:
        """Mark the user deleted. The row stays; lookups stop seeing it."""
        return self._update(user_id, {"deleted_at": self._now_iso(), "token_version": _bumped_version})

    def _update(self, user_id: int, values: dict) -> bool:
        values = {**values, "updated_at": self._now_iso()}
        with self._begin() as conn:
            result = conn.execute(_users.update().where((_users.c.id == user_id) & _live).values(**values))
        return result.rowcount > 0

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mapper (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        username=row.username,
        email=row.email,
        phone=row.phone,
        hashed_password=row.hashed_password,
        nickname=row.nickname,
        avatar=row.avatar,
        gender=Gender(row.gender),
        birthday=row.birthday,
        bio=row.bio,
        status=UserStatus(row.status),
        email_verified=bool(row.email_verified),
        phone_verified=bool(row.phone_verified),
        failed_attempts=row.failed_attempts,
        locked_until=_from_iso(row.locked_until),
        token_version=row.token_version,
        last_login_at=_from_iso(row.last_login_at),
        last_login_ip=row.last_login_ip,
        external_provider=row.external_provider,
        external_subject=row.external_subject,
        created_at=_from_iso(row.created_at),
        updated_at=_from_iso(row.updated_at),
        deleted_at=_from_iso(row.deleted_at),
    )
