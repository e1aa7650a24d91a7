"""
auth/engine.py -- The authentication engine.

AuthEngine orchestrates the leaf components:

    request -> RateLimiter gate
            -> UserStore lookup + bcrypt verify + LockoutPolicy
            -> TokenCodec issues an access/refresh pair
    protected request -> TokenCodec decode -> RevocationRegistry check

The engine itself holds no mutable state. Concurrency safety is delegated to
the store (unique indexes, transactional lockout transitions), the registry
(primary-key idempotent revoke) and the rate limiter (per-key locks).

Security properties worth preserving when editing this module:
  - Unknown identity and wrong password raise the same InvalidCredentialsError,
    and both run bcrypt, so neither the error nor the timing leaks which
    accounts exist.
  - A locked account is rejected before the password is checked, and the
    failed-attempt counter is not incremented while the lock holds.
  - A correct password never clears a lock set by concurrent failures while
    bcrypt ran: the reset goes through the same atomic transition as a
    failure and re-checks the lock.
  - Tokens carry the account's token_version. A password change bumps it,
    which ends every session issued before the change.
  - The rate-limit gate runs before any store or lockout access, so a
    throttled caller cannot move an account toward lockout.
  - Refresh tokens are single use. The revoke itself is the arbiter: if two
    callers race with the same refresh token, exactly one gets a new pair.
  - No operation retries. Retrying a failed login would defeat the lockout.
"""

from __future__ import annotations

import logging
import re
from datetime import date, timedelta
from typing import Optional

from auth.errors import (
    AccountLockedError,
    ConflictError,
    InvalidCredentialsError,
    InvalidTokenError,
    MissingTokenError,
    RateLimitedError,
    RevokedTokenError,
    ValidationError,
    Violation,
)
from auth.lockout import Locked, LockoutPolicy, LockoutState
from auth.models import (
    AuthResult,
    Gender,
    Registration,
    TokenClaims,
    TokenKind,
    TokenPair,
    User,
    UserProfile,
    UserStatus,
)
from auth.passwords import DUMMY_HASH, check_password_strength, hash_password, verify_password
from auth.ratelimit import RateLimiter, RateLimitRule, Rejected
from auth.revocation import RevocationRegistry
from auth.store import UserStore
from auth.tokens import TokenCodec
from core.clock import Clock, utc_now
from core.config import Settings

logger = logging.getLogger("authgate.engine")

# ---------------------------------------------------------------------------
# Input rules
# ---------------------------------------------------------------------------

USERNAME_PATTERN = re.compile(r"^[A-Za-z0-9_]{3,50}$")
EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
PHONE_PATTERN = re.compile(r"^\+?[1-9]\d{6,14}$")

_PROFILE_LIMITS = {"nickname": 50, "avatar": 500, "bio": 500}
_EDITABLE_PROFILE_FIELDS = frozenset({"nickname", "avatar", "gender", "birthday", "bio"})

# Route classes understood by the rate limiter.
ROUTE_LOGIN = "login"
ROUTE_REGISTER = "register"
ROUTE_REFRESH = "refresh"


def _normalize_email(value: str) -> str:
    return value.strip().lower()


def validate_registration(data: Registration, password_min_length: int) -> list[Violation]:
    """Return every rule the registration input breaks (empty list = valid)."""
    violations: list[Violation] = []
    if len(data.username) < 3:
        violations.append(Violation("username", "must be at least 3 characters"))
    elif not USERNAME_PATTERN.match(data.username):
        violations.append(Violation("username", "must be at most 50 letters, digits or underscores"))
    if len(data.email) > 255 or not EMAIL_PATTERN.match(data.email):
        violations.append(Violation("email", "must be a valid email address"))
    for issue in check_password_strength(data.password, password_min_length):
        violations.append(Violation("password", issue))
    if data.phone is not None and not PHONE_PATTERN.match(data.phone):
        violations.append(Violation("phone", "must be a valid phone number"))
    if data.nickname is not None and len(data.nickname) > _PROFILE_LIMITS["nickname"]:
        violations.append(Violation("nickname", "must be at most 50 characters"))
    return violations


def _to_profile(user: User) -> UserProfile:
    return UserProfile(
        id=user.id,
        username=user.username,
        email=user.email,
        phone=user.phone,
        nickname=user.nickname,
        avatar=user.avatar,
        gender=user.gender,
        birthday=user.birthday,
        bio=user.bio,
        status=user.status,
        email_verified=user.email_verified,
        phone_verified=user.phone_verified,
        last_login_at=user.last_login_at,
        created_at=user.created_at,
    )


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


class AuthEngine:
    """Registration, login, token validation, refresh and logout.

    Build one per process with AuthEngine.from_settings() and share it; every
    method is safe to call concurrently.
    """

    def __init__(
        self,
        store: UserStore,
        registry: RevocationRegistry,
        codec: TokenCodec,
        lockout: LockoutPolicy,
        limiter: RateLimiter,
        identity_fields: tuple[str, ...] | list[str] = ("email",),
        password_min_length: int = 8,
        clock: Clock = utc_now,
    ) -> None:
        self.store = store
        self.registry = registry
        self.codec = codec
        self.lockout = lockout
        self.limiter = limiter
        self.password_min_length = password_min_length
        self._clock = clock
        lookups = {
            "email": lambda value: store.get_by_email(_normalize_email(value)),
            "username": lambda value: store.get_by_username(value.strip()),
            "phone": lambda value: store.get_by_phone(value.strip()),
        }
        unknown = set(identity_fields) - set(lookups)
        if unknown:
            raise ValueError(f"Unknown login identity fields: {unknown!r}")
        self._lookups = [lookups[name] for name in identity_fields]

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        store: UserStore,
        registry: RevocationRegistry,
        clock: Clock = utc_now,
    ) -> "AuthEngine":
        """Wire an engine from configuration around existing store and registry."""
        return cls(
            store=store,
            registry=registry,
            codec=TokenCodec(
                settings.secret_key,
                access_ttl=settings.access_token_expire_seconds,
                refresh_ttl=settings.refresh_token_expire_seconds,
                clock=clock,
            ),
            lockout=LockoutPolicy(
                threshold=settings.lockout_threshold,
                duration=timedelta(seconds=settings.lockout_duration_seconds),
            ),
            limiter=RateLimiter(
                {
                    ROUTE_LOGIN: RateLimitRule.parse(settings.login_rate_limit),
                    ROUTE_REGISTER: RateLimitRule.parse(settings.register_rate_limit),
                    ROUTE_REFRESH: RateLimitRule.parse(settings.refresh_rate_limit),
                },
                clock=clock,
            ),
            identity_fields=settings.login_identity_fields,
            password_min_length=settings.password_min_length,
            clock=clock,
        )

    # ------------------------------------------------------------------
    # Registration and login
    # ------------------------------------------------------------------

    def register(self, data: Registration, client: str = "unknown") -> AuthResult:
        """Create an account and sign it in.

        Raises RateLimitedError, ValidationError or ConflictError(field).
        """
        self._gate(client, ROUTE_REGISTER)
        data = Registration(
            username=data.username.strip(),
            email=_normalize_email(data.email),
            password=data.password,
            phone=data.phone.strip() if data.phone else None,
            nickname=data.nickname.strip() if data.nickname else None,
        )
        violations = validate_registration(data, self.password_min_length)
        if violations:
            raise ValidationError(violations)

        if self.store.get_by_email(data.email) is not None:
            raise ConflictError("email")
        if self.store.get_by_username(data.username) is not None:
            raise ConflictError("username")
        if data.phone and self.store.get_by_phone(data.phone) is not None:
            raise ConflictError("phone")

        user_id = self.store.create_user(
            User(
                username=data.username,
                email=data.email,
                phone=data.phone,
                nickname=data.nickname or data.username,
                hashed_password=hash_password(data.password),
                status=UserStatus.active,
            )
        )
        user = self.store.get_by_id(user_id)
        logger.info("Registered user %d (%s) from %s", user_id, data.username, client)
        return AuthResult(user=_to_profile(user), tokens=self._issue_pair(user))

    def login(self, identity: str, password: str, client: str = "unknown") -> AuthResult:
        """Verify credentials and issue a fresh token pair.

        Raises RateLimitedError, InvalidCredentialsError or AccountLockedError.
        """
        self._gate(client, ROUTE_LOGIN)
        user = self._find_account(identity)
        if user is None:
            # Equalize timing -- do NOT return before running bcrypt.
            verify_password(password, DUMMY_HASH)
            logger.info("Login failed for unknown identity from %s", client)
            raise InvalidCredentialsError()

        now = self._clock()
        status = self.lockout.evaluate(LockoutState(user.failed_attempts, user.locked_until), now)
        if isinstance(status, Locked):
            logger.info("Login refused for locked user %d from %s", user.id, client)
            raise AccountLockedError(status.until)

        if not verify_password(password, user.hashed_password):
            self._record_failure(user, client)

        if user.status is not UserStatus.active:
            logger.info("Login refused for disabled user %d from %s", user.id, client)
            raise InvalidCredentialsError()

        self._record_success(user, client)
        self.store.update_login_state(user.id, last_login_at=now, last_login_ip=client)
        logger.info("User %d logged in from %s", user.id, client)
        user = self.store.get_by_id(user.id) or user
        return AuthResult(user=_to_profile(user), tokens=self._issue_pair(user))

    def _record_success(self, user: User, client: str) -> None:
        """Reset the lockout state unless a concurrent failure locked the account meanwhile."""
        now = self._clock()

        def transition(state: LockoutState) -> LockoutState:
            if isinstance(self.lockout.evaluate(state, now), Locked):
                return state
            return self.lockout.record_success()

        new_state = self.store.transition_lockout(user.id, transition)
        if new_state is None:
            raise InvalidCredentialsError()
        status = self.lockout.evaluate(new_state, now)
        if isinstance(status, Locked):
            logger.warning("Login refused for user %d from %s: locked while verifying", user.id, client)
            raise AccountLockedError(status.until)

    def _record_failure(self, user: User, client: str) -> None:
        """Persist a failed password check and raise the matching error. Never returns."""
        now = self._clock()

        def transition(state: LockoutState) -> LockoutState:
            # A concurrent failure may have locked the account since we read it.
            if isinstance(self.lockout.evaluate(state, now), Locked):
                return state
            return self.lockout.record_failure(state, now)

        new_state = self.store.transition_lockout(user.id, transition)
        if new_state is None:
            raise InvalidCredentialsError()
        status = self.lockout.evaluate(new_state, now)
        if isinstance(status, Locked):
            logger.warning(
                "User %d locked until %s after %d failed attempts (last from %s)",
                user.id,
                status.until.isoformat(),
                new_state.failed_attempts,
                client,
            )
            raise AccountLockedError(status.until)
        logger.info("Login failed for user %d from %s (%d attempts)", user.id, client, new_state.failed_attempts)
        raise InvalidCredentialsError()

    def _find_account(self, identity: str) -> Optional[User]:
        if not identity or not identity.strip():
            return None
        for lookup in self._lookups:
            user = lookup(identity)
            if user is not None:
                return user
        return None

    # ------------------------------------------------------------------
    # Token validation
    # ------------------------------------------------------------------

    def authenticate(self, access_token: str | None) -> int:
        """Validate an access token and return its subject (user id).

        Raises MissingTokenError, InvalidTokenError or RevokedTokenError.
        """
        claims, _user = self._session(access_token)
        return claims.subject

    def _session(self, access_token: str | None) -> tuple[TokenClaims, User]:
        """Validate an access token and load the live account it belongs to."""
        if access_token is None or not access_token.strip():
            raise MissingTokenError()
        claims = self.codec.decode(access_token.strip(), TokenKind.access)
        if self.registry.is_revoked(claims.jti):
            raise RevokedTokenError()
        return claims, self._live_user(claims)

    def _live_user(self, claims: TokenClaims) -> User:
        """Load the token's subject. A gone or disabled account invalidates the token,
        and so does a version older than the account's token_version.
        """
        user = self.store.get_by_id(claims.subject)
        if user is None or user.status is not UserStatus.active:
            raise InvalidTokenError()
        if claims.version < user.token_version:
            logger.info("Rejected %s token of user %d issued before a password change", claims.kind.value, user.id)
            raise InvalidTokenError()
        return user

    # ------------------------------------------------------------------
    # Profile
    # ------------------------------------------------------------------

    def profile(self, access_token: str | None) -> UserProfile:
        _claims, user = self._session(access_token)
        return _to_profile(user)

    def update_profile(self, access_token: str | None, changes: dict) -> UserProfile:
        """Apply profile edits (nickname, avatar, gender, birthday, bio).

        None values clear optional fields; gender falls back to "unknown".
        """
        claims, user = self._session(access_token)
        violations: list[Violation] = []
        clean: dict = {}
        if not changes:
            violations.append(Violation("profile", "no fields to update"))
        for name, value in changes.items():
            if name not in _EDITABLE_PROFILE_FIELDS:
                violations.append(Violation(name, "is not editable"))
            elif name == "gender":
                try:
                    clean[name] = Gender(value) if value is not None else Gender.unknown
                except ValueError:
                    violations.append(Violation(name, "must be one of unknown, male, female"))
            elif name == "birthday":
                if value is None:
                    clean[name] = None
                    continue
                try:
                    born = date.fromisoformat(value)
                except (TypeError, ValueError):
                    violations.append(Violation(name, "must be an ISO date (YYYY-MM-DD)"))
                    continue
                if born > self._clock().date():
                    violations.append(Violation(name, "must not be in the future"))
                else:
                    clean[name] = born.isoformat()
            else:
                if value is not None and len(value) > _PROFILE_LIMITS[name]:
                    violations.append(Violation(name, f"must be at most {_PROFILE_LIMITS[name]} characters"))
                else:
                    clean[name] = value
        if violations:
            raise ValidationError(violations)

        self.store.update_profile(user.id, **clean)
        logger.info("User %d updated profile fields %s", user.id, sorted(clean))
        return _to_profile(self._live_user(claims))

    def change_password(self, access_token: str | None, current_password: str, new_password: str) -> None:
        """Replace the password after re-verifying the current one.

        Every token issued before the change stops working, the presented one
        included; the caller signs in again with the new password.
        """
        _claims, user = self._session(access_token)
        if not verify_password(current_password, user.hashed_password):
            raise InvalidCredentialsError()
        violations = [Violation("new_password", issue) for issue in check_password_strength(new_password, self.password_min_length)]
        if new_password == current_password:
            violations.append(Violation("new_password", "must differ from the current password"))
        if violations:
            raise ValidationError(violations)
        self.store.update_password(user.id, hash_password(new_password))
        logger.info("User %d changed password", user.id)

    def deactivate(self, access_token: str | None, password: str) -> None:
        """Soft-delete the caller's account and revoke the presented access token.

        Other tokens of the account fail from then on because their subject
        is gone.
        """
        claims, user = self._session(access_token)
        if not verify_password(password, user.hashed_password):
            raise InvalidCredentialsError()
        self.store.soft_delete(user.id)
        self.registry.revoke_claims(claims)
        logger.info("User %d deactivated their account", user.id)

    # ------------------------------------------------------------------
    # Refresh and logout
    # ------------------------------------------------------------------

    def refresh(self, refresh_token: str | None, client: str = "unknown") -> TokenPair:
        """Exchange a refresh token for a new pair. The presented token is spent.

        Every failure (missing, malformed, expired, wrong kind, revoked,
        already used, account gone, password changed since issue) raises
        InvalidTokenError.
        """
        self._gate(client, ROUTE_REFRESH)
        if refresh_token is None or not refresh_token.strip():
            raise InvalidTokenError()
        claims = self.codec.decode(refresh_token.strip(), TokenKind.refresh)
        if self.registry.is_revoked(claims.jti):
            logger.warning("Replay of spent refresh token for user %d from %s", claims.subject, client)
            raise InvalidTokenError()
        user = self._live_user(claims)
        if not self.registry.revoke_claims(claims):
            # Lost the race to a concurrent refresh of the same token.
            raise InvalidTokenError()
        logger.info("Refreshed tokens for user %d", claims.subject)
        return self._issue_pair(user)

    def logout(self, access_token: str | None, refresh_token: str | None = None) -> None:
        """Revoke the access token and, if usable, the accompanying refresh token.

        Raises only for the access token (MissingTokenError, InvalidTokenError,
        RevokedTokenError). A bad refresh token never fails the logout.
        """
        claims, _user = self._session(access_token)
        self.registry.revoke_claims(claims)
        if refresh_token:
            try:
                refresh_claims = self.codec.decode(refresh_token.strip(), TokenKind.refresh)
            except InvalidTokenError:
                logger.info("Ignoring unusable refresh token on logout for user %d", claims.subject)
            else:
                if refresh_claims.subject == claims.subject:
                    self.registry.revoke_claims(refresh_claims)
                else:
                    logger.warning("Ignoring refresh token of user %d on logout for user %d",
                                   refresh_claims.subject, claims.subject)
        logger.info("User %d logged out", claims.subject)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _gate(self, client: str, route: str) -> None:
        decision = self.limiter.admit(client, route)
        if isinstance(decision, Rejected):
            logger.warning("Rate limit hit on %s by %s (retry after %ds)", route, client, decision.retry_after)
            raise RateLimitedError(decision.retry_after)

    def _issue_pair(self, user: User) -> TokenPair:
        access = self.codec.issue(user.id, TokenKind.access, user.token_version)
        refresh = self.codec.issue(user.id, TokenKind.refresh, user.token_version)
        return TokenPair(
            access_token=access.token,
            refresh_token=refresh.token,
            expires_in=self.codec.ttl(TokenKind.access),
            refresh_expires_in=self.codec.ttl(TokenKind.refresh),
        )
