"""
auth/service.py -- AuthService: register / login / refresh / logout / me.

This is the state machine of the system. A refresh-token lineage moves
  issued -> valid -> rotated (old token dead)
                  | expired (lazily reaped)
                  | logged out (dead)
and nothing ever brings a dead token back.

Contract with the gateway:
  Every operation either returns its success value or raises exactly one
  AuthError subclass. Collaborator errors (TokenError, DuplicateEmail) are
  translated here; anything unexpected from storage or bcrypt becomes
  InternalError and is logged with its traceback. Nothing else escapes.

  Request shape validation happens in the gateway's pydantic models before a
  call reaches this class. The token guard in _require_token() is the
  remaining shape check for callers that bypass the gateway.

Security:
  [C1] login() runs bcrypt exactly once whether or not the email exists, and
       both failure cases raise the same InvalidCredentials.
  [R1] refresh() rotates: the presented refresh token is consumed and a new
       pair is issued. SessionStore.rotate() makes the consume atomic so a
       replayed token loses even when it races the legitimate caller.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager

from sqlalchemy.engine import Engine

from auth.exceptions import (
    AuthError,
    DuplicateEmail,
    InternalError,
    InvalidCredentials,
    InvalidSession,
    InvalidToken,
    TokenError,
    UserExists,
    UserNotFound,
    ValidationFailed,
)
from auth.models import AuthResult, PublicUser, User
from auth.passwords import MAX_PASSWORD_BYTES, PasswordHasher, password_too_long
from auth.store import SessionStore, UserStore
from auth.tokens import TokenService
from core.config import Settings

logger = logging.getLogger("gtdauth.auth")

# Upper bound on accepted token strings; real tokens are a few hundred bytes.
MAX_TOKEN_LENGTH = 4096


class AuthService:
    """Orchestrates the hasher, token service, and both stores.

    Usage:
        service = build_auth_service(settings, engine)
        result = service.register("alice@mail.com", "pw123")
        user = service.me(result.access_token)
    """

    def __init__(
        self,
        users: UserStore,
        sessions: SessionStore,
        hasher: PasswordHasher,
        tokens: TokenService,
    ) -> None:
        self.users = users
        self.sessions = sessions
        self.hasher = hasher
        self.tokens = tokens

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def register(self, email: str, password: str, name: str | None = None) -> AuthResult:
        """Create a user and open their first session.

        Raises UserExists if the email is already registered.
        """
        if not email or not password:
            raise ValidationFailed("Email and password are required.")
        _check_password_length(password)
        with self._guard("register"):
            if self.users.get_by_email(email) is not None:
                raise UserExists()
            hashed = self.hasher.hash(password)
            try:
                user = self.users.create_user(email, hashed, name)
            except DuplicateEmail as exc:
                raise UserExists() from exc
            result = self._open_session(user)
        logger.info("Registered user_id=%s", user.id)
        return result

    def login(self, email: str, password: str) -> AuthResult:
        """Verify credentials and open a new session.

        Unknown email and wrong password raise the same InvalidCredentials [C1].
        """
        if not email or not password:
            raise ValidationFailed("Email and password are required.")
        _check_password_length(password)
        with self._guard("login"):
            user = self.users.get_by_email(email)
            if user is None:
                # Equalize timing -- do NOT return before running bcrypt [C1]
                self.hasher.verify_dummy(password)
                raise InvalidCredentials()
            if not self.hasher.verify(password, user.hashed_password):
                raise InvalidCredentials()
            result = self._open_session(user)
        logger.info("Login user_id=%s", user.id)
        return result

    def refresh(self, refresh_token: str) -> AuthResult:
        """Exchange a live refresh token for a brand-new pair [R1].

        Raises:
            InvalidToken:   token fails verification or is not a refresh token.
            InvalidSession: no live session (rotated, logged out, or expired).
            UserNotFound:   the token's user no longer exists.
        """
        token = _require_token(refresh_token)
        with self._guard("refresh"):
            try:
                payload = self.tokens.verify(token, "refresh")
            except TokenError as exc:
                raise InvalidToken() from exc
            if not self.sessions.is_valid(token):
                raise InvalidSession()
            user = self.users.get_by_id(payload.user_id)
            if user is None:
                raise UserNotFound()
            pair = self.tokens.issue_pair(user.id, user.email)
            if not self.sessions.rotate(token, user.id, pair.refresh_token, pair.refresh_expires_at):
                # Lost the race to a concurrent rotation or logout.
                raise InvalidSession()
        logger.info("Rotated session user_id=%s", user.id)
        return AuthResult(user=to_public(user), access_token=pair.access_token, refresh_token=pair.refresh_token)

    def logout(self, refresh_token: str) -> None:
        """Delete the session for this refresh token. Idempotent.

        The token is not verified: logging out with an expired or unknown
        token still succeeds. Only a structurally unusable value is rejected.
        """
        token = _require_token(refresh_token, error=ValidationFailed)
        with self._guard("logout"):
            removed = self.sessions.delete(token)
        logger.info("Logout removed=%d", removed)

    def me(self, access_token: str) -> PublicUser:
        """Resolve an access token to the user it was issued for."""
        token = _require_token(access_token)
        with self._guard("me"):
            try:
                payload = self.tokens.verify(token, "access")
            except TokenError as exc:
                raise InvalidToken() from exc
            user = self.users.get_by_id(payload.user_id)
            if user is None:
                raise UserNotFound()
        return to_public(user)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _open_session(self, user: User) -> AuthResult:
        pair = self.tokens.issue_pair(user.id, user.email)
        self.sessions.create(user.id, pair.refresh_token, pair.refresh_expires_at)
        return AuthResult(user=to_public(user), access_token=pair.access_token, refresh_token=pair.refresh_token)

    @contextmanager
    def _guard(self, operation: str) -> Iterator[None]:
        """Let AuthError through; turn anything else into a logged InternalError."""
        try:
            yield
        except AuthError:
            raise
        except Exception as exc:
            logger.exception("Auth operation %r failed", operation)
            raise InternalError() from exc


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def to_public(user: User) -> PublicUser:
    """Strip the password hash. The only way a User leaves the auth core."""
    return PublicUser(id=user.id, email=user.email, name=user.name, created_at=user.created_at or "")


def _require_token(token: object, error: type[AuthError] = InvalidToken) -> str:
    if not isinstance(token, str) or not token.strip() or len(token) > MAX_TOKEN_LENGTH:
        raise error()
    return token


def _check_password_length(password: str) -> None:
    if password_too_long(password):
        raise ValidationFailed(f"Password must be at most {MAX_PASSWORD_BYTES} bytes.")


def build_auth_service(settings: Settings, engine: Engine) -> AuthService:
    """Wire an AuthService from explicit configuration and a storage engine."""
    return AuthService(
        users=UserStore(engine),
        sessions=SessionStore(engine),
        hasher=PasswordHasher(rounds=settings.bcrypt_rounds),
        tokens=TokenService(settings),
    )
