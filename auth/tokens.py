"""
auth/tokens.py -- Token Issuer/Verifier (JWT via python-jose, HS256).

Security design decisions:
  Key separation [K1]: access tokens are signed with JWT_SECRET, refresh
       tokens with JWT_REFRESH_SECRET. verify() picks the key from the kind
       the caller expects, so a token of the other class fails signature
       verification before its claims are even read.

  Type claim: every token also carries type="access"|"refresh". verify()
       checks it against the expected kind as a second, independent guard.

  jti: each token carries a random nonce. Two logins by the same user within
       the same second would otherwise produce byte-identical refresh tokens
       and collide on the sessions.token UNIQUE index.

  Failure classes: verify() raises TokenMalformed, TokenInvalidSignature,
       TokenExpired, or TokenWrongType. AuthService collapses all of them to a
       single InvalidToken so clients never learn which check failed.

The Settings instance is passed in explicitly. This module never reads the
environment.

Layer rule: no imports from api/. Import from core/ is allowed.
"""

from __future__ import annotations

import secrets
from collections.abc import Callable
from datetime import datetime, timedelta, timezone

from jose import ExpiredSignatureError, JWTError, jwt
from jose.exceptions import JWTClaimsError

from auth.exceptions import TokenExpired, TokenInvalidSignature, TokenMalformed, TokenWrongType
from auth.models import TokenKind, TokenPair, TokenPayload
from core.config import Settings

_ALGORITHM = "HS256"
_KINDS = ("access", "refresh")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TokenService:
    """Issues and verifies access and refresh tokens.

    Usage:
        tokens = TokenService(get_settings())
        pair = tokens.issue_pair(user.id, user.email)
        payload = tokens.verify(pair.access_token, "access")

    clock is injectable so tests can mint tokens that are already expired.
    """

    def __init__(self, settings: Settings, clock: Callable[[], datetime] = _utcnow) -> None:
        self._keys = {
            "access": settings.jwt_secret,
            "refresh": settings.jwt_refresh_secret,
        }
        self._ttl = {
            "access": timedelta(seconds=settings.access_token_expire_seconds),
            "refresh": timedelta(seconds=settings.refresh_token_expire_seconds),
        }
        self._clock = clock

    # ------------------------------------------------------------------
    # Issue
    # ------------------------------------------------------------------

    def issue_access(self, user_id: int, email: str) -> str:
        """Sign an access token (default lifetime 15 minutes)."""
        token, _ = self._encode(user_id, email, "access", self._clock())
        return token

    def issue_refresh(self, user_id: int, email: str) -> str:
        """Sign a refresh token (default lifetime 7 days) with the refresh key."""
        token, _ = self._encode(user_id, email, "refresh", self._clock())
        return token

    def issue_pair(self, user_id: int, email: str) -> TokenPair:
        """Sign an access + refresh pair from a single clock reading.

        refresh_expires_at is the refresh token's exp claim, so the session
        row can mirror it exactly.
        """
        now = self._clock()
        access, _ = self._encode(user_id, email, "access", now)
        refresh, refresh_exp = self._encode(user_id, email, "refresh", now)
        return TokenPair(access_token=access, refresh_token=refresh, refresh_expires_at=refresh_exp)

    def _encode(self, user_id: int, email: str, kind: TokenKind, now: datetime) -> tuple[str, datetime]:
        # JWT NumericDate has one-second resolution; truncate so the returned
        # expiry equals the one encoded in the token.
        expire = (now + self._ttl[kind]).replace(microsecond=0)
        payload = {
            "userId": user_id,
            "email": email,
            "type": kind,
            "iat": now,
            "exp": expire,
            "jti": secrets.token_urlsafe(16),
        }
        return jwt.encode(payload, self._keys[kind], algorithm=_ALGORITHM), expire

    # ------------------------------------------------------------------
    # Verify
    # ------------------------------------------------------------------

    def verify(self, token: str, kind: TokenKind) -> TokenPayload:
        """Validate signature, expiry, and type claim against the expected kind.

        Raises:
            TokenMalformed:        not a decodable JWT, or required claims missing.
            TokenInvalidSignature: tampered, or signed with another key.
            TokenExpired:          exp claim is in the past.
            TokenWrongType:        type claim does not match kind.
        """
        if kind not in _KINDS:
            raise ValueError(f"Unknown token kind: {kind!r}")
        try:
            jwt.get_unverified_claims(token)
        except JWTError as exc:
            raise TokenMalformed(str(exc)) from exc

        try:
            claims = jwt.decode(token, self._keys[kind], algorithms=[_ALGORITHM])
        except ExpiredSignatureError as exc:
            raise TokenExpired(str(exc)) from exc
        except JWTClaimsError as exc:
            raise TokenMalformed(str(exc)) from exc
        except JWTError as exc:
            raise TokenInvalidSignature(str(exc)) from exc

        user_id = claims.get("userId")
        email = claims.get("email")
        token_type = claims.get("type")
        exp = claims.get("exp")
        if not isinstance(user_id, int) or isinstance(user_id, bool):
            raise TokenMalformed("userId claim missing or not an integer")
        if not isinstance(email, str) or not isinstance(exp, (int, float)):
            raise TokenMalformed("email or exp claim missing")
        if token_type != kind:
            raise TokenWrongType(f"expected {kind} token")

        return TokenPayload(
            user_id=user_id,
            email=email,
            type=token_type,
            expires_at=datetime.fromtimestamp(exp, timezone.utc),
        )
