"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). Stores and the
service do the work; these only own the shape.

Layer rule: no imports from api/.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Literal

TokenKind = Literal["access", "refresh"]


@dataclass
class User:
    """A registered identity as stored by the User Directory.

    email is unique and compared case-sensitively, exactly as stored.
    hashed_password never leaves the auth core -- callers above AuthService
    receive a PublicUser instead.
    """

    email: str
    hashed_password: str
    id: int | None = None
    name: str | None = None
    created_at: str | None = None  # ISO 8601, set by store on insert


@dataclass(frozen=True)
class PublicUser:
    """User view returned to the gateway. Carries no password material."""

    id: int
    email: str
    name: str | None
    created_at: str


@dataclass
class Session:
    """One issued refresh token bound to its owner.

    token is unique across all sessions. expires_at mirrors the refresh
    token's own exp claim.
    """

    user_id: int
    token: str
    expires_at: str  # ISO 8601 UTC
    id: int | None = None


@dataclass(frozen=True)
class TokenPayload:
    """Verified claims of an access or refresh token. Never persisted."""

    user_id: int
    email: str
    type: TokenKind
    expires_at: datetime


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    refresh_token: str
    refresh_expires_at: datetime


@dataclass(frozen=True)
class AuthResult:
    """Success value of register, login, and refresh."""

    user: PublicUser
    access_token: str
    refresh_token: str
