"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

Bearer tokens only: the access token travels in an
Authorization: Bearer <token> header. There are no auth cookies.

Failures are raised as AuthError subclasses, not HTTPException. The app's
AuthError handler renders them, so a route and AuthService report the same
failure in the same shape.

Layer rule: no imports from api/.
  auth/dependencies.py may import from fastapi (for Request) because this
  module is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

from fastapi import Request

from auth.exceptions import InvalidToken
from auth.models import PublicUser
from auth.service import AuthService


def get_auth_service(request: Request) -> AuthService:
    """Return the AuthService wired into app.state during lifespan startup."""
    return request.app.state.auth_service


def bearer_token(request: Request) -> str:
    """Extract the token from the Authorization header.

    Raises InvalidToken if the header is absent or not a Bearer credential.
    """
    scheme, _, token = request.headers.get("Authorization", "").partition(" ")
    token = token.strip()
    if scheme.lower() != "bearer" or not token:
        raise InvalidToken("Access token required.")
    return token


def get_current_user(request: Request) -> PublicUser:
    """Require a valid access token. Raises InvalidToken / UserNotFound otherwise.

    Use as a FastAPI dependency:
        @router.get("/protected")
        async def route(user: PublicUser = Depends(get_current_user)): ...
    """
    return get_auth_service(request).me(bearer_token(request))
