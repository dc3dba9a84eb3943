"""
auth/exceptions.py -- Error taxonomy for the authentication core.

Two families:

  AuthError subclasses are the only failures AuthService lets escape. Each
  carries a machine-readable code, a client-safe message, and the HTTP status
  the gateway should answer with. The gateway renders them verbatim, so a
  message must never reveal which factor of a check failed.

  TokenError subclasses come from TokenService.verify() and DuplicateEmail
  from UserStore.create_user(). They are internal detail -- AuthService
  converts them to InvalidToken and UserExists respectively.

Layer rule: no imports from api/.
"""

from __future__ import annotations


class AuthError(Exception):
    """Base class for failures returned by AuthService operations."""

    code: str = "auth_error"
    status_code: int = 401
    default_message: str = "Authentication failed."

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)

    def to_dict(self) -> dict[str, str]:
        return {"code": self.code, "message": self.message}


class UserExists(AuthError):
    code = "user_exists"
    status_code = 409
    default_message = "User already exists."


class InvalidCredentials(AuthError):
    """Login failure. Unknown email and wrong password are deliberately identical."""

    code = "invalid_credentials"
    default_message = "Invalid credentials."


class InvalidToken(AuthError):
    """Malformed, expired, wrongly signed, or wrong-type token."""

    code = "invalid_token"
    default_message = "Invalid or expired token."


class InvalidSession(AuthError):
    """Refresh token verifies but has no live session (rotated, logged out, or expired)."""

    code = "invalid_session"
    default_message = "Invalid session."


class UserNotFound(AuthError):
    code = "user_not_found"
    default_message = "User not found."


class ValidationFailed(AuthError):
    code = "validation_error"
    status_code = 400
    default_message = "Request validation failed."


class InternalError(AuthError):
    code = "internal_error"
    status_code = 500
    default_message = "An unexpected error occurred."


# ---------------------------------------------------------------------------
# Collaborator-level errors
# ---------------------------------------------------------------------------


class DuplicateEmail(Exception):
    """Raised by UserStore.create_user() when the email is already registered."""


class TokenError(Exception):
    """Base class for TokenService.verify() failures."""


class TokenMalformed(TokenError):
    """Token cannot be decoded or lacks required claims."""


class TokenInvalidSignature(TokenError):
    """Signature does not match the key for the requested token kind."""


class TokenExpired(TokenError):
    """Signature is valid but the exp claim is in the past."""


class TokenWrongType(TokenError):
    """Token is valid but its type claim is not the kind the caller expected."""
