"""
auth/passwords.py -- Credential Hasher (bcrypt, direct usage, no passlib wrapper).

Using bcrypt directly rather than passlib[bcrypt] because passlib's internal
wrap-bug detection creates a password longer than 72 bytes, which bcrypt 4.x
rejects with an explicit error.

bcrypt only looks at the first 72 bytes of its input. Longer passwords are
refused outright: hash() raises ValueError and verify() reports a mismatch,
so two passwords that share a 72-byte prefix can never both match one hash.
Callers check password_too_long() first and reject the input as bad request
data.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import bcrypt

MAX_PASSWORD_BYTES = 72


def password_too_long(plain: str) -> bool:
    """True if bcrypt would ignore part of this password."""
    return len(plain.encode("utf-8")) > MAX_PASSWORD_BYTES


def _encode(plain: str) -> bytes:
    raw = plain.encode("utf-8")
    if len(raw) > MAX_PASSWORD_BYTES:
        raise ValueError(f"Password exceeds {MAX_PASSWORD_BYTES} bytes.")
    return raw


class PasswordHasher:
    """Salted one-way password hashing with a configurable cost factor.

    Usage:
        hasher = PasswordHasher(rounds=settings.bcrypt_rounds)
        stored = hasher.hash("secret")
        hasher.verify("secret", stored)   # True
    """

    def __init__(self, rounds: int = 12) -> None:
        self.rounds = rounds
        # verify_dummy() costs exactly one bcrypt verify, the first call included.
        self._dummy_hash = self.hash(f"timing-dummy-{id(self)}")

    def hash(self, plain: str) -> str:
        """Return a bcrypt hash of the plaintext. Every call uses a fresh salt.

        Raises ValueError if the password is longer than 72 UTF-8 bytes.
        """
        return bcrypt.hashpw(_encode(plain), bcrypt.gensalt(rounds=self.rounds)).decode("utf-8")

    def verify(self, plain: str, hashed: str) -> bool:
        """Return True if the plaintext matches the hash.

        bcrypt.checkpw compares in constant time. A corrupt or foreign hash
        string, or an over-long password, is a mismatch, never an error.
        """
        try:
            return bcrypt.checkpw(_encode(plain), hashed.encode("utf-8"))
        except ValueError:
            return False

    def verify_dummy(self, plain: str) -> bool:
        """Burn one bcrypt verification against a throwaway hash.

        Login calls this when the email is unknown so the response takes as
        long as a wrong-password check and does not reveal whether the email
        is registered. Always returns False.
        """
        self.verify(plain, self._dummy_hash)
        return False
