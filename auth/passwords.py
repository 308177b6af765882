"""
auth/passwords.py -- Password hashing and verification.

bcrypt is used directly (no passlib wrapper): passlib's wrap-bug detection
builds a password longer than 72 bytes, which bcrypt 4.x rejects outright.

Every hash carries its own salt and cost, so verify() works for hashes made
at any cost factor, including ones created before BCRYPT_ROUNDS changed.

No password policy lives here. hash() only refuses input bcrypt cannot take
whole: more than 72 bytes once UTF-8 encoded.
"""

from __future__ import annotations

import bcrypt

from core.config import Settings
from core.errors import InvalidInputError

# bcrypt reads at most this many bytes of the password.
MAX_PASSWORD_BYTES = 72


class CredentialStore:
    """Hash and verify passwords with bcrypt at a configurable cost.

    The dummy hash backs timing equalization in AuthService.authenticate():
    when the username does not exist, the service still runs one bcrypt check
    against it so response time does not reveal which usernames are taken.
    """

    def __init__(self, rounds: int = 12) -> None:
        self.rounds = rounds
        self.dummy_hash = self.hash("securecms_timing_dummy")

    @classmethod
    def from_settings(cls, settings: Settings) -> CredentialStore:
        return cls(rounds=settings.bcrypt_rounds)

    def hash(self, password: str) -> str:
        """Return a bcrypt hash of password. Equal inputs give different hashes.

        Raises InvalidInputError when the encoded password exceeds 72 bytes.
        """
        encoded = password.encode("utf-8")
        if len(encoded) > MAX_PASSWORD_BYTES:
            raise InvalidInputError(f"Password must be at most {MAX_PASSWORD_BYTES} bytes when UTF-8 encoded")
        return bcrypt.hashpw(encoded, bcrypt.gensalt(rounds=self.rounds)).decode("utf-8")

    def verify(self, password: str, password_hash: str | None) -> bool:
        """Return True if password matches password_hash.

        Returns False, never raises, for a missing or malformed stored hash.
        """
        if not password_hash:
            return False
        try:
            return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
        except ValueError:
            return False

    def burn(self, password: str) -> None:
        """Run one verification against the dummy hash and discard the result."""
        self.verify(password, self.dummy_hash)
