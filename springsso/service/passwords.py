"""Local credential hashing.

Stored form is ``hex(derived_key) + "." + hex(salt)``: a 64-byte Argon2id key
derived from the plaintext and a 16-byte random salt. Accounts created through
SSO store an unusable marker instead, which never verifies.
"""

from __future__ import annotations

import hmac
import os
import secrets

from argon2.low_level import Type, hash_secret_raw

SALT_BYTES = 16
KEY_BYTES = 64
UNUSABLE_PASSWORD_PREFIX = "!"


class InvalidStoredFormat(ValueError):
    """The stored password value is not a ``<hex key>.<hex salt>`` pair."""


def make_unusable_password() -> str:
    """Marker stored for SSO-only accounts; local login is disabled for them."""
    return f"{UNUSABLE_PASSWORD_PREFIX}scalekit:{secrets.token_hex(8)}"


def is_password_usable(stored: str) -> bool:
    return bool(stored) and not stored.startswith(UNUSABLE_PASSWORD_PREFIX)


class PasswordHasher:
    def __init__(
        self,
        *,
        time_cost: int = 3,
        memory_cost: int = 64 * 1024,
        parallelism: int = 4,
    ) -> None:
        self.time_cost = time_cost
        self.memory_cost = memory_cost
        self.parallelism = parallelism
        # Random key and salt that no plaintext derives to
        self._dummy_stored = f"{os.urandom(KEY_BYTES).hex()}.{os.urandom(SALT_BYTES).hex()}"

    def _derive(self, plaintext: str, salt: bytes) -> bytes:
        return hash_secret_raw(
            secret=plaintext.encode("utf-8"),
            salt=salt,
            time_cost=self.time_cost,
            memory_cost=self.memory_cost,
            parallelism=self.parallelism,
            hash_len=KEY_BYTES,
            type=Type.ID,
        )

    def hash(self, plaintext: str) -> str:
        salt = os.urandom(SALT_BYTES)
        return f"{self._derive(plaintext, salt).hex()}.{salt.hex()}"

    def verify_dummy(self, plaintext: str) -> bool:
        """Spend one derivation and fail, so a rejected login costs the same
        whether or not the account exists or has a usable password.
        """
        self.verify(plaintext, self._dummy_stored)
        return False

    def verify(self, plaintext: str, stored: str) -> bool:
        if stored and not is_password_usable(stored):
            return self.verify_dummy(plaintext)
        parts = (stored or "").split(".")
        if len(parts) != 2 or not all(parts):
            raise InvalidStoredFormat("stored password must be '<key>.<salt>'")
        try:
            expected = bytes.fromhex(parts[0])
            salt = bytes.fromhex(parts[1])
        except ValueError as exc:
            raise InvalidStoredFormat("stored password is not hex encoded") from exc
        # SECURITY: constant-time comparison, no early exit on mismatch
        return hmac.compare_digest(self._derive(plaintext, salt), expected)
