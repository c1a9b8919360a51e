"""
auth/passwords.py -- Argon2id password hashing.

Security design decisions:
  Argon2id via argon2-cffi's PasswordHasher. It is memory-hard, salted, and
  writes its parameters into the PHC string it returns:

      $argon2id$v=19$m=65536,t=3,p=2$<salt>$<hash>

  verify() reads the parameters back from that string, so raising the cost
  later does not break logins for users with older hashes. needs_rehash()
  tells the login flow when a stored hash is below the current parameters.

  The digest comparison inside argon2 is constant-time.

  Failures are split into MalformedHashError (the stored string is not a
  valid encoded hash) and PasswordMismatchError. Both subclass
  CredentialError. Callers outside auth/ must collapse them into one generic
  authentication failure -- the split exists for logs only.

  The dummy hash is computed once per hasher so a lookup for an unknown
  email still pays the full verification cost.

Layer rule: no imports from api/, tenancy/, audit/, or mailer/.
"""

from __future__ import annotations

import logging

from argon2 import PasswordHasher, Type
from argon2.exceptions import InvalidHash, VerificationError, VerifyMismatchError

logger = logging.getLogger("tenantiam.auth.passwords")

SALT_LENGTH = 16
HASH_LENGTH = 32


class CredentialError(Exception):
    """Base class for password verification failures."""


class MalformedHashError(CredentialError):
    pass


class PasswordMismatchError(CredentialError):
    pass


class CredentialHasher:
    """Hash and verify passwords with Argon2id.

    Usage:
        hasher = CredentialHasher()
        encoded = hasher.hash("s3cret!")
        hasher.verify(encoded, "s3cret!")   # returns None, raises on failure
    """

    def __init__(self, time_cost: int = 3, memory_cost: int = 64 * 1024, parallelism: int = 2) -> None:
        self._hasher = PasswordHasher(
            time_cost=time_cost,
            memory_cost=memory_cost,
            parallelism=parallelism,
            hash_len=HASH_LENGTH,
            salt_len=SALT_LENGTH,
            type=Type.ID,
        )
        self._dummy_hash = self._hasher.hash("tenantiam_timing_dummy")

    def hash(self, plaintext: str) -> str:
        """Return the encoded Argon2id hash for plaintext (fresh random salt each call)."""
        return self._hasher.hash(plaintext)

    def verify(self, encoded: str, plaintext: str) -> None:
        """Raise CredentialError unless plaintext matches encoded."""
        try:
            self._hasher.verify(encoded, plaintext)
        except VerifyMismatchError as exc:
            raise PasswordMismatchError("password does not match") from exc
        except InvalidHash as exc:
            raise MalformedHashError("stored hash is not a valid argon2 string") from exc
        except VerificationError as exc:
            # Well-formed string whose parameters or digest do not check out.
            raise MalformedHashError(str(exc)) from exc

    def verify_dummy(self, plaintext: str) -> None:
        """Burn one verification's worth of work; used when the user does not exist."""
        try:
            self._hasher.verify(self._dummy_hash, plaintext)
        except VerificationError:
            pass

    def needs_rehash(self, encoded: str) -> bool:
        try:
            return self._hasher.check_needs_rehash(encoded)
        except InvalidHash:
            return False
