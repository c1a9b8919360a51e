"""
auth/otp.py -- In-memory, expiring store for one-time password reset codes.

Entries live for a fixed TTL measured from the moment they are written
(absolute, not sliding). Expired entries are ignored on read and physically
removed by purge_expired(), which api/main.py calls from a background task on
its own interval.

Nothing is persisted: a restart drops every outstanding code, which is fine
for a five-minute credential.

add() is the insert-if-absent used by the reset flow. It holds the lock across
the existence check and the write, so two concurrent requests for the same
email cannot both get a code.

Usage:
    otp = OTPStore(ttl=300)
    if otp.add("a@b.com", generate_otp()):
        ...
    otp.get("a@b.com")          # returns the code or None
    otp.delete("a@b.com")
    otp.purge_expired()         # call periodically to trim old entries
"""

from __future__ import annotations

import secrets
import threading
import time
from typing import Callable, Optional

from auth.models import normalize_email

_DEFAULT_TTL = 5 * 60  # seconds


def generate_otp(length: int = 6) -> str:
    """Return a numeric code of `length` digits drawn from the OS CSPRNG."""
    if length <= 0:
        raise ValueError("OTP length must be positive")
    return "".join(str(secrets.randbelow(10)) for _ in range(length))


class OTPStore:
    def __init__(self, ttl: int = _DEFAULT_TTL, clock: Callable[[], float] = time.monotonic) -> None:
        self.ttl = ttl
        self._clock = clock
        self._entries: dict[str, tuple[str, float]] = {}
        self._lock = threading.Lock()

    def save(self, email: str, code: str) -> None:
        """Store code for email, replacing any existing entry."""
        with self._lock:
            self._entries[normalize_email(email)] = (code, self._clock() + self.ttl)

    def add(self, email: str, code: str) -> bool:
        """Store code only if no live entry exists. Returns False when one does."""
        key = normalize_email(email)
        with self._lock:
            current = self._entries.get(key)
            if current is not None and current[1] > self._clock():
                return False
            self._entries[key] = (code, self._clock() + self.ttl)
            return True

    def get(self, email: str) -> Optional[str]:
        """Return the live code for email, or None if absent or expired."""
        key = normalize_email(email)
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            code, expires_at = entry
            if expires_at <= self._clock():
                del self._entries[key]
                return None
            return code

    def delete(self, email: str) -> None:
        with self._lock:
            self._entries.pop(normalize_email(email), None)

    def purge_expired(self) -> int:
        """Drop every expired entry. Returns number of entries removed."""
        now = self._clock()
        with self._lock:
            stale = [k for k, (_, expires_at) in self._entries.items() if expires_at <= now]
            for k in stale:
                del self._entries[k]
        return len(stale)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
