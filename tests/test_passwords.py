"""
tests/test_passwords.py -- Unit tests for auth/passwords.py (Argon2id hasher).

Covers:
  - hash() produces a PHC string carrying its own parameters
  - verify() accepts the right password and raises on the wrong one
  - malformed stored strings raise MalformedHashError, not a mismatch
  - hashes made with older parameters still verify and report needs_rehash
"""

from __future__ import annotations

import pytest

from auth.passwords import CredentialError, CredentialHasher, MalformedHashError, PasswordMismatchError


def test_hash_is_argon2id_phc_string(hasher):
    encoded = hasher.hash("s3cret-pass")
    assert encoded.startswith("$argon2id$v=19$")
    assert "m=8,t=1,p=1" in encoded


def test_same_password_hashes_differently(hasher):
    assert hasher.hash("same") != hasher.hash("same")


def test_verify_accepts_correct_password(hasher):
    encoded = hasher.hash("s3cret-pass")
    assert hasher.verify(encoded, "s3cret-pass") is None


def test_verify_rejects_wrong_password(hasher):
    encoded = hasher.hash("s3cret-pass")
    with pytest.raises(PasswordMismatchError):
        hasher.verify(encoded, "wrong")


@pytest.mark.parametrize("encoded", ["", "plaintext", "$argon2id$garbage", "$2b$12$abcdefghijklmnopqrstuv"])
def test_verify_malformed_hash(hasher, encoded):
    with pytest.raises(MalformedHashError):
        hasher.verify(encoded, "whatever")


def test_failures_share_a_base_class():
    assert issubclass(MalformedHashError, CredentialError)
    assert issubclass(PasswordMismatchError, CredentialError)


def test_old_parameters_still_verify_and_need_rehash(hasher):
    stronger = CredentialHasher(time_cost=2, memory_cost=16, parallelism=1)
    old = hasher.hash("carry-over")
    stronger.verify(old, "carry-over")
    assert stronger.needs_rehash(old) is True
    assert stronger.needs_rehash(stronger.hash("carry-over")) is False


def test_needs_rehash_is_false_for_garbage(hasher):
    assert hasher.needs_rehash("not-a-hash") is False


def test_verify_dummy_never_raises(hasher):
    hasher.verify_dummy("anything")
