"""Unit tests for auth/passwords.py -- bcrypt hashing and the async wrappers.

Covers:
- hash is salted, never the plaintext, and verifies only the original password
- verify never raises for wrong passwords, empty input, or malformed hashes
- async wrappers run off the event loop and map timeouts to InternalFailure
"""

import asyncio
import time

import pytest

from auth import passwords
from auth.errors import InternalFailure
from auth.passwords import hash_password, verify_password, verify_password_async


class TestHashPassword:
    def test_hash_is_not_plaintext(self) -> None:
        hashed = hash_password("secret123")
        assert hashed != "secret123"
        assert hashed.startswith("$2")

    def test_same_password_hashes_differently(self) -> None:
        """Random salt -- two hashes of one password differ but both verify."""
        a = hash_password("secret123")
        b = hash_password("secret123")
        assert a != b
        assert verify_password("secret123", a)
        assert verify_password("secret123", b)

    def test_empty_password_rejected(self) -> None:
        with pytest.raises(ValueError):
            hash_password("")

    def test_rounds_override(self) -> None:
        hashed = hash_password("secret123", rounds=5)
        assert hashed.split("$")[2] == "05"


class TestVerifyPassword:
    @pytest.mark.parametrize("candidate", ["secret124", "Secret123", "secret12", "secret1234", " secret123"])
    def test_other_passwords_fail(self, candidate: str) -> None:
        hashed = hash_password("secret123")
        assert verify_password(candidate, hashed) is False

    def test_empty_inputs_return_false(self) -> None:
        hashed = hash_password("secret123")
        assert verify_password("", hashed) is False
        assert verify_password("secret123", "") is False

    def test_malformed_hash_returns_false(self) -> None:
        assert verify_password("secret123", "not-a-bcrypt-hash") is False


class TestAsyncWrappers:
    def test_verify_async_matches_sync(self) -> None:
        hashed = hash_password("secret123")
        assert asyncio.run(verify_password_async("secret123", hashed)) is True
        assert asyncio.run(verify_password_async("wrong-pass", hashed)) is False

    def test_verify_async_without_hash_runs_dummy(self) -> None:
        """Unknown accounts still pay for one bcrypt check and always fail."""
        assert asyncio.run(verify_password_async("secret123", None)) is False

    def test_hash_timeout_raises_internal_failure(self, monkeypatch: pytest.MonkeyPatch) -> None:
        def slow_hash(plain: str) -> str:
            time.sleep(0.3)
            return "never"

        monkeypatch.setattr(passwords, "hash_password", slow_hash)
        monkeypatch.setattr(passwords._settings, "hash_timeout_seconds", 0.05)
        with pytest.raises(InternalFailure):
            asyncio.run(passwords.hash_password_async("secret123"))
