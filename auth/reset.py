"""
auth/reset.py -- One-time password-reset secrets.

Security design decisions:
  Secret: secrets.token_hex(32) -- 256 bits of entropy, handed to the user once
      through the reset email and never stored.

  Stored form: plain SHA-256 of the secret. A fast digest is fine here: unlike
      a password, the secret has enough entropy that brute-forcing the digest
      is infeasible whatever the hash speed. A deterministic digest also lets
      the store find the owner with one indexed equality lookup.

  Window: Settings.reset_token_ttl_seconds (10 minutes) from issuance. The
      expiry is checked in the lookup and again in the compare-and-set UPDATE.

  Uniform failure: consume() raises InvalidOrExpiredResetToken for a wrong
      secret, an expired secret, an already-used secret, and a lost race. The
      caller cannot tell them apart.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import hashlib
import logging
import secrets
from dataclasses import replace
from datetime import datetime, timedelta, timezone

from auth.concurrency import run_bounded
from auth.errors import InternalFailure, InvalidOrExpiredResetToken
from auth.models import User
from auth.passwords import hash_password_async
from auth.store import UserStore
from auth.tokens import password_change_timestamp
from core.config import Settings

logger = logging.getLogger("tourbook.auth")


def generate_reset_secret() -> str:
    return secrets.token_hex(32)


def hash_reset_secret(secret: str) -> str:
    return hashlib.sha256(secret.encode("utf-8")).hexdigest()


class ResetTokenManager:
    """Issues, consumes, and cancels password-reset secrets against a UserStore."""

    def __init__(self, store: UserStore, settings: Settings) -> None:
        self.store = store
        self.ttl = timedelta(seconds=settings.reset_token_ttl_seconds)
        self.timeout = settings.store_timeout_seconds

    async def issue(self, user: User, *, now: datetime | None = None) -> str:
        """Store the digest and expiry of a fresh secret on the user; return the plaintext.

        Issuing again replaces any outstanding secret for the same user.
        """
        secret = generate_reset_secret()
        expires_at = (now or datetime.now(timezone.utc)) + self.ttl
        written = await run_bounded(
            self.store.set_reset_token, user.id, hash_reset_secret(secret), expires_at, timeout=self.timeout
        )
        if not written:
            # The account was deactivated between lookup and write.
            raise InternalFailure()
        return secret

    async def cancel(self, user: User, secret: str) -> None:
        """Compensating clear after a failed delivery. Not a retry."""
        cleared = await run_bounded(
            self.store.clear_reset_token, user.id, hash_reset_secret(secret), timeout=self.timeout
        )
        if cleared:
            logger.info("Cleared undelivered password reset token for user %s", user.id)

    async def consume(self, secret: str, new_password: str, *, now: datetime | None = None) -> User:
        """Redeem a secret: set the new password and clear the reset pair.

        Returns the updated user. Raises InvalidOrExpiredResetToken on any
        mismatch, expiry, or reuse.
        """
        now = now or datetime.now(timezone.utc)
        digest = hash_reset_secret(secret)
        user = await run_bounded(self.store.get_by_reset_token, digest, now, timeout=self.timeout)
        if user is None:
            raise InvalidOrExpiredResetToken()

        hashed = await hash_password_async(new_password)
        changed_at = password_change_timestamp(now)
        swapped = await run_bounded(
            self.store.consume_reset_token, user.id, digest, now, hashed, changed_at, timeout=self.timeout
        )
        if not swapped:
            # Another request consumed or replaced the secret after our lookup.
            raise InvalidOrExpiredResetToken()

        logger.info("Password reset completed for user %s", user.id)
        return replace(
            user,
            hashed_password=hashed,
            password_changed_at=changed_at,
            password_reset_token=None,
            password_reset_expires=None,
        )
