"""
auth/passwords.py -- bcrypt password hashing.

Passwords: bcrypt used directly, no passlib wrapper. passlib's wrap-bug
detection builds a >72-byte probe password that bcrypt 4.x rejects, so the
wrapper adds a compatibility shim and nothing else. Cost factor comes from
Settings.bcrypt_rounds (12 by default, roughly 200-300ms per hash on a laptop
core, tens of ms on server hardware).

bcrypt.checkpw compares the recomputed digest in constant time, so the
position of the first mismatching byte does not leak through response time.

The sync functions are pure. The *_async wrappers push the CPU-bound work onto
the Starlette thread pool so a slow hash never stalls the event loop, and bound
it with Settings.hash_timeout_seconds. A timeout surfaces as InternalFailure.

Layer rule: no imports from api/. Import from core/ is allowed.
"""

from __future__ import annotations

import logging

import bcrypt

from auth.concurrency import run_bounded
from auth.errors import InternalFailure
from core.config import get_settings

logger = logging.getLogger("tourbook.auth")

_settings = get_settings()

# bcrypt only looks at the first 72 bytes of its input.
MAX_PASSWORD_BYTES = 72


def hash_password(plain: str, rounds: int | None = None) -> str:
    """Return a salted bcrypt hash of the given plaintext password.

    Raises ValueError for an empty password. Any other bcrypt failure
    propagates -- a failed hash is fatal to the calling operation.
    """
    if not plain:
        raise ValueError("Password must not be empty.")
    salt = bcrypt.gensalt(rounds=rounds or _settings.bcrypt_rounds)
    return bcrypt.hashpw(plain.encode("utf-8"), salt).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash.

    Never raises for a wrong password or a malformed stored hash.
    """
    if not plain or not hashed:
        return False
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        logger.warning("Stored password hash is malformed; treating as mismatch")
        return False


# Verified against when the login email is unknown, so an unknown account
# costs the same bcrypt work as a wrong password.
_DUMMY_HASH: str = hash_password("tourbook_timing_dummy")


def verify_dummy(plain: str) -> bool:
    """Burn one bcrypt verification. Always returns False."""
    verify_password(plain, _DUMMY_HASH)
    return False


async def hash_password_async(plain: str) -> str:
    try:
        return await run_bounded(hash_password, plain, timeout=_settings.hash_timeout_seconds)
    except ValueError as exc:
        raise InternalFailure() from exc


async def verify_password_async(plain: str, hashed: str | None) -> bool:
    """Verify off the event loop. A missing hash runs the dummy check instead."""
    if hashed is None:
        return await run_bounded(verify_dummy, plain, timeout=_settings.hash_timeout_seconds)
    return await run_bounded(verify_password, plain, hashed, timeout=_settings.hash_timeout_seconds)
