"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). Stores and services do
the work; these only own the shape.

Roles are a closed Enum rather than free strings. Every membership check in the
codebase goes through Role, so a typo such as "lead_guide" fails loudly at
definition time instead of silently never matching.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum


class Role(str, Enum):
    USER = "user"
    GUIDE = "guide"
    LEAD_GUIDE = "lead-guide"
    ADMIN = "admin"


@dataclass
class User:
    """A tour-booking account.

    hashed_password is a bcrypt hash and must never leave the process. The API
    layer maps User to UserResponse, which has no password field at all.

    password_reset_token holds the SHA-256 digest of the outstanding reset
    secret, never the secret itself. It is set together with
    password_reset_expires and cleared together with it.

    active=False is a soft delete. The store hides such accounts from every
    lookup the authentication flow uses.
    """

    name: str
    email: str
    hashed_password: str
    role: Role = Role.USER
    id: str | None = None
    photo: str = "default.jpg"
    password_changed_at: datetime | None = None
    password_reset_token: str | None = None  # SHA-256 hex of the reset secret
    password_reset_expires: datetime | None = None
    active: bool = True
    created_at: datetime | None = None


@dataclass(frozen=True)
class TokenClaims:
    """The verified contents of a session token."""

    subject_id: str
    issued_at: int  # seconds since the epoch, as carried by the iat claim
