"""
auth/store.py -- SQLAlchemy Core persistence layer for user accounts.

Pattern: Repository + Data Mapper. UserStore is the repository; _row_to_user is
the mapper. Service and route code never touches SQL directly.

Soft delete:
  Every query the authentication flow uses is built from _active_users(), which
  applies `active = 1`. There is no way to reach an inactive row through those
  methods, so "deactivated accounts do not exist" holds structurally rather
  than by each caller remembering a filter. The only methods that bypass it
  are get_any_by_id() and reactivate_user(), the explicit admin / reactivation
  path.

Reset tokens:
  password_reset_token and password_reset_expires are only ever written or
  cleared together in a single UPDATE (set_reset_token, clear_reset_token,
  consume_reset_token), so one can never be present without the other.
  consume_reset_token is a compare-and-set on the digest: two concurrent
  consumers of the same secret race on one UPDATE and only one sees rowcount 1.

Security:
  All queries use bound parameters. No f-strings in SQL.

Timestamps are stored as fixed-width UTC ISO-8601 strings, so string
comparison in SQL orders them correctly.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import uuid
from dataclasses import replace
from datetime import datetime, timezone

from sqlalchemy import Column, Index, Integer, MetaData, String, Table, Text, create_engine, event, func, select
from sqlalchemy.engine import Engine

from auth.models import Role, User
from core.config import get_settings

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", String(32), primary_key=True),
    Column("name", String(100), nullable=False),
    Column("email", String(255), nullable=False, unique=True),
    Column("hashed_password", Text, nullable=False),
    Column("role", String(20), nullable=False, server_default=Role.USER.value),
    Column("photo", String(255), nullable=False, server_default="default.jpg"),
    Column("password_changed_at", String(32)),
    Column("password_reset_token", String(64)),  # SHA-256 hex of the reset secret
    Column("password_reset_expires", String(32)),
    Column("active", Integer, nullable=False, server_default="1"),
    Column("created_at", String(32), nullable=False),
)

Index("ix_users_password_reset_token", _users.c.password_reset_token)

# Fields update_user() accepts. Reset-token fields are deliberately absent --
# they have their own paired setters below.
_UPDATABLE_FIELDS = frozenset({"name", "email", "hashed_password", "role", "photo", "password_changed_at", "active"})


# ---------------------------------------------------------------------------
# WAL mode
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode so readers do not block on the login writes."""
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _to_iso(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%f+00:00")


def _from_iso(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


def _now_iso() -> str:
    return _to_iso(datetime.now(timezone.utc))


def normalize_email(email: str) -> str:
    return email.strip().lower()


def _active_users():
    return _users.select().where(_users.c.active == 1)


def _column_values(fields: dict) -> dict:
    """Convert domain values to their column representation.

    Raises ValueError for unknown fields or a role outside Role.
    """
    unknown = set(fields) - _UPDATABLE_FIELDS
    if unknown:
        raise ValueError(f"Unknown user fields: {sorted(unknown)!r}")
    values = dict(fields)
    if "role" in values:
        values["role"] = Role(values["role"]).value
    if "email" in values:
        values["email"] = normalize_email(values["email"])
    if "active" in values:
        values["active"] = 1 if values["active"] else 0
    if "password_changed_at" in values and values["password_changed_at"] is not None:
        values["password_changed_at"] = _to_iso(values["password_changed_at"])
    if "hashed_password" in values and not values["hashed_password"]:
        raise ValueError("hashed_password must not be empty")
    return values


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for User entities.

    Usage:
        store = UserStore("sqlite:///:memory:")
        user = store.create_user(User(name="Ada", email="ada@example.com", hashed_password=hash_password("s3cretpass")))
        same = store.get_by_email("ADA@example.com")
        store.close()
    """

    def __init__(self, db_url: str | None = None) -> None:
        db_url = db_url or get_settings().database_url
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        _metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Active-only lookups (authentication flow)
    # ------------------------------------------------------------------

    def create_user(self, user: User) -> User:
        """Insert a new user and return it with its assigned id and created_at.

        Raises ValueError for a role outside Role or an empty password hash.
        Raises sqlalchemy.exc.IntegrityError if the email already exists,
        including when it belongs to a deactivated account.
        """
        if not user.hashed_password:
            raise ValueError("hashed_password must not be empty")
        role = Role(user.role)
        user_id = uuid.uuid4().hex
        created_at = _now_iso()
        with self.engine.connect() as conn:
            conn.execute(
                _users.insert().values(
                    id=user_id,
                    name=user.name,
                    email=normalize_email(user.email),
                    hashed_password=user.hashed_password,
                    role=role.value,
                    photo=user.photo,
                    active=1 if user.active else 0,
                    created_at=created_at,
                )
            )
            conn.commit()
        return replace(
            user,
            id=user_id,
            email=normalize_email(user.email),
            role=role,
            password_changed_at=None,
            password_reset_token=None,
            password_reset_expires=None,
            created_at=_from_iso(created_at),
        )

    def get_by_id(self, user_id: str) -> User | None:
        """Look up an active user by id. Returns None if absent or inactive."""
        with self.engine.connect() as conn:
            row = conn.execute(_active_users().where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_email(self, email: str) -> User | None:
        """Look up an active user by email (case-insensitive)."""
        with self.engine.connect() as conn:
            row = conn.execute(_active_users().where(_users.c.email == normalize_email(email))).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_reset_token(self, token_hash: str, now: datetime) -> User | None:
        """Find the active user holding this reset digest with an unexpired window."""
        with self.engine.connect() as conn:
            row = conn.execute(
                _active_users().where(
                    (_users.c.password_reset_token == token_hash) & (_users.c.password_reset_expires > _to_iso(now))
                )
            ).fetchone()
        return _row_to_user(row) if row is not None else None

    def list_users(self) -> list[User]:
        """Return all active users ordered by email. Admin-only operation."""
        with self.engine.connect() as conn:
            rows = conn.execute(_active_users().order_by(_users.c.email)).fetchall()
        return [_row_to_user(r) for r in rows]

    def update_user(self, user_id: str, **fields) -> bool:
        """Update mutable fields on an active user.

        Accepted fields: name, email, hashed_password, role, photo,
        password_changed_at, active. Passing active=False is the soft delete.

        Returns True if a row was updated, False if the user was not found or
        is inactive. Raises ValueError for unknown fields or an invalid role.
        """
        values = _column_values(fields)
        if not values:
            return False
        with self.engine.connect() as conn:
            result = conn.execute(
                _users.update().where((_users.c.id == user_id) & (_users.c.active == 1)).values(**values)
            )
            conn.commit()
        return result.rowcount > 0

    def count_active_admins(self) -> int:
        """Used by the admin PATCH route to refuse demoting or deactivating the last admin."""
        with self.engine.connect() as conn:
            result = conn.execute(
                select(func.count())
                .select_from(_users)
                .where((_users.c.role == Role.ADMIN.value) & (_users.c.active == 1))
            ).scalar()
        return result or 0

    # ------------------------------------------------------------------
    # Reset-token fields (always written as a pair)
    # ------------------------------------------------------------------

    def set_reset_token(self, user_id: str, token_hash: str, expires_at: datetime) -> bool:
        with self.engine.connect() as conn:
            result = conn.execute(
                _users.update()
                .where((_users.c.id == user_id) & (_users.c.active == 1))
                .values(password_reset_token=token_hash, password_reset_expires=_to_iso(expires_at))
            )
            conn.commit()
        return result.rowcount > 0

    def clear_reset_token(self, user_id: str, token_hash: str) -> bool:
        """Clear the pending reset only if it is still the one identified by token_hash.

        A newer reset request that overwrote the digest is left untouched.
        """
        with self.engine.connect() as conn:
            result = conn.execute(
                _users.update()
                .where((_users.c.id == user_id) & (_users.c.password_reset_token == token_hash))
                .values(password_reset_token=None, password_reset_expires=None)
            )
            conn.commit()
        return result.rowcount > 0

    def consume_reset_token(
        self,
        user_id: str,
        token_hash: str,
        now: datetime,
        hashed_password: str,
        password_changed_at: datetime,
    ) -> bool:
        """Swap in the new password and clear the reset pair in one compare-and-set.

        Succeeds only if the row is active, still holds token_hash, and the
        window has not closed at `now`. Returns False otherwise.
        """
        if not hashed_password:
            raise ValueError("hashed_password must not be empty")
        with self.engine.connect() as conn:
            result = conn.execute(
                _users.update()
                .where(
                    (_users.c.id == user_id)
                    & (_users.c.active == 1)
                    & (_users.c.password_reset_token == token_hash)
                    & (_users.c.password_reset_expires > _to_iso(now))
                )
                .values(
                    hashed_password=hashed_password,
                    password_changed_at=_to_iso(password_changed_at),
                    password_reset_token=None,
                    password_reset_expires=None,
                )
            )
            conn.commit()
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Explicit inactive-aware path (admin / reactivation only)
    # ------------------------------------------------------------------

    def get_any_by_id(self, user_id: str) -> User | None:
        """Look up a user by id regardless of the active flag."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def reactivate_user(self, user_id: str) -> bool:
        """Set active=1 on a soft-deleted account. Returns False if the id is unknown."""
        with self.engine.connect() as conn:
            result = conn.execute(_users.update().where(_users.c.id == user_id).values(active=1))
            conn.commit()
        return result.rowcount > 0

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mapper (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        name=row.name,
        email=row.email,
        hashed_password=row.hashed_password,
        role=Role(row.role),
        photo=row.photo,
        password_changed_at=_from_iso(row.password_changed_at),
        password_reset_token=row.password_reset_token,
        password_reset_expires=_from_iso(row.password_reset_expires),
        active=bool(row.active),
        created_at=_from_iso(row.created_at),
    )
