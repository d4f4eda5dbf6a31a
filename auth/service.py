"""
auth/service.py -- Credential issuance and password lifecycle operations.

AuthService is the one object routes and the CLI talk to. It owns:
  - signup / login                 -> (User, session token)
  - authenticate(token)            -> User   (pipeline stages 2-4)
  - forgot_password / reset_password
  - update_password / update_me / deactivate
  - admin user management

Every store call and every bcrypt call goes through run_bounded(), so none of
them blocks the event loop and each is bounded by a timeout that surfaces as
InternalFailure.

Enumeration resistance [C1]:
  login() runs bcrypt whether or not the email exists (dummy hash for unknown
  accounts) and raises the same InvalidCredentials in both branches.
  forgot_password() returns normally for an unknown email; the route answers
  with the same message either way.

Layer rule: no imports from api/ or fastapi.
"""

from __future__ import annotations

import logging
import re
from typing import Callable

from sqlalchemy.exc import IntegrityError

from auth.concurrency import run_bounded
from auth.delivery import Mailer, redact_email
from auth.errors import (
    INVALID_TOKEN_MESSAGE,
    STALE_TOKEN_MESSAGE,
    DeliveryFailure,
    Forbidden,
    InternalFailure,
    InvalidCredentials,
    NotAuthenticated,
    SessionExpired,
    ValidationFailure,
)
from auth.models import Role, User
from auth.passwords import MAX_PASSWORD_BYTES, hash_password_async, verify_password_async
from auth.reset import ResetTokenManager
from auth.store import UserStore, normalize_email
from auth.tokens import (
    TokenError,
    TokenExpired,
    create_access_token,
    decode_access_token,
    password_change_timestamp,
    password_changed_after,
)
from core.config import Settings

logger = logging.getLogger("tourbook.auth")

MIN_PASSWORD_LENGTH = 8
_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def validate_email(email: str) -> str:
    """Return the normalized email or raise ValidationFailure."""
    normalized = normalize_email(email)
    if not _EMAIL_RE.match(normalized) or len(normalized) > 255:
        raise ValidationFailure("Please provide a valid email.")
    return normalized


def validate_new_password(password: str, password_confirm: str) -> None:
    if len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationFailure(f"Password must be at least {MIN_PASSWORD_LENGTH} characters.")
    if len(password.encode("utf-8")) > MAX_PASSWORD_BYTES:
        raise ValidationFailure(f"Password must be at most {MAX_PASSWORD_BYTES} bytes.")
    if password != password_confirm:
        raise ValidationFailure("Passwords are not the same!")


class AuthService:
    def __init__(self, store: UserStore, mailer: Mailer, settings: Settings) -> None:
        self.store = store
        self.mailer = mailer
        self.settings = settings
        self.reset_tokens = ResetTokenManager(store, settings)

    async def _store(self, fn, *args, **kwargs):
        return await run_bounded(fn, *args, timeout=self.settings.store_timeout_seconds, **kwargs)

    # ------------------------------------------------------------------
    # Credential issuance
    # ------------------------------------------------------------------

    async def signup(
        self,
        name: str,
        email: str,
        password: str,
        password_confirm: str,
        welcome_url: str,
        role: Role = Role.USER,
    ) -> tuple[User, str]:
        """Create an account, send the welcome email, and return (user, token).

        A failed welcome email is logged and does not undo the signup: the
        account exists and is usable.
        """
        email = validate_email(email)
        validate_new_password(password, password_confirm)
        if not name.strip():
            raise ValidationFailure("Please tell us your name!")

        hashed = await hash_password_async(password)
        try:
            user = await self._store(
                self.store.create_user,
                User(name=name.strip(), email=email, hashed_password=hashed, role=role),
            )
        except IntegrityError as exc:
            raise ValidationFailure("Duplicate field value: email. Please use another value!") from exc
        logger.info("User signed up: %s (%s)", user.id, redact_email(user.email))

        try:
            await self.mailer.send_welcome(user, welcome_url)
        except DeliveryFailure:
            logger.warning("Welcome email to %s failed; signup kept", redact_email(user.email))

        return user, create_access_token(user.id)

    async def login(self, email: str, password: str) -> tuple[User, str]:
        """Authenticate with email and password and return (user, token).

        Unknown email and wrong password both raise InvalidCredentials, after
        the same amount of bcrypt work.
        """
        user = await self._store(self.store.get_by_email, email)
        ok = await verify_password_async(password, user.hashed_password if user else None)
        if user is None or not ok:
            raise InvalidCredentials()
        logger.info("User logged in: %s", user.id)
        return user, create_access_token(user.id)

    # ------------------------------------------------------------------
    # Session verification (pipeline stages 2-4)
    # ------------------------------------------------------------------

    async def authenticate(self, token: str) -> User:
        """Resolve a bearer token to its active, non-stale user.

        Raises SessionExpired for an expired token and NotAuthenticated for
        every other rejection. Store failures raise InternalFailure.
        """
        try:
            claims = decode_access_token(token)
        except TokenExpired as exc:
            raise SessionExpired() from exc
        except TokenError as exc:
            raise NotAuthenticated(INVALID_TOKEN_MESSAGE) from exc

        user = await self._store(self.store.get_by_id, claims.subject_id)
        if user is None:
            raise NotAuthenticated(INVALID_TOKEN_MESSAGE)

        if password_changed_after(user.password_changed_at, claims.issued_at):
            raise NotAuthenticated(STALE_TOKEN_MESSAGE)

        return user

    @staticmethod
    def check_role(user: User, allowed: frozenset[Role]) -> None:
        if user.role not in allowed:
            raise Forbidden()

    # ------------------------------------------------------------------
    # Password reset
    # ------------------------------------------------------------------

    async def forgot_password(self, email: str, reset_url: Callable[[str], str]) -> None:
        """Issue a reset secret for the account and email its link.

        Returns silently for an unknown email. If delivery fails, the pending
        reset is cleared and DeliveryFailure propagates, even when the clear
        itself fails.
        """
        user = await self._store(self.store.get_by_email, email)
        if user is None:
            logger.info("Password reset requested for unknown email %s", redact_email(normalize_email(email)))
            return

        secret = await self.reset_tokens.issue(user)
        try:
            await self.mailer.send_password_reset(user, reset_url(secret))
        except DeliveryFailure:
            try:
                await self.reset_tokens.cancel(user, secret)
            except InternalFailure:
                logger.error(
                    "Could not clear undelivered password reset token for user %s; it expires on its own",
                    user.id,
                    exc_info=True,
                )
            raise
        logger.info("Password reset token issued for user %s", user.id)

    async def reset_password(self, secret: str, password: str, password_confirm: str) -> tuple[User, str]:
        validate_new_password(password, password_confirm)
        user = await self.reset_tokens.consume(secret, password)
        return user, create_access_token(user.id)

    # ------------------------------------------------------------------
    # Authenticated self-service
    # ------------------------------------------------------------------

    async def update_password(
        self,
        user: User,
        password_current: str,
        password: str,
        password_confirm: str,
    ) -> tuple[User, str]:
        """Change the password after re-verifying the current one.

        Every token issued before the change stops verifying. The returned
        token is issued after the change and stays valid.
        """
        if not await verify_password_async(password_current, user.hashed_password):
            raise InvalidCredentials("Your current password is incorrect.")
        validate_new_password(password, password_confirm)

        hashed = await hash_password_async(password)
        updated = await self._store(
            self.store.update_user,
            user.id,
            hashed_password=hashed,
            password_changed_at=password_change_timestamp(),
        )
        if not updated:
            raise NotAuthenticated(INVALID_TOKEN_MESSAGE)
        logger.info("Password changed for user %s", user.id)

        fresh = await self._store(self.store.get_by_id, user.id)
        if fresh is None:
            raise NotAuthenticated(INVALID_TOKEN_MESSAGE)
        return fresh, create_access_token(fresh.id)

    async def update_me(self, user: User, *, name: str | None = None, email: str | None = None) -> User:
        fields: dict = {}
        if name is not None:
            if not name.strip():
                raise ValidationFailure("Please tell us your name!")
            fields["name"] = name.strip()
        if email is not None:
            fields["email"] = validate_email(email)
        if not fields:
            raise ValidationFailure("No fields to update.")
        try:
            await self._store(self.store.update_user, user.id, **fields)
        except IntegrityError as exc:
            raise ValidationFailure("Duplicate field value: email. Please use another value!") from exc
        fresh = await self._store(self.store.get_by_id, user.id)
        if fresh is None:
            raise NotAuthenticated(INVALID_TOKEN_MESSAGE)
        return fresh

    async def deactivate(self, user: User) -> None:
        """Soft-delete the account. Its tokens stop resolving immediately."""
        await self._store(self.store.update_user, user.id, active=False)
        logger.info("User deactivated: %s", user.id)

    # ------------------------------------------------------------------
    # Admin user management
    # ------------------------------------------------------------------

    async def list_users(self) -> list[User]:
        return await self._store(self.store.list_users)

    async def get_user(self, user_id: str) -> User | None:
        """Admin lookup. Sees deactivated accounts so they can be reactivated."""
        return await self._store(self.store.get_any_by_id, user_id)

    async def admin_update_user(
        self,
        actor: User,
        user_id: str,
        *,
        role: Role | None = None,
        active: bool | None = None,
    ) -> User | None:
        """Change another account's role or active flag.

        Returns the updated user, or None if the id is unknown. Refuses to
        let an admin deactivate themselves or remove the last active admin.
        """
        target = await self._store(self.store.get_any_by_id, user_id)
        if target is None:
            return None
        if role is None and active is None:
            raise ValidationFailure("No fields to update.")

        losing_admin = target.active and target.role is Role.ADMIN and (
            active is False or (role is not None and role is not Role.ADMIN)
        )
        if active is False and target.id == actor.id:
            raise ValidationFailure("You cannot deactivate your own account.")
        if losing_admin and await self._store(self.store.count_active_admins) <= 1:
            raise ValidationFailure("Cannot remove the last active admin account.")

        if active is True and not target.active:
            await self._store(self.store.reactivate_user, target.id)
            logger.info("User reactivated: %s by %s", target.id, actor.id)

        fields: dict = {}
        if role is not None:
            fields["role"] = role
        if active is False:
            fields["active"] = False
        if fields:
            await self._store(self.store.update_user, target.id, **fields)
            logger.info("User %s updated by %s: %s", target.id, actor.id, sorted(fields))

        return await self._store(self.store.get_any_by_id, target.id)
