"""
auth/dependencies.py -- FastAPI Depends() helpers forming the session pipeline.

Stages, strictly in order, for every route that needs identity:
  1. Extraction     -- Authorization: Bearer <token>, else the session cookie.
  2. Verification   -- auth.tokens.decode_access_token (via AuthService).
  3. Resolution     -- active user by token subject.
  4. Freshness      -- reject tokens older than the last password change.
  5. Attachment     -- request.state.user = user.

get_current_user() is the mandatory pipeline: any failure raises and the
request ends with 401 before the route body runs.
try_get_current_user() is the soft variant for pages that render for both
anonymous and signed-in visitors: failures at stages 1-4 yield None.
restrict_to(*roles) builds a per-route role gate. It depends on
get_current_user, so FastAPI always resolves identity before the gate runs.

Layer rule: auth/dependencies.py may import from fastapi (for Depends/Request)
because this module is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

import logging

from fastapi import Depends, Request

from auth.errors import AuthError, InternalFailure, NotAuthenticated
from auth.models import Role, User
from auth.service import AuthService
from core.config import get_settings

logger = logging.getLogger("tourbook.auth")

_settings = get_settings()


def extract_token(request: Request) -> str | None:
    """Return the bearer token from the Authorization header or session cookie."""
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        token = auth_header[7:].strip()
        if token:
            return token
    return request.cookies.get(_settings.session_cookie_name) or None


async def get_current_user(request: Request) -> User:
    """Require authentication. Raises NotAuthenticated (401) on any failure.

    Use as a FastAPI dependency:
        @router.get("/protected")
        async def route(user: User = Depends(get_current_user)): ...
    """
    token = extract_token(request)
    if not token:
        raise NotAuthenticated()
    service: AuthService = request.app.state.auth_service
    user = await service.authenticate(token)
    request.state.user = user
    return user


async def try_get_current_user(request: Request) -> User | None:
    """Attempt authentication; return None instead of raising.

    InternalFailure is swallowed too (the page still renders anonymously) but
    logged, since it points at the store rather than the visitor.
    """
    try:
        return await get_current_user(request)
    except InternalFailure:
        logger.warning("Optional authentication skipped after internal failure", exc_info=True)
    except AuthError:
        pass
    request.state.user = None
    return None


def restrict_to(*roles: Role | str):
    """Build a dependency that only admits users holding one of `roles`.

    Roles are converted to Role up front, so a misspelt role name raises
    ValueError when the route module is imported, not at request time.

        @router.delete("/tours/{id}", dependencies=[Depends(restrict_to(Role.ADMIN, Role.LEAD_GUIDE))])
    """
    if not roles:
        raise ValueError("restrict_to() needs at least one role")
    allowed = frozenset(Role(r) for r in roles)

    async def role_gate(user: User = Depends(get_current_user)) -> User:
        AuthService.check_role(user, allowed)
        return user

    return role_gate


require_admin = restrict_to(Role.ADMIN)
