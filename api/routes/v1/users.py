"""
api/routes/v1/users.py -- Account, session, and user-management REST endpoints.

Routes (prefix /api/v1):
  POST   /users/signup                 -- create account; sets session cookie
  POST   /users/login                  -- password login; sets session cookie
  GET    /users/logout                 -- overwrite cookie with an expired token
  POST   /users/forgot-password        -- email a one-time reset link
  PATCH  /users/reset-password/{token} -- redeem reset link; sets session cookie
  GET    /users/session                -- optional identity; never 401s
  GET    /users/me                     -- current user (requires auth)
  PATCH  /users/update-my-password     -- change password (requires auth)
  PATCH  /users/update-me              -- change name/email (requires auth)
  DELETE /users/delete-me              -- soft-delete own account (requires auth)
  GET    /users                        -- list users (admin only)
  GET    /users/{user_id}              -- user detail (admin only)
  PATCH  /users/{user_id}              -- change role / active flag (admin only)

Security:
  [H2] POST /login and POST /forgot-password are rate-limited per client.
  [C1] Login failures share one error whatever the cause; see AuthService.login.
  [M5] Cache-Control: no-store on every response that carries a token.
  Reset links are built from PUBLIC_BASE_URL, never from the Host header, so a
  forged Host cannot redirect a victim's reset link to an attacker's domain.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request, Response
from fastapi.responses import JSONResponse

from api.limiter import limiter
from api.models import (
    AuthResponse,
    ForgotPasswordRequest,
    LoginRequest,
    MessageResponse,
    ResetPasswordRequest,
    SessionResponse,
    SignupRequest,
    UpdateMeRequest,
    UpdatePasswordRequest,
    UserData,
    UserEnvelope,
    UserListResponse,
    UserPatch,
    UserResponse,
)
from auth.dependencies import get_current_user, require_admin, try_get_current_user
from auth.errors import ValidationFailure
from auth.models import User
from auth.service import AuthService
from auth.tokens import create_logged_out_token, set_auth_cookie
from core.config import get_settings

_settings = get_settings()

# Auth policy:
# - signup, login, logout, forgot-password, reset-password: public
# - session:                  optional identity (try_get_current_user)
# - me, update-*, delete-me:  requires auth (get_current_user)
# - /users, /users/{id}:      requires admin (require_admin)
router = APIRouter()

FORGOT_PASSWORD_MESSAGE = "If that email is registered, a reset link has been sent to it."


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _service(request: Request) -> AuthService:
    return request.app.state.auth_service


def _is_secure(request: Request) -> bool:
    """True when the cookie must carry the Secure attribute."""
    if _settings.secure_cookies or request.url.scheme == "https":
        return True
    return _settings.trust_proxy and request.headers.get("X-Forwarded-Proto", "") == "https"


def _public_url(path: str) -> str:
    return f"{_settings.public_base_url.rstrip('/')}{path}"


def _auth_response(request: Request, user: User, token: str, status_code: int = 200) -> JSONResponse:
    resp = JSONResponse(
        status_code=status_code,
        content=AuthResponse(token=token, data=UserData(user=UserResponse.from_user(user))).model_dump(mode="json"),
    )
    set_auth_cookie(resp, token, secure=_is_secure(request))
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


def _user_envelope(user: User) -> UserEnvelope:
    return UserEnvelope(data=UserData(user=UserResponse.from_user(user)))


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@router.post("/users/signup", response_model=AuthResponse, status_code=201)
async def signup(request: Request, body: SignupRequest) -> JSONResponse:
    """Create a regular account, send the welcome email, and log the user in."""
    user, token = await _service(request).signup(
        name=body.name,
        email=body.email,
        password=body.password,
        password_confirm=body.password_confirm,
        welcome_url=_public_url("/me"),
    )
    return _auth_response(request, user, token, status_code=201)


@limiter.limit(_settings.login_rate_limit)  # [H2] must be ABOVE @router to preserve FastAPI introspection
@router.post("/users/login", response_model=AuthResponse)
async def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with email and password; set the session cookie."""
    user, token = await _service(request).login(body.email, body.password)
    return _auth_response(request, user, token)


@router.get("/users/logout", response_model=MessageResponse)
async def logout(request: Request) -> JSONResponse:
    """Overwrite the session cookie with an already-expired token.

    The cookie itself lives for 10 seconds; even if a client keeps it, the
    token inside fails verification as expired.
    """
    resp = JSONResponse(content=MessageResponse().model_dump())
    set_auth_cookie(resp, create_logged_out_token(), secure=_is_secure(request), expire_seconds=10)
    return resp


@limiter.limit(_settings.forgot_password_rate_limit)  # [H2]
@router.post("/users/forgot-password", response_model=MessageResponse)
async def forgot_password(request: Request, body: ForgotPasswordRequest) -> MessageResponse:
    """Email a reset link valid for 10 minutes.

    Answers identically whether or not the email belongs to an account. A
    delivery failure surfaces as 500 delivery_failed after the pending reset
    has been cleared.
    """
    await _service(request).forgot_password(
        body.email,
        reset_url=lambda secret: _public_url(f"/api/v1/users/reset-password/{secret}"),
    )
    return MessageResponse(message=FORGOT_PASSWORD_MESSAGE)


@router.patch("/users/reset-password/{token}", response_model=AuthResponse)
async def reset_password(request: Request, token: str, body: ResetPasswordRequest) -> JSONResponse:
    """Redeem a reset link, set the new password, and log the user in."""
    user, session_token = await _service(request).reset_password(token, body.password, body.password_confirm)
    return _auth_response(request, user, session_token)


@router.get("/users/session", response_model=SessionResponse)
async def session(current_user: User | None = Depends(try_get_current_user)) -> SessionResponse:
    """Report who is signed in, if anyone. Never fails on a bad or missing token."""
    if current_user is None:
        return SessionResponse(authenticated=False)
    return SessionResponse(authenticated=True, user=UserResponse.from_user(current_user))


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.get("/users/me", response_model=UserEnvelope)
async def me(current_user: User = Depends(get_current_user)) -> UserEnvelope:
    return _user_envelope(current_user)


@router.patch("/users/update-my-password", response_model=AuthResponse)
async def update_my_password(
    request: Request,
    body: UpdatePasswordRequest,
    current_user: User = Depends(get_current_user),
) -> JSONResponse:
    """Change the password. Every previously issued token stops working.

    The response carries a fresh token so the calling session survives.
    """
    user, token = await _service(request).update_password(
        current_user, body.password_current, body.password, body.password_confirm
    )
    return _auth_response(request, user, token)


@router.patch("/users/update-me", response_model=UserEnvelope)
async def update_me(
    request: Request,
    body: UpdateMeRequest,
    current_user: User = Depends(get_current_user),
) -> UserEnvelope:
    """Update the current user's name and/or email. Never the password or role."""
    if body.password is not None or body.password_confirm is not None:
        raise ValidationFailure("This route is not for password updates. Please use /update-my-password.")
    user = await _service(request).update_me(current_user, name=body.name, email=body.email)
    return _user_envelope(user)


@router.delete("/users/delete-me", status_code=204)
async def delete_me(request: Request, current_user: User = Depends(get_current_user)) -> Response:
    """Deactivate the current account. It disappears from every lookup."""
    await _service(request).deactivate(current_user)
    return Response(status_code=204)


# ---------------------------------------------------------------------------
# User management (admin only)
# ---------------------------------------------------------------------------


@router.get("/users", response_model=UserListResponse)
async def list_users(request: Request, current_user: User = Depends(require_admin)) -> UserListResponse:
    """List active user accounts. Admin only."""
    users = await _service(request).list_users()
    return UserListResponse(results=len(users), data=[UserResponse.from_user(u) for u in users])


@router.get("/users/{user_id}", response_model=UserEnvelope)
async def get_user(request: Request, user_id: str, current_user: User = Depends(require_admin)) -> UserEnvelope:
    """Fetch one account, including deactivated ones. Admin only."""
    user = await _service(request).get_user(user_id)
    if user is None:
        raise HTTPException(
            status_code=404,
            detail={"code": "not_found", "message": "No user found with that ID."},
        )
    return _user_envelope(user)


@router.patch("/users/{user_id}", response_model=UserEnvelope)
async def update_user(
    request: Request,
    user_id: str,
    body: UserPatch,
    current_user: User = Depends(require_admin),
) -> UserEnvelope:
    """Change a user's role or active flag. Admin only.

    active=true on a deactivated account is the reactivation path.
    """
    user = await _service(request).admin_update_user(current_user, user_id, role=body.role, active=body.active)
    if user is None:
        raise HTTPException(
            status_code=404,
            detail={"code": "not_found", "message": "No user found with that ID."},
        )
    return _user_envelope(user)
