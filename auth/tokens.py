"""
auth/tokens.py -- Session JWTs, password-change freshness, and the auth cookie.

Security design decisions:
  JWT: python-jose with HS256. Tokens carry only sub (user id), iat and exp.
       Role and email are NOT embedded -- they are re-read from the store on
       every request, so a role change or deactivation takes effect at once.

  Single verification path: decode_access_token() is the only function that
       turns a token string into claims. It raises one of three TokenError
       kinds (malformed, bad signature, expired). The pipeline in
       auth/service.py maps them onto NotAuthenticated / SessionExpired.

  Revocation: there is no server-side blacklist. A token is revoked
       implicitly when the user's password_changed_at is later than its iat
       (see password_changed_after), or when it expires.

  SECRET_KEY: sourced from core.config.get_settings(), which validates its
       length at startup.

Layer rule: no imports from api/. Import from core/ is allowed.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone

from jose import ExpiredSignatureError, JWTError, jwt
from jose.exceptions import JWTClaimsError

from auth.models import TokenClaims
from core.config import get_settings

logger = logging.getLogger("tourbook.auth")

_settings = get_settings()

_ALGORITHM = "HS256"

# Tolerance between a password change and tokens issued alongside it.
PASSWORD_CHANGE_TOLERANCE = timedelta(seconds=_settings.password_change_tolerance_seconds)


# ---------------------------------------------------------------------------
# Verification error kinds
# ---------------------------------------------------------------------------


class TokenError(Exception):
    """Base class for cryptographic-layer token failures."""


class TokenMalformed(TokenError):
    pass


class TokenSignatureInvalid(TokenError):
    pass


class TokenExpired(TokenError):
    pass


# ---------------------------------------------------------------------------
# JWT encode / decode
# ---------------------------------------------------------------------------


def create_access_token(subject_id: str, *, issued_at: datetime | None = None, expire_seconds: int = 0) -> str:
    """Encode a signed JWT for the given user id.

    Args:
        subject_id:     Opaque user id, stored as the sub claim.
        issued_at:      Issue instant. Defaults to now; tests and logout pass
                        an explicit value.
        expire_seconds: Lifetime in seconds. If 0 (default), uses
                        Settings.token_expire_seconds.
    """
    duration = expire_seconds if expire_seconds > 0 else _settings.token_expire_seconds
    iat = int((issued_at or datetime.now(timezone.utc)).timestamp())
    payload = {
        "sub": subject_id,
        "iat": iat,
        "exp": iat + duration,
    }
    return jwt.encode(payload, _settings.secret_key, algorithm=_ALGORITHM)


def decode_access_token(token: str) -> TokenClaims:
    """Verify a JWT and return its claims.

    Raises:
        TokenMalformed:        not a JWT, or required claims missing / mistyped.
        TokenSignatureInvalid: well-formed but not signed with our key.
        TokenExpired:          signature valid, exp in the past.
    """
    try:
        unverified = jwt.get_unverified_claims(token)
    except JWTError as exc:
        raise TokenMalformed(str(exc)) from exc
    if not isinstance(unverified, dict):
        raise TokenMalformed("Token payload is not an object")

    try:
        payload = jwt.decode(token, _settings.secret_key, algorithms=[_ALGORITHM])
    except ExpiredSignatureError as exc:
        raise TokenExpired(str(exc)) from exc
    except JWTClaimsError as exc:
        raise TokenMalformed(str(exc)) from exc
    except JWTError as exc:
        raise TokenSignatureInvalid(str(exc)) from exc

    sub = payload.get("sub")
    iat = payload.get("iat")
    exp = payload.get("exp")
    if not isinstance(sub, str) or not sub:
        raise TokenMalformed("Missing sub claim")
    if not isinstance(iat, int) or not isinstance(exp, int):
        raise TokenMalformed("Missing or non-integer iat/exp claim")
    return TokenClaims(subject_id=sub, issued_at=iat)


# ---------------------------------------------------------------------------
# Password-change freshness
# ---------------------------------------------------------------------------


def password_change_timestamp(now: datetime | None = None) -> datetime:
    """Return the value to store in password_changed_at for a change made now.

    Backdated by PASSWORD_CHANGE_TOLERANCE: the fresh token returned by the
    same request is signed after the store write, but both can land in the
    same second, and iat has whole-second resolution.
    """
    return (now or datetime.now(timezone.utc)) - PASSWORD_CHANGE_TOLERANCE


def password_changed_after(password_changed_at: datetime | None, issued_at: int) -> bool:
    """Return True if the password changed after the token was issued.

    Compared at one-second granularity, the resolution of the iat claim.
    """
    if password_changed_at is None:
        return False
    changed_ts = int(password_changed_at.timestamp())
    return issued_at < changed_ts


# ---------------------------------------------------------------------------
# Cookie helpers
# ---------------------------------------------------------------------------


def set_auth_cookie(response, token: str, *, secure: bool, expire_seconds: int = 0) -> None:
    """Write the session JWT as an httpOnly cookie on the response.

    httponly=True: JS cannot read the cookie (XSS mitigation).
    samesite="lax": not sent on cross-site POST -- CSRF mitigation.
    secure: only sent over HTTPS. Callers pass True when the request came in
        over TLS or SECURE_COOKIES is set.
    max_age: matches the JWT expiry so both expire together.
    """
    duration = expire_seconds if expire_seconds > 0 else _settings.token_expire_seconds
    response.set_cookie(
        _settings.session_cookie_name,
        value=token,
        httponly=True,
        samesite="lax",
        secure=secure,
        max_age=duration,
    )


def create_logged_out_token() -> str:
    """Return a validly signed token whose exp has already passed.

    Logout overwrites the session cookie with this value. Any later request
    presenting it fails verification as expired.
    """
    issued = datetime.now(timezone.utc) - timedelta(seconds=_settings.token_expire_seconds + 60)
    return create_access_token("logged-out", issued_at=issued)
