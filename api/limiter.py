"""
api/limiter.py -- Shared slowapi rate limiter for the credential endpoints.

Login and forgot-password are the two routes an attacker can hammer without a
session: the first for password guessing, the second for mail-bombing a victim.
Both carry a per-client limit from Settings (LOGIN_RATE_LIMIT,
FORGOT_PASSWORD_RATE_LIMIT).

One shared instance: every module that applies @limiter.limit() must use this
object, otherwise each gets its own counter store and limits never trigger.

Behind a reverse proxy every request shares the proxy's address. With
TRUST_PROXY=true the client is taken from the first X-Forwarded-For hop
instead. Leave it off when the app is directly exposed -- the header is
client-controlled and would let anyone pick their own rate-limit bucket.
"""

from fastapi import Request
from slowapi import Limiter
from slowapi.util import get_remote_address

from core.config import get_settings

_settings = get_settings()


def client_key(request: Request) -> str:
    if _settings.trust_proxy:
        forwarded = request.headers.get("X-Forwarded-For", "")
        first_hop = forwarded.split(",")[0].strip()
        if first_hop:
            return first_hop
    return get_remote_address(request)


limiter = Limiter(key_func=client_key, storage_uri="memory://")
