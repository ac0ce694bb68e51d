"""
api/limiter.py -- Shared slowapi rate limiter instance.

Import this in both api/main.py (to mount as middleware) and
api/routes/v1/auth.py (to apply per-route limits with @limiter.limit()).

Using a single shared instance ensures all routes share the same in-memory
counter store. If this were instantiated in each module separately, each
module would get its own isolated counter and rate limits would never trigger.

Limits themselves come from Settings (LOGIN_RATE_LIMIT, OTP_RATE_LIMIT,
REGISTER_RATE_LIMIT) and are passed to @limiter.limit() as callables, so they
are read when the first request arrives rather than at import.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

from core.config import get_settings

limiter = Limiter(key_func=get_remote_address, storage_uri="memory://")


def login_limit() -> str:
    return get_settings().login_rate_limit


def otp_limit() -> str:
    return get_settings().otp_rate_limit


def register_limit() -> str:
    return get_settings().register_rate_limit
