"""
Per-client request throttling for the auth endpoints.

This is the coarse IP-level guard in front of the HTTP adapter; the
per-email password reset backoff lives in the password reset ledger.
"""
from typing import Optional

from fastapi import Request
from slowapi import Limiter


def get_client_ip(request: Request) -> Optional[str]:
    """
    Extract client IP from request, checking for proxy headers first
    """
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        # X-Forwarded-For can contain multiple IPs, take the first
        return forwarded.split(",")[0].strip()

    real_ip = request.headers.get("X-Real-IP")
    if real_ip:
        return real_ip

    if request.client:
        return request.client.host

    return None


def _limiter_key(request: Request) -> str:
    return get_client_ip(request) or "unknown"


limiter = Limiter(key_func=_limiter_key)

# Strict rate limiting for signup/login
AUTH_RATE_LIMIT = "5/minute"

# Password-related operations
PASSWORD_RATE_LIMIT = "3/minute"

# Token refresh and verification
TOKEN_RATE_LIMIT = "30/minute"
