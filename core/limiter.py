"""
core/limiter.py -- Shared slowapi rate limiter instance.

api/main.py mounts it as middleware. api/routes/v1/auth.py and web/routes.py
apply per-route limits with @limiter.limit(). It lives in core/ so the API and
the web pages can share it without importing each other.

A single shared instance means every route uses the same in-memory counter
store; separate instances would each count in isolation and never trigger.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

from core.config import get_settings

limiter = Limiter(key_func=get_remote_address, storage_uri="memory://")


def login_rate_limit() -> str:
    """Current login limit string, e.g. "10/minute" (LOGIN_RATE_LIMIT)."""
    return get_settings().login_rate_limit
