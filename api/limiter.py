"""
api/limiter.py -- Shared slowapi rate limiter instance.

Imported by api/main.py (to mount as middleware) and api/routes/v1/auth.py
(to apply per-route limits with @limiter.limit()). A single shared instance
keeps one counter store for every route; separate instances per module would
each count in isolation and never trigger.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

from core.config import get_settings

limiter = Limiter(key_func=get_remote_address, storage_uri="memory://")


def sign_in_limit() -> str:
    """Limit string for the sign-in route, read from settings at request time."""
    return get_settings().sign_in_rate_limit
