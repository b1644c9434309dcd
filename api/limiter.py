"""
api/limiter.py -- Shared slowapi rate limiter instance.

Import this in both api/main.py (to mount as middleware) and
api/routes/auth.py (to apply the login limit with @limiter.limit()).

A single shared instance means all routes share the same in-memory counter
store. Separate instances per module would each keep their own counters and
the limits would never trigger.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

from core.config import get_settings

limiter = Limiter(key_func=get_remote_address, storage_uri="memory://")


def login_limit() -> str:
    """Login rate limit, read from settings at request time."""
    return get_settings().login_rate_limit
