"""
api/limiter.py -- Shared slowapi rate limiter instance.

Import this in both api/main.py (to mount as middleware) and
api/routes/auth.py (to apply the auth limit with @limiter.limit()).

A single shared instance means all routes share one counter store. With the
default "memory://" storage the counters live in this process only: they reset
on restart and are not shared between workers. Set RATE_LIMIT_STORAGE_URI to a
shared backend when running more than one worker.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

from core.config import get_settings

_settings = get_settings()

limiter = Limiter(
    key_func=get_remote_address,
    storage_uri=_settings.rate_limit_storage_uri,
    enabled=_settings.rate_limit_enabled,
)
