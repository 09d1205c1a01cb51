"""Shared rate limiter for the ERP trigger endpoints.

In-memory storage: limits apply per worker process. Sync endpoints that
fan out to the ERP carry the tighter rate_limit_sync limit.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

from .config import settings

limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[settings.rate_limit_default],
    enabled=settings.rate_limit_enabled,
)

sync_limit = settings.rate_limit_sync
