# coding: utf-8
"""
Rate limiting for the core API (slowapi)

The default limit covers every route through SlowAPIMiddleware; endpoints
that move credits carry the tighter write limit as well.
"""
from slowapi import Limiter
from slowapi.util import get_remote_address

from config.config import API_RATE_LIMIT, WRITE_RATE_LIMIT


limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[API_RATE_LIMIT],
    storage_uri="memory://",
)


def write_rate_limit() -> str:
    """Current write limit, read on every request"""
    return WRITE_RATE_LIMIT
