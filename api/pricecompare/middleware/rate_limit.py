"""Rate limiting for the comparison API."""
from __future__ import annotations

from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from slowapi.util import get_remote_address

from pricecompare.core.config import get_settings


def get_limiter() -> Limiter:
    """
    Create and configure rate limiter.

    Uses client IP address as the key. Every comparison fans out into several
    requests against the external price source, so the default limit applies
    to all routes through ``SlowAPIMiddleware``.

    Storage:
    - Development: In-memory (simple, single-instance)
    - Production: Redis (distributed, multi-instance support)
    """
    settings = get_settings()

    if settings.environment == "production":
        storage_uri = str(settings.redis_url)
    else:
        storage_uri = "memory://"

    return Limiter(
        key_func=get_remote_address,
        default_limits=[settings.rate_limit_default],
        storage_uri=storage_uri,
        enabled=settings.rate_limit_enabled,
    )


__all__ = ["get_limiter", "RateLimitExceeded", "SlowAPIMiddleware", "_rate_limit_exceeded_handler"]
