"""Rate limiting configuration for the access API."""

import logging
import os

from slowapi import Limiter
from slowapi.util import get_remote_address

from tenant_access.core.config import settings

logger = logging.getLogger(__name__)

IS_TESTING = os.getenv("TESTING", "").lower() in ("1", "true", "yes")
DEFAULT_LIMITS = (
    []
    if IS_TESTING or settings.RATE_LIMIT_API <= 0
    else [f"{settings.RATE_LIMIT_API}/minute"]
)

# Redis keeps counters shared across workers; tests and single-process dev use memory
if settings.REDIS_URL and not IS_TESTING:
    storage_uri = settings.REDIS_URL
else:
    storage_uri = "memory://"
    if not IS_TESTING and settings.ENV != "dev":
        logger.warning("REDIS_URL not set, rate limiting uses in-memory storage")

limiter = Limiter(
    key_func=get_remote_address,
    storage_uri=storage_uri,
    default_limits=DEFAULT_LIMITS,
)


def share_rate_limit() -> str:
    """Per-IP limit for public share token lookups."""
    return f"{settings.RATE_LIMIT_SHARE}/minute"
