"""
Rate limiting using slowapi.

Limits are keyed by client IP and counted in Redis when ``REDIS_URL`` is
set, otherwise in process memory.  Storage errors fail open: the request
is allowed and the error is logged.

Named limits (see ``RATE_LIMITS``):
- global: 1000 per 15 minutes, applied to every route
- auth: 5 per 15 minutes (login, register, refresh)
- search: 60 per minute
- payment: 10 per minute
- order: 20 per minute
- review: 5 per minute
- contact: 3 per hour (newsletter signup)
- password_reset: 3 per hour
"""

import ipaddress
import logging
import re

from starlette.requests import Request
from slowapi import Limiter
from slowapi.util import get_remote_address

from infrastructure.config.settings import settings

logger = logging.getLogger(__name__)

# Quick reject for values that cannot be an IP before parsing
_IP_LIKE = re.compile(r"^[\d.:a-fA-F]+$")


def _is_valid_ip(value: str) -> bool:
    if not _IP_LIKE.match(value):
        return False
    try:
        ipaddress.ip_address(value)
        return True
    except ValueError:
        return False


def _is_private_ip(value: str) -> bool:
    """Private, loopback and link-local addresses in proxy headers are spoofable."""
    try:
        addr = ipaddress.ip_address(value)
        return addr.is_private or addr.is_loopback or addr.is_link_local
    except ValueError:
        return False


def _get_real_ip(request: Request) -> str:
    """Client IP from X-Forwarded-For / X-Real-IP, else the socket peer.

    Header values must parse as a public IP address; anything else falls
    back to the connection address.
    """
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        candidate = forwarded.split(",")[0].strip()
        if _is_valid_ip(candidate) and not _is_private_ip(candidate):
            return candidate
    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        candidate = real_ip.strip()
        if _is_valid_ip(candidate) and not _is_private_ip(candidate):
            return candidate
    return get_remote_address(request)


# Format: "count/period" or "count per N period"
RATE_LIMITS = {
    "global": "1000 per 15 minutes",
    "auth": "5 per 15 minutes",
    "search": "60/minute",
    "payment": "10/minute",
    "order": "20/minute",
    "review": "5/minute",
    "contact": "3/hour",
    "password_reset": "3/hour",
    "email_verification": "5/hour",
    "webhook": "100/minute",
}

_storage_uri = settings.redis_url if settings.redis_url else "memory://"

if not settings.redis_url:
    logger.warning(
        "Rate limiter using in-memory storage; limits are per process"
    )
    if settings.environment == "production":
        logger.critical(
            "REDIS_URL is not set in production: rate limits are not shared between workers"
        )

limiter = Limiter(
    key_func=_get_real_ip,
    storage_uri=_storage_uri,
    default_limits=[RATE_LIMITS["global"]],
    in_memory_fallback_enabled=True,
    swallow_errors=True,
)


def get_rate_limit(name: str) -> str:
    """
    Get the rate limit string for a named limit.

    Example:
        >>> get_rate_limit("payment")
        "10/minute"
        >>> get_rate_limit("unknown")
        "1000 per 15 minutes"
    """
    return RATE_LIMITS.get(name, RATE_LIMITS["global"])
