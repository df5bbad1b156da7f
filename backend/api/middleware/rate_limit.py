"""
Rate limiting using slowapi.

Limits are keyed by client IP. Storage is Redis when ``REDIS_URL`` is set,
otherwise per-process memory.

Rate Limits:
- Subscription changes: 5 per minute
- Offer checks: 20 per minute
- Generation: 30 per minute
- Webhooks: 100 per minute
- Default: 100 requests per minute
"""

import ipaddress
import logging

from slowapi import Limiter
from slowapi.util import get_remote_address
from starlette.requests import Request

from infrastructure.config.settings import settings

logger = logging.getLogger(__name__)

RATE_LIMITS = {
    "subscription": "5/minute",
    "offers": "20/minute",
    "generation": "30/minute",
    "webhook": "100/minute",
    "default": "100/minute",
}


def _public_ip(value: str) -> str | None:
    """Return ``value`` if it parses as a public IP address."""
    try:
        addr = ipaddress.ip_address(value.strip())
    except ValueError:
        return None
    if addr.is_private or addr.is_loopback or addr.is_link_local:
        return None
    return str(addr)


def _get_real_ip(request: Request) -> str:
    """Client IP from proxy headers, falling back to the connection address.

    Private or malformed values in X-Forwarded-For / X-Real-IP are ignored
    so a spoofed header cannot move a caller into another bucket.
    """
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        candidate = _public_ip(forwarded.split(",")[0])
        if candidate:
            return candidate
    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        candidate = _public_ip(real_ip)
        if candidate:
            return candidate
    return get_remote_address(request)


if not settings.redis_url and settings.is_production:
    logger.warning("Rate limiter using in-memory storage; limits are per process")

limiter = Limiter(
    key_func=_get_real_ip,
    storage_uri=settings.redis_url or "memory://",
    default_limits=[RATE_LIMITS["default"]],
)


def get_rate_limit(endpoint: str) -> str:
    """Rate limit string ("count/period") for an endpoint group."""
    return RATE_LIMITS.get(endpoint, RATE_LIMITS["default"])
