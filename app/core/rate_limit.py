"""Rate limiting middleware for the HTTP layer.

This module wires the rate limiting adapter into request handling.

Strategy:
- Only requests under ``APP_RATE_LIMIT_PATH_PREFIX`` whose method is listed in
  ``APP_RATE_LIMIT_METHODS`` are checked (default: POST to /api).
- The requester is identified by the first X-Forwarded-For hop, then
  X-Real-IP, then the socket peer address.
- The limiter never raises, so the middleware needs no error handling of
  its own around ``check``.
"""

from __future__ import annotations

import hashlib
import logging

from fastapi import Request, Response, status
from fastapi.responses import JSONResponse

from app.adapters.rate_limit.base import RateLimitResult
from app.adapters.rate_limit.factory import get_rate_limiter
from app.core.config import settings
from app.core.logging import get_request_id

logger = logging.getLogger(__name__)

DEFAULT_RETRY_AFTER_SECONDS = 60


def get_client_identifier(request: Request) -> str:
    """Derive the rate limit identifier for a request.

    Args:
        request: Incoming request.

    Returns:
        str: Client IP address, or ``"unknown"`` when none can be determined.
    """

    forwarded_for = request.headers.get("x-forwarded-for")
    if forwarded_for:
        first_hop = forwarded_for.split(",")[0].strip()
        if first_hop:
            return first_hop

    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip.strip()

    if request.client and request.client.host:
        return request.client.host
    return "unknown"


def hash_identifier(identifier: str) -> str:
    """Hash the identifier for logging without exposing client addresses."""
    return hashlib.sha256(identifier.encode()).hexdigest()[:16]


def build_rate_limit_headers(result: RateLimitResult) -> dict[str, str]:
    """Render rate limit metadata as response headers.

    Unregulated results carry no headers since there is no quota to report.
    """

    headers: dict[str, str] = {}
    if not result.allowed:
        headers["Retry-After"] = str(result.retry_after or DEFAULT_RETRY_AFTER_SECONDS)

    if settings.app.rate_limit_include_headers and not result.is_unbounded:
        headers["X-RateLimit-Remaining"] = str(int(result.remaining))
        headers["X-RateLimit-Reset"] = str(result.reset_time // 1000)
    return headers


def _is_regulated(request: Request) -> bool:
    return request.method.upper() in settings.app.rate_limited_methods and request.url.path.startswith(
        settings.app.rate_limit_path_prefix
    )


async def rate_limit_middleware(request: Request, call_next) -> Response:
    """HTTP middleware enforcing per-client, per-route quotas.

    Rejected requests get a 429 JSON error carrying ``Retry-After``; allowed
    regulated requests continue with X-RateLimit-* headers attached.
    """

    if not settings.app.rate_limit_enabled or not _is_regulated(request):
        return await call_next(request)

    identifier = get_client_identifier(request)
    path = request.url.path
    result = await get_rate_limiter().check(identifier, path)
    headers = build_rate_limit_headers(result)

    if not result.allowed:
        logger.warning(
            "rate_limit.exceeded",
            extra={
                "identifier_hash": hash_identifier(identifier),
                "route": path,
                "method": request.method,
                "retry_after_s": headers["Retry-After"],
            },
        )
        return JSONResponse(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            content={
                "error": {
                    "code": "rate_limit_exceeded",
                    "message": "Too many requests. Please try again later.",
                    "request_id": get_request_id(),
                }
            },
            headers=headers,
        )

    response = await call_next(request)
    for name, value in headers.items():
        response.headers.setdefault(name, value)
    return response
