"""Factory functions for building rate limiter instances."""

from __future__ import annotations

import logging
from typing import Mapping

from app.adapters.rate_limit.base import AbstractRateLimiter, RateLimitConfig
from app.adapters.rate_limit.in_memory import BoundedInMemoryRateLimiter
from app.adapters.rate_limit.remote_store import RemoteStoreRateLimiter
from app.adapters.rate_limit.upstash_client import UpstashRestClient
from app.core.config import build_remote_store_settings, settings

logger = logging.getLogger(__name__)

_limiter: AbstractRateLimiter | None = None


def create_rate_limiter(
    config: Mapping[str, RateLimitConfig] | None = None,
) -> BoundedInMemoryRateLimiter:
    """Build a fresh in-memory limiter regardless of environment.

    Capacity limits are the built-in defaults; ``APP_LOCAL_*`` settings only
    shape the limiter selected by ``get_rate_limiter``.

    Args:
        config: Optional prefix -> rule registry; defaults apply when omitted.

    Returns:
        BoundedInMemoryRateLimiter: New, uncached instance.
    """
    return BoundedInMemoryRateLimiter(config)


def _build_rate_limiter(
    config: Mapping[str, RateLimitConfig] | None,
) -> AbstractRateLimiter:
    """Select the backend from the current environment and build it."""
    remote = build_remote_store_settings()

    if remote.is_configured:
        logger.info("rate_limit.backend_selected", extra={"backend": "remote_store"})
        client = UpstashRestClient(
            remote.url,  # type: ignore[arg-type]
            remote.token,  # type: ignore[arg-type]
            timeout_seconds=remote.timeout_seconds,
        )
        return RemoteStoreRateLimiter(client, config, key_prefix=remote.key_prefix)

    logger.info("rate_limit.backend_selected", extra={"backend": "in_memory"})
    return BoundedInMemoryRateLimiter(
        config,
        max_entries=settings.app.local_max_entries,
        cleanup_threshold=settings.app.local_cleanup_threshold,
        capacity_retry_after_seconds=settings.app.capacity_retry_after_seconds,
    )


def get_rate_limiter(
    config: Mapping[str, RateLimitConfig] | None = None,
) -> AbstractRateLimiter:
    """Return the process-wide limiter, or a dedicated one for ``config``.

    Without ``config`` the first built instance is cached and reused. An
    explicit ``config`` always yields a new instance that is not cached, so
    custom limits never leak into global state.

    Returns:
        AbstractRateLimiter: Remote-store limiter when both
            ``UPSTASH_REDIS_REST_URL`` and ``UPSTASH_REDIS_REST_TOKEN`` are set,
            otherwise the bounded in-memory limiter.
    """
    global _limiter

    if config is not None:
        return _build_rate_limiter(config)

    if _limiter is None:
        _limiter = _build_rate_limiter(None)
    return _limiter


def reset_rate_limiter() -> None:
    """Drop the cached limiter (test isolation)."""
    global _limiter
    _limiter = None


async def close_rate_limiter() -> None:
    """Release the cached limiter's resources (HTTP pool) and drop it."""
    global _limiter
    limiter, _limiter = _limiter, None
    if isinstance(limiter, RemoteStoreRateLimiter):
        await limiter.aclose()
