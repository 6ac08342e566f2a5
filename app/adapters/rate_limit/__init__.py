"""Rate limiting adapters - in-memory and distributed backends behind one interface."""

from app.adapters.rate_limit.base import (
    UNLIMITED,
    AbstractRateLimiter,
    RateLimitConfig,
    RateLimitResult,
)
from app.adapters.rate_limit.factory import (
    create_rate_limiter,
    get_rate_limiter,
    reset_rate_limiter,
)
from app.adapters.rate_limit.in_memory import BoundedInMemoryRateLimiter
from app.adapters.rate_limit.registry import DEFAULT_RATE_LIMITS, build_registry, match_rule
from app.adapters.rate_limit.remote_store import RemoteStoreRateLimiter
from app.adapters.rate_limit.upstash_client import UpstashRestClient

__all__ = [
    "AbstractRateLimiter",
    "BoundedInMemoryRateLimiter",
    "DEFAULT_RATE_LIMITS",
    "RateLimitConfig",
    "RateLimitResult",
    "RemoteStoreRateLimiter",
    "UNLIMITED",
    "UpstashRestClient",
    "build_registry",
    "create_rate_limiter",
    "get_rate_limiter",
    "match_rule",
    "reset_rate_limiter",
]
