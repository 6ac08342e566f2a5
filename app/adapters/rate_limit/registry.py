"""Path-prefix registry of rate limit rules.

Lookup is first-match in insertion order using ``path.startswith(prefix)``.
More specific prefixes must therefore be registered before less specific
ones; ``build_registry`` warns about rules that can never match.
"""

from __future__ import annotations

import logging
from typing import Mapping

from app.adapters.rate_limit.base import RateLimitConfig

logger = logging.getLogger(__name__)

RateLimitRegistry = dict[str, RateLimitConfig]

_MINUTE_MS = 60 * 1000
_HOUR_MS = 60 * _MINUTE_MS

DEFAULT_RATE_LIMITS: Mapping[str, RateLimitConfig] = {
    "/api/auth/login": RateLimitConfig(max_requests=5, window_ms=15 * _MINUTE_MS),
    "/api/auth/register": RateLimitConfig(max_requests=3, window_ms=_HOUR_MS),
    "/api/auth/forgot-password": RateLimitConfig(max_requests=3, window_ms=_HOUR_MS),
    "/api/auth/reset-password": RateLimitConfig(max_requests=5, window_ms=_HOUR_MS),
    "/api/subscribers": RateLimitConfig(max_requests=5, window_ms=_MINUTE_MS),
    "/api/contact": RateLimitConfig(max_requests=3, window_ms=_MINUTE_MS),
}


def find_shadowed_prefixes(registry: Mapping[str, RateLimitConfig]) -> list[tuple[str, str]]:
    """Return ``(shadowed, shadowing)`` pairs for unreachable rules.

    A prefix is shadowed when an earlier entry is itself a prefix of it, so
    every path it would match is claimed by the earlier rule first.
    """

    shadowed: list[tuple[str, str]] = []
    seen: list[str] = []
    for prefix in registry:
        for earlier in seen:
            if prefix.startswith(earlier):
                shadowed.append((prefix, earlier))
                break
        seen.append(prefix)
    return shadowed


def build_registry(config: Mapping[str, RateLimitConfig] | None = None) -> RateLimitRegistry:
    """Copy ``config`` (or the defaults) into a registry, preserving order.

    Args:
        config: Caller-supplied prefix -> rule mapping. ``None`` selects
            ``DEFAULT_RATE_LIMITS``.

    Returns:
        A new ordered registry owned by the caller.
    """

    registry: RateLimitRegistry = dict(DEFAULT_RATE_LIMITS if config is None else config)

    for prefix, earlier in find_shadowed_prefixes(registry):
        logger.warning(
            "rate_limit.rule_shadowed",
            extra={"prefix": prefix, "shadowed_by": earlier},
        )

    return registry


def match_rule(
    path: str, registry: Mapping[str, RateLimitConfig]
) -> tuple[str, RateLimitConfig] | None:
    """Find the rule governing ``path``.

    Args:
        path: Request path, e.g. ``/api/auth/login/oauth``.
        registry: Ordered prefix -> rule mapping.

    Returns:
        ``(prefix, config)`` for the first matching prefix, or ``None`` when the
        path is unregulated.
    """

    for prefix, rule in registry.items():
        if path.startswith(prefix):
            return prefix, rule
    return None
