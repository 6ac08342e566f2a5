"""Distributed sliding-window rate limiter backed by a Redis REST store.

Each request is one sorted-set member scored by its timestamp. A check runs a
single pipeline that purges members older than the window, counts what is
left, records the new request and refreshes the key's TTL.

Failure policy:
- Transport or store errors fail open: the request is allowed and the error
  is logged, so an unreachable store never takes the protected routes down.
- The compensating removal after an over-limit decision is best effort.
"""

from __future__ import annotations

import hashlib
import logging
import uuid
from typing import Callable, Mapping

from app.adapters.rate_limit.base import (
    UNREGULATED_RESULT,
    AbstractRateLimiter,
    RateLimitConfig,
    RateLimitResult,
    now_ms,
)
from app.adapters.rate_limit.registry import build_registry, match_rule
from app.adapters.rate_limit.upstash_client import Command, UpstashRestClient

logger = logging.getLogger(__name__)


def _hash_key(key: str) -> str:
    return hashlib.sha256(key.encode()).hexdigest()[:16]


class RemoteStoreRateLimiter(AbstractRateLimiter):
    """Sliding-window limiter shared by every process pointing at the same store."""

    def __init__(
        self,
        client: UpstashRestClient,
        config: Mapping[str, RateLimitConfig] | None = None,
        *,
        key_prefix: str = "ratelimit",
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self._client = client
        self._registry = build_registry(config)
        self._key_prefix = key_prefix
        self._clock = clock

    @property
    def registry(self) -> Mapping[str, RateLimitConfig]:
        return self._registry

    def _store_key(self, identifier: str, prefix: str) -> str:
        return f"{self._key_prefix}:{identifier}:{prefix}"

    async def check(self, identifier: str, path: str) -> RateLimitResult:
        """Record one request in the shared window and decide on it.

        Args:
            identifier: Requester key (e.g., client IP).
            path: Request path used to find the matching rule.

        Returns:
            RateLimitResult; an allowing result when the store is unreachable.
        """
        matched = match_rule(path, self._registry)
        if matched is None:
            return UNREGULATED_RESULT

        prefix, rule = matched
        key = self._store_key(identifier, prefix)
        now = self._clock()
        reset_time = now + rule.window_ms
        # Unique member so two requests in the same millisecond stay distinct.
        member = f"{now}-{uuid.uuid4().hex}"

        commands: list[Command] = [
            ["ZREMRANGEBYSCORE", key, "0", str(now - rule.window_ms)],
            ["ZCARD", key],
            ["ZADD", key, str(now), member],
            ["EXPIRE", key, str(rule.window_seconds)],
        ]

        try:
            results = await self._client.pipeline(commands)
            current_count = int(results[1])
        except Exception as exc:
            logger.error(
                "rate_limit.remote_store_error",
                extra={
                    "operation": "check",
                    "key_hash": _hash_key(key),
                    "error_type": type(exc).__name__,
                    "error_msg": str(exc),
                },
            )
            return RateLimitResult(
                allowed=True,
                remaining=rule.max_requests,
                reset_time=reset_time,
            )

        if current_count >= rule.max_requests:
            await self._discard_member_best_effort(key, member)
            return RateLimitResult(
                allowed=False,
                remaining=0,
                reset_time=reset_time,
                retry_after=rule.window_seconds,
            )

        return RateLimitResult(
            allowed=True,
            remaining=max(0, rule.max_requests - current_count - 1),
            reset_time=reset_time,
        )

    async def reset(self, identifier: str, path: str) -> None:
        matched = match_rule(path, self._registry)
        prefix = matched[0] if matched else path
        key = self._store_key(identifier, prefix)
        try:
            await self._client.command(["DEL", key])
        except Exception as exc:
            logger.error(
                "rate_limit.remote_store_error",
                extra={
                    "operation": "reset",
                    "key_hash": _hash_key(key),
                    "error_type": type(exc).__name__,
                    "error_msg": str(exc),
                },
            )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _discard_member_best_effort(self, key: str, member: str) -> None:
        """Remove a rejected request from the window; errors are ignored.

        A member left behind by a failed removal expires with the window.
        """
        try:
            await self._client.command(["ZREM", key, member])
        except Exception:
            logger.debug("rate_limit.compensation_skipped", extra={"key_hash": _hash_key(key)})
