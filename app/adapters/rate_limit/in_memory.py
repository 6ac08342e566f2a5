"""Bounded in-memory fixed-window rate limiter.

Notes:
- Per-process only: running multiple workers multiplies the effective limit.
- Memory bounded: expired keys are swept once the store grows past a
  threshold, and new requests are refused outright at the hard cap.
- Thread-safe: uses a lock around shared state, and never awaits between
  reading and writing a record.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Callable, Mapping

from app.adapters.rate_limit.base import (
    UNREGULATED_RESULT,
    AbstractRateLimiter,
    RateLimitConfig,
    RateLimitResult,
    now_ms,
    retry_after_seconds,
)
from app.adapters.rate_limit.registry import build_registry, match_rule

logger = logging.getLogger(__name__)

MAX_ENTRIES = 10_000
CLEANUP_THRESHOLD = 8_000
CAPACITY_RETRY_AFTER_SECONDS = 60


@dataclass
class _WindowRecord:
    count: int
    reset_time: int


class BoundedInMemoryRateLimiter(AbstractRateLimiter):
    """Fixed-window limiter keyed by ``identifier:prefix``.

    The window starts with the first request for a key and lasts
    ``window_ms``; a record whose ``reset_time`` has passed is treated as
    absent even before the cleanup sweep removes it.

    Important:
        When the store still holds ``max_entries`` keys after a sweep, every
        request is rejected with a short retry hint instead of letting memory
        grow without bound.
    """

    def __init__(
        self,
        config: Mapping[str, RateLimitConfig] | None = None,
        *,
        max_entries: int = MAX_ENTRIES,
        cleanup_threshold: int = CLEANUP_THRESHOLD,
        capacity_retry_after_seconds: int = CAPACITY_RETRY_AFTER_SECONDS,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        """Initialize the in-memory rate limiter.

        Args:
            config: Prefix -> rule registry (defaults to ``DEFAULT_RATE_LIMITS``).
            max_entries: Hard cap on tracked keys.
            cleanup_threshold: Store size above which expired keys are swept.
            capacity_retry_after_seconds: Retry hint when the store is full.
            clock: Time source returning UNIX time in milliseconds.

        Raises:
            ValueError: If the capacity settings are inconsistent.
        """
        if max_entries < 1:
            raise ValueError("max_entries must be >= 1")
        if not 0 <= cleanup_threshold < max_entries:
            raise ValueError("cleanup_threshold must be >= 0 and below max_entries")
        if capacity_retry_after_seconds < 1:
            raise ValueError("capacity_retry_after_seconds must be >= 1")

        self._registry = build_registry(config)
        self._max_entries = max_entries
        self._cleanup_threshold = cleanup_threshold
        self._capacity_retry_after = capacity_retry_after_seconds
        self._clock = clock
        self._lock = threading.RLock()
        self._store: dict[str, _WindowRecord] = {}

    @property
    def registry(self) -> Mapping[str, RateLimitConfig]:
        return self._registry

    async def check(self, identifier: str, path: str) -> RateLimitResult:
        """Count one request and decide whether it is allowed.

        Args:
            identifier: Requester key (e.g., client IP).
            path: Request path used to find the matching rule.

        Returns:
            RateLimitResult with allowance decision and window metadata.
        """
        matched = match_rule(path, self._registry)
        if matched is None:
            return UNREGULATED_RESULT

        prefix, rule = matched
        key = f"{identifier}:{prefix}"

        with self._lock:
            now = self._clock()

            if len(self._store) > self._cleanup_threshold:
                self._evict_expired_locked(now)

            if len(self._store) >= self._max_entries:
                logger.warning(
                    "rate_limit.capacity_exhausted",
                    extra={"store_size": len(self._store), "max_entries": self._max_entries},
                )
                return RateLimitResult(
                    allowed=False,
                    remaining=0,
                    reset_time=now + self._capacity_retry_after * 1000,
                    retry_after=self._capacity_retry_after,
                )

            record = self._store.get(key)

            if record is None or now > record.reset_time:
                record = _WindowRecord(count=1, reset_time=now + rule.window_ms)
                self._store[key] = record
                return RateLimitResult(
                    allowed=True,
                    remaining=rule.max_requests - 1,
                    reset_time=record.reset_time,
                )

            if record.count >= rule.max_requests:
                return RateLimitResult(
                    allowed=False,
                    remaining=0,
                    reset_time=record.reset_time,
                    retry_after=retry_after_seconds(record.reset_time - now),
                )

            record.count += 1
            return RateLimitResult(
                allowed=True,
                remaining=max(0, rule.max_requests - record.count),
                reset_time=record.reset_time,
            )

    async def reset(self, identifier: str, path: str) -> None:
        matched = match_rule(path, self._registry)
        prefix = matched[0] if matched else path
        with self._lock:
            self._store.pop(f"{identifier}:{prefix}", None)

    def store_size(self) -> int:
        """Number of tracked keys, expired ones included until swept."""
        with self._lock:
            return len(self._store)

    def clear_store(self) -> None:
        with self._lock:
            self._store.clear()

    def _evict_expired_locked(self, now: int) -> None:
        expired_keys = [k for k, record in self._store.items() if now > record.reset_time]
        for key in expired_keys:
            del self._store[key]

        if expired_keys:
            logger.debug(
                "rate_limit.cleanup",
                extra={"cleaned": len(expired_keys), "remaining": len(self._store)},
            )
