"""Rate limiter interfaces.

Request handlers depend on this abstraction, never on a concrete backend, so
the in-memory and remote-store limiters stay interchangeable.
"""

from __future__ import annotations

import math
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass

UNLIMITED = math.inf


@dataclass(frozen=True)
class RateLimitConfig:
    """Quota applied to every path under a registered prefix.

    Attributes:
        max_requests: Requests permitted per window.
        window_ms: Window length in milliseconds.
    """

    max_requests: int
    window_ms: int

    def __post_init__(self) -> None:
        if self.max_requests < 1:
            raise ValueError("max_requests must be >= 1")
        if self.window_ms < 1:
            raise ValueError("window_ms must be >= 1")

    @property
    def window_seconds(self) -> int:
        """Window length rounded up to whole seconds."""
        return math.ceil(self.window_ms / 1000)


@dataclass(frozen=True)
class RateLimitResult:
    """Outcome of a single ``check`` call.

    Attributes:
        allowed: Whether the request may proceed.
        remaining: Requests left in the window, ``UNLIMITED`` for unregulated paths.
        reset_time: Epoch milliseconds when the window ends (0 when unregulated).
        retry_after: Seconds the caller should wait; only set when blocked.
    """

    allowed: bool
    remaining: int | float
    reset_time: int
    retry_after: int | None = None

    @property
    def is_unbounded(self) -> bool:
        return self.remaining == UNLIMITED


UNREGULATED_RESULT = RateLimitResult(allowed=True, remaining=UNLIMITED, reset_time=0)


def now_ms() -> int:
    """Current UNIX time in milliseconds."""
    return int(time.time() * 1000)


def retry_after_seconds(ms: int) -> int:
    """Ceiling conversion of a millisecond delay, never below one second."""
    return max(1, math.ceil(ms / 1000))


class AbstractRateLimiter(ABC):
    """Interface for rate limiters.

    Implementations must never raise from ``check`` or ``reset``: every
    internal failure resolves to a concrete result or a silent no-op.
    """

    @abstractmethod
    async def check(self, identifier: str, path: str) -> RateLimitResult:
        """Consume one request for ``identifier`` against the rule matching ``path``.

        Args:
            identifier: Requester key, usually the client IP address.
            path: Request path used to pick the rate limit rule.

        Returns:
            RateLimitResult describing whether the request is allowed.
        """
        raise NotImplementedError

    @abstractmethod
    async def reset(self, identifier: str, path: str) -> None:
        """Forget all recorded requests for ``identifier`` under ``path``'s rule."""
        raise NotImplementedError
