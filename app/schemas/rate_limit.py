"""Pydantic schemas for the rate limit admin API."""

from __future__ import annotations

from typing import List

from pydantic import BaseModel, Field

from app.adapters.rate_limit.base import RateLimitResult


class RateLimitTarget(BaseModel):
    """Identifier/path pair addressed by check and reset calls."""

    identifier: str = Field(
        ..., description="Requester key, typically the client IP address."
    )
    path: str = Field(
        ...,
        description="Request path (or registered prefix) used to select the rule.",
        pattern=r"^/",
    )


class RateLimitRule(BaseModel):
    """One registered prefix and its quota."""

    prefix: str = Field(..., description="Path prefix matched with startswith.")
    max_requests: int = Field(..., description="Requests permitted per window.")
    window_ms: int = Field(..., description="Window length in milliseconds.")


class RateLimitRulesResponse(BaseModel):
    """Active rules in match order (first match wins)."""

    backend: str = Field(..., description="Limiter implementation in use.")
    rules: List[RateLimitRule] = Field(default_factory=list)


class RateLimitDecision(BaseModel):
    """Serialized RateLimitResult."""

    allowed: bool
    remaining: int | None = Field(
        ..., description="Requests left in the window; null when the path is unregulated."
    )
    reset_time: int = Field(
        ..., description="Epoch milliseconds when the window ends (0 when unregulated)."
    )
    retry_after: int | None = Field(
        default=None, description="Seconds to wait before retrying; set only when blocked."
    )

    @classmethod
    def from_result(cls, result: RateLimitResult) -> "RateLimitDecision":
        return cls(
            allowed=result.allowed,
            remaining=None if result.is_unbounded else int(result.remaining),
            reset_time=result.reset_time,
            retry_after=result.retry_after,
        )
