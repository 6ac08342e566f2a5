"""Admin endpoints for inspecting and overriding rate limit state."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Response, status

from app.adapters.rate_limit.factory import get_rate_limiter
from app.core.auth import verify_api_key
from app.core.rate_limit import hash_identifier
from app.schemas.rate_limit import (
    RateLimitDecision,
    RateLimitRule,
    RateLimitRulesResponse,
    RateLimitTarget,
)

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/rate-limits",
    tags=["Rate Limits"],
    dependencies=[Depends(verify_api_key)],
)


@router.get("/rules", response_model=RateLimitRulesResponse)
async def list_rules() -> RateLimitRulesResponse:
    """List the active rules in the order they are matched."""
    limiter = get_rate_limiter()
    registry = getattr(limiter, "registry", {})
    return RateLimitRulesResponse(
        backend=type(limiter).__name__,
        rules=[
            RateLimitRule(prefix=prefix, max_requests=rule.max_requests, window_ms=rule.window_ms)
            for prefix, rule in registry.items()
        ],
    )


@router.post("/check", response_model=RateLimitDecision)
async def check_rate_limit(target: RateLimitTarget) -> RateLimitDecision:
    """Consume one request for ``target`` and return the decision.

    Lets services that do not run this middleware share the same quotas.
    The response is always 200; callers act on ``allowed``.
    """
    result = await get_rate_limiter().check(target.identifier, target.path)
    return RateLimitDecision.from_result(result)


@router.post("/reset", status_code=status.HTTP_204_NO_CONTENT)
async def reset_rate_limit(target: RateLimitTarget) -> Response:
    """Clear recorded requests for ``target`` (administrative override)."""
    await get_rate_limiter().reset(target.identifier, target.path)
    logger.info(
        "rate_limit.reset",
        extra={"identifier_hash": hash_identifier(target.identifier), "route": target.path},
    )
    return Response(status_code=status.HTTP_204_NO_CONTENT)
