"""Application-level exception types.

Errors raised by adapters and the admin API. The rate limiter itself never
lets these escape ``check``/``reset``; they surface only from the REST client
and from the admin API key guard.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, NotRequired, TypedDict


class ErrorDetails(TypedDict, total=False):
    """Structured error context for observability and clients."""

    code: str
    message: str
    hint: str
    http_status: int
    retry_after: int
    command: str
    request_id: str
    context: NotRequired[dict[str, Any]]


@dataclass
class AppError(Exception):
    """Base error for application/domain failures.

    Attributes:
        code: Stable, machine-readable error code.
        message: Human-readable error message.
        details: Optional structured details for debugging/observability.
    """

    code: str
    message: str
    details: ErrorDetails | None = None

    def __post_init__(self) -> None:
        super().__init__(self.message)


class AuthenticationAppError(AppError):
    """Raised when authentication/authorization fails."""


class RemoteStoreAppError(AppError):
    """Raised when the key-value store rejects or fails a command."""
