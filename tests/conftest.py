"""Pytest configuration and fixtures shared across all test modules.

Environment variables are set here, before any app import, because
``app.core.config.settings`` is built at import time.
"""

import os

os.environ["APP_ENV"] = "testing"
os.environ.setdefault("APP_API_KEY_REQUIRED", "true")
os.environ.setdefault("APP_API_KEYS", "test-api-key-123,test-api-key-456")
os.environ.setdefault("LOG_LEVEL", "WARNING")
# Tests default to the in-memory backend; remote tests build their own clients.
os.environ.pop("UPSTASH_REDIS_REST_URL", None)
os.environ.pop("UPSTASH_REDIS_REST_TOKEN", None)

from typing import Iterator

import pytest

from app.adapters.rate_limit.factory import reset_rate_limiter


@pytest.fixture(autouse=True)
def _isolated_rate_limiter(monkeypatch: pytest.MonkeyPatch) -> Iterator[None]:
    """Give every test a fresh singleton and no remote store configured."""
    monkeypatch.delenv("UPSTASH_REDIS_REST_URL", raising=False)
    monkeypatch.delenv("UPSTASH_REDIS_REST_TOKEN", raising=False)
    reset_rate_limiter()
    yield
    reset_rate_limiter()
