"""Tests for the Redis REST backed sliding-window limiter.

The store is simulated with ``httpx.MockTransport`` so the real client code
(request building, auth header, reply parsing) is exercised end to end.
"""

import asyncio
import json
from typing import Any
from unittest.mock import Mock

import httpx
import pytest

from app.adapters.rate_limit.base import UNLIMITED, RateLimitConfig
from app.adapters.rate_limit.remote_store import RemoteStoreRateLimiter
from app.adapters.rate_limit.upstash_client import UpstashRestClient
from app.core.errors import RemoteStoreAppError

BASE_URL = "https://store.example.com"
TOKEN = "secret-token"
LOGIN = "/api/auth/login"
IP = "192.168.1.1"


class FakeRedisRest:
    """Sorted-set subset of the Redis REST API, kept in memory."""

    def __init__(self) -> None:
        self.zsets: dict[str, dict[str, float]] = {}
        self.ttls: dict[str, int] = {}
        self.requests: list[httpx.Request] = []
        self.fail_commands: set[str] = set()

    def _run(self, command: list[str]) -> dict[str, Any]:
        name, key, *args = command
        if name in self.fail_commands:
            return {"error": f"ERR {name} disabled"}
        zset = self.zsets.setdefault(key, {})
        if name == "ZREMRANGEBYSCORE":
            low, high = float(args[0]), float(args[1])
            doomed = [m for m, s in zset.items() if low <= s <= high]
            for member in doomed:
                del zset[member]
            return {"result": len(doomed)}
        if name == "ZCARD":
            return {"result": len(zset)}
        if name == "ZADD":
            zset[args[1]] = float(args[0])
            return {"result": 1}
        if name == "ZREM":
            return {"result": 1 if zset.pop(args[0], None) is not None else 0}
        if name == "EXPIRE":
            self.ttls[key] = int(args[0])
            return {"result": 1}
        if name == "DEL":
            existed = key in self.zsets
            self.zsets.pop(key, None)
            return {"result": int(existed)}
        return {"error": f"ERR unknown command {name}"}

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        body = json.loads(request.content)
        if request.url.path == "/pipeline":
            return httpx.Response(200, json=[self._run(cmd) for cmd in body])
        return httpx.Response(200, json=self._run(body))


def _limiter(
    store: FakeRedisRest,
    config: dict[str, RateLimitConfig] | None = None,
    clock: Mock | None = None,
) -> RemoteStoreRateLimiter:
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(store.handler))
    client = UpstashRestClient(BASE_URL, TOKEN, http_client=http_client)
    return RemoteStoreRateLimiter(client, config, clock=clock or Mock(return_value=1_000_000))


def _failing_limiter(handler) -> RemoteStoreRateLimiter:
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    client = UpstashRestClient(BASE_URL, TOKEN, http_client=http_client)
    return RemoteStoreRateLimiter(client, clock=Mock(return_value=1_000_000))


class TestRemoteStoreCheck:
    @pytest.mark.asyncio
    async def test_allows_until_limit_then_blocks(self) -> None:
        store = FakeRedisRest()
        limiter = _limiter(store)

        remaining = [(await limiter.check(IP, LOGIN)).remaining for _ in range(5)]
        assert remaining == [4, 3, 2, 1, 0]

        blocked = await limiter.check(IP, LOGIN)
        assert blocked.allowed is False
        assert blocked.remaining == 0
        assert blocked.retry_after == 15 * 60
        assert blocked.reset_time == 1_000_000 + 15 * 60 * 1000

    @pytest.mark.asyncio
    async def test_rejected_request_is_removed_from_window(self) -> None:
        store = FakeRedisRest()
        limiter = _limiter(store)
        for _ in range(5):
            await limiter.check(IP, LOGIN)

        for _ in range(3):
            assert (await limiter.check(IP, LOGIN)).allowed is False

        assert len(store.zsets[f"ratelimit:{IP}:{LOGIN}"]) == 5

    @pytest.mark.asyncio
    async def test_same_millisecond_requests_are_distinct_members(self) -> None:
        store = FakeRedisRest()
        limiter = _limiter(store)

        await limiter.check(IP, LOGIN)
        await limiter.check(IP, LOGIN)

        assert len(store.zsets[f"ratelimit:{IP}:{LOGIN}"]) == 2

    @pytest.mark.asyncio
    async def test_sends_expected_pipeline(self) -> None:
        store = FakeRedisRest()
        limiter = _limiter(store)

        await limiter.check(IP, "/api/auth/login/oauth")

        request = store.requests[0]
        assert str(request.url) == f"{BASE_URL}/pipeline"
        assert request.method == "POST"
        assert request.headers["Authorization"] == f"Bearer {TOKEN}"
        commands = json.loads(request.content)
        key = f"ratelimit:{IP}:{LOGIN}"
        assert commands[0] == ["ZREMRANGEBYSCORE", key, "0", str(1_000_000 - 15 * 60 * 1000)]
        assert commands[1] == ["ZCARD", key]
        assert commands[2][:3] == ["ZADD", key, "1000000"]
        assert commands[3] == ["EXPIRE", key, "900"]

    @pytest.mark.asyncio
    async def test_sliding_window_purges_old_entries(self) -> None:
        store = FakeRedisRest()
        clock = Mock(return_value=1_000_000)
        limiter = _limiter(store, {"/api/test": RateLimitConfig(max_requests=2, window_ms=1000)}, clock)

        await limiter.check(IP, "/api/test")
        clock.return_value = 1_000_600
        await limiter.check(IP, "/api/test")
        assert (await limiter.check(IP, "/api/test")).allowed is False

        # First request slides out of the window; the second still counts.
        clock.return_value = 1_001_100
        result = await limiter.check(IP, "/api/test")
        assert result.allowed is True
        assert result.remaining == 0

    @pytest.mark.asyncio
    async def test_unregulated_path_skips_store(self) -> None:
        store = FakeRedisRest()
        limiter = _limiter(store)

        result = await limiter.check(IP, "/api/products")

        assert result.allowed is True
        assert result.remaining == UNLIMITED
        assert result.reset_time == 0
        assert store.requests == []

    @pytest.mark.asyncio
    async def test_isolated_by_identifier_and_path(self) -> None:
        store = FakeRedisRest()
        limiter = _limiter(store)
        for _ in range(5):
            await limiter.check(IP, LOGIN)

        assert (await limiter.check("192.168.1.2", LOGIN)).remaining == 4
        assert (await limiter.check(IP, "/api/contact")).allowed is True

    @pytest.mark.asyncio
    async def test_concurrent_burst_is_counted_by_store(self) -> None:
        store = FakeRedisRest()
        limiter = _limiter(store)

        results = await asyncio.gather(*(limiter.check(IP, LOGIN) for _ in range(10)))

        assert sum(r.allowed for r in results) == 5


class TestRemoteStoreFailOpen:
    @pytest.mark.asyncio
    async def test_server_error_allows_request(self) -> None:
        limiter = _failing_limiter(lambda request: httpx.Response(500, text="boom"))

        result = await limiter.check(IP, LOGIN)

        assert result.allowed is True
        assert result.remaining == 5
        assert result.reset_time == 1_000_000 + 15 * 60 * 1000
        assert result.retry_after is None

    @pytest.mark.asyncio
    async def test_transport_exception_allows_request(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        limiter = _failing_limiter(handler)

        result = await limiter.check(IP, LOGIN)

        assert result.allowed is True
        assert result.remaining == 5

    @pytest.mark.asyncio
    async def test_command_error_in_batch_allows_request(self) -> None:
        store = FakeRedisRest()
        store.fail_commands.add("ZCARD")
        limiter = _limiter(store)

        assert (await limiter.check(IP, LOGIN)).allowed is True

    @pytest.mark.asyncio
    async def test_malformed_reply_allows_request(self) -> None:
        limiter = _failing_limiter(lambda request: httpx.Response(200, json={"unexpected": True}))

        assert (await limiter.check(IP, LOGIN)).allowed is True

    @pytest.mark.asyncio
    async def test_failed_compensation_still_blocks(self) -> None:
        store = FakeRedisRest()
        limiter = _limiter(store, {"/api/test": RateLimitConfig(max_requests=1, window_ms=1000)})
        await limiter.check(IP, "/api/test")
        store.fail_commands.add("ZREM")

        blocked = await limiter.check(IP, "/api/test")

        assert blocked.allowed is False
        assert blocked.retry_after == 1


class TestRemoteStoreReset:
    @pytest.mark.asyncio
    async def test_reset_deletes_key(self) -> None:
        store = FakeRedisRest()
        limiter = _limiter(store)
        for _ in range(6):
            await limiter.check(IP, LOGIN)

        await limiter.reset(IP, LOGIN)

        last = store.requests[-1]
        assert last.url.host == "store.example.com"
        assert last.url.path in ("", "/")
        assert json.loads(last.content) == ["DEL", f"ratelimit:{IP}:{LOGIN}"]
        assert (await limiter.check(IP, LOGIN)).remaining == 4

    @pytest.mark.asyncio
    async def test_reset_swallows_errors(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("timed out", request=request)

        limiter = _failing_limiter(handler)

        await limiter.reset(IP, LOGIN)


class TestUpstashRestClient:
    @pytest.mark.asyncio
    async def test_command_raises_on_http_error(self) -> None:
        http_client = httpx.AsyncClient(
            transport=httpx.MockTransport(lambda request: httpx.Response(401, json={"error": "unauthorized"}))
        )
        client = UpstashRestClient(BASE_URL, TOKEN, http_client=http_client)

        with pytest.raises(RemoteStoreAppError) as exc_info:
            await client.command(["DEL", "k"])

        assert exc_info.value.code == "remote_store_http_error"
        assert exc_info.value.details == {"http_status": 401}

    @pytest.mark.asyncio
    async def test_pipeline_rejects_length_mismatch(self) -> None:
        http_client = httpx.AsyncClient(
            transport=httpx.MockTransport(lambda request: httpx.Response(200, json=[{"result": 1}]))
        )
        client = UpstashRestClient(f"{BASE_URL}/", TOKEN, http_client=http_client)

        with pytest.raises(RemoteStoreAppError) as exc_info:
            await client.pipeline([["ZCARD", "k"], ["ZCARD", "j"]])

        assert exc_info.value.code == "remote_store_malformed_reply"
