"""Minimal async client for an Upstash-style Redis REST API.

Commands are JSON arrays POSTed to the base URL; batches go to
``{base_url}/pipeline`` and are executed in order as one request. Both
endpoints authenticate with a bearer token.
"""

from __future__ import annotations

from typing import Any, Sequence

import httpx

from app.core.errors import RemoteStoreAppError

Command = Sequence[str]


class UpstashRestClient:
    """Thin wrapper over ``httpx.AsyncClient`` speaking the Redis REST protocol."""

    def __init__(
        self,
        base_url: str,
        token: str,
        *,
        timeout_seconds: float = 2.0,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize the REST client.

        Args:
            base_url: Store REST endpoint, e.g. ``https://eu1-x.upstash.io``.
            token: Bearer token for the REST API.
            timeout_seconds: Timeout applied to every call.
            http_client: Pre-built client (tests inject one with a mock transport).
        """
        self._base_url = base_url.rstrip("/")
        self._headers = {
            "Authorization": f"Bearer {token}",
            "Content-Type": "application/json",
        }
        self._client = http_client or httpx.AsyncClient(timeout=timeout_seconds)

    async def command(self, command: Command) -> Any:
        """Execute a single command and return its ``result`` value.

        Raises:
            RemoteStoreAppError: On a non-2xx status or an ``error`` reply.
            httpx.HTTPError: On transport failures (timeouts, connection errors).
        """
        payload = await self._post(self._base_url, list(command))
        return self._unwrap(payload, command)

    async def pipeline(self, commands: Sequence[Command]) -> list[Any]:
        """Execute ``commands`` as one pipelined batch and return each result.

        Raises:
            RemoteStoreAppError: On a non-2xx status, a malformed reply, or if
                any command in the batch reports an error.
            httpx.HTTPError: On transport failures.
        """
        payload = await self._post(
            f"{self._base_url}/pipeline", [list(command) for command in commands]
        )
        if not isinstance(payload, list) or len(payload) != len(commands):
            raise RemoteStoreAppError(
                code="remote_store_malformed_reply",
                message="Pipeline reply does not match the submitted batch",
            )
        return [self._unwrap(entry, command) for entry, command in zip(payload, commands)]

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _post(self, url: str, body: Any) -> Any:
        response = await self._client.post(url, json=body, headers=self._headers)
        if response.status_code >= 400:
            raise RemoteStoreAppError(
                code="remote_store_http_error",
                message=f"Remote store returned HTTP {response.status_code}",
                details={"http_status": response.status_code},
            )
        try:
            return response.json()
        except ValueError as exc:
            raise RemoteStoreAppError(
                code="remote_store_malformed_reply",
                message="Remote store reply is not valid JSON",
            ) from exc

    @staticmethod
    def _unwrap(entry: Any, command: Command) -> Any:
        if not isinstance(entry, dict):
            raise RemoteStoreAppError(
                code="remote_store_malformed_reply",
                message="Remote store reply entry is not an object",
                details={"command": command[0]},
            )
        if "error" in entry:
            raise RemoteStoreAppError(
                code="remote_store_command_error",
                message=str(entry["error"]),
                details={"command": command[0]},
            )
        return entry.get("result")
