"""
http.py - Streaming POST helper shared by the HTTP backends

Owns one lazily created ``httpx.AsyncClient`` and turns transport failures
and error statuses into the provider error taxonomy.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from typing import Any

import httpx

from omni_pilot.core.errors import NetworkError

from .base import error_for_status


class StreamingHTTPClient:
    """POSTs JSON and yields the decoded response body as it arrives."""

    def __init__(
        self,
        base_url: str,
        headers: dict[str, str] | None = None,
        connect_timeout: float = 30.0,
        response_timeout: float = 300.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize the client.

        Args:
            base_url: Endpoint root, trailing slash ignored
            headers: Extra headers sent with every request
            connect_timeout: Seconds allowed to connect
            response_timeout: Seconds allowed between reads
            transport: Replacement transport (tests use httpx.MockTransport)
        """
        self.base_url = base_url.rstrip("/")
        self.headers = headers or {}
        self.connect_timeout = connect_timeout
        self.response_timeout = response_timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def _ensure_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                headers=self.headers,
                timeout=httpx.Timeout(self.response_timeout, connect=self.connect_timeout),
                transport=self._transport,
            )
        return self._client

    async def stream_post(self, path: str, payload: dict[str, Any]) -> AsyncIterator[str]:
        """Yield text chunks of the response body.

        Raises:
            ProviderError subclasses for error statuses
            NetworkError: On connection failures and timeouts
        """
        client = await self._ensure_client()
        try:
            async with client.stream("POST", path, json=payload) as response:
                if response.status_code >= 400:
                    body = (await response.aread()).decode("utf-8", errors="replace")
                    raise error_for_status(response.status_code, body, response.headers)
                async for chunk in response.aiter_text():
                    yield chunk
        except httpx.TimeoutException as e:
            raise NetworkError(f"Request to {self.base_url}{path} timed out: {e}") from e
        except httpx.HTTPError as e:
            raise NetworkError(f"Request to {self.base_url}{path} failed: {e}") from e

    async def close(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None


__all__ = ["StreamingHTTPClient"]
