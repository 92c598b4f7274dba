"""HTTP adapter for order and upload API operations."""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Optional

import httpx

logger = logging.getLogger(__name__)


class APIError(RuntimeError):
    """Non-retryable HTTP error response."""

    def __init__(self, method: str, endpoint: str, status_code: int, detail: Any):
        self.method = method
        self.endpoint = endpoint
        self.status_code = status_code
        self.detail = detail
        super().__init__(f"API error {status_code} on {method} {endpoint}: {detail}")


class HTTPAPIClient:
    """
    HTTP client adapter for API calls.

    Retries 5xx responses and transport errors with a linear backoff.
    """

    def __init__(
        self,
        base_url: str,
        timeout: int = 60,
        max_retries: int = 3,
        retry_delay: float = 0.5,
        headers: Optional[Dict[str, str]] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._base_url = base_url
        self._timeout = timeout
        self._max_retries = max_retries
        self._retry_delay = retry_delay
        self._headers = headers or {}
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def __aenter__(self):
        self._client = httpx.AsyncClient(
            base_url=self._base_url,
            timeout=self._timeout,
            headers=self._headers,
            transport=self._transport,
        )
        return self

    async def __aexit__(self, *args):
        if self._client:
            await self._client.aclose()
            self._client = None

    async def request(
        self,
        method: str,
        endpoint: str,
        allow_404: bool = False,
        **kwargs,
    ) -> Optional[httpx.Response]:
        """Send a request; returns None for 404 when allow_404 is set."""
        if not self._client:
            raise RuntimeError("HTTPAPIClient not initialized. Use 'async with' context.")

        last_exception: Optional[Exception] = None

        for attempt in range(self._max_retries):
            try:
                response = await self._client.request(method, endpoint, **kwargs)

                if response.status_code >= 500 and attempt < self._max_retries - 1:
                    logger.debug(
                        "%s %s -> %d, retrying", method, endpoint, response.status_code
                    )
                    await asyncio.sleep(self._retry_delay * (attempt + 1))
                    continue

                if response.status_code == 404 and allow_404:
                    return None

                if response.status_code >= 400:
                    try:
                        error_detail = response.json()
                    except Exception:
                        error_detail = response.text
                    raise APIError(method, endpoint, response.status_code, error_detail)

                return response
            except (httpx.RequestError, httpx.TimeoutException) as exc:
                last_exception = exc
                if attempt < self._max_retries - 1:
                    await asyncio.sleep(self._retry_delay * (attempt + 1))
                    continue
                raise

        if last_exception:
            raise last_exception
        raise RuntimeError(f"Failed to {method} {endpoint} after {self._max_retries} attempts")

    async def get(self, endpoint: str, params: Optional[Dict] = None, allow_404: bool = False):
        return await self.request("GET", endpoint, allow_404=allow_404, params=params)

    async def post(self, endpoint: str, json: Optional[Dict] = None):
        return await self.request("POST", endpoint, json=json)

    async def patch(self, endpoint: str, json: Dict):
        return await self.request("PATCH", endpoint, json=json)

    async def put(self, endpoint: str, content: bytes, headers: Optional[Dict[str, str]] = None):
        return await self.request("PUT", endpoint, content=content, headers=headers)
