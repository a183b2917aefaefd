"""httpx implementation of the HTTP port used by the signed MNS client."""
from __future__ import annotations

from typing import Mapping

import httpx

from mns.ports.http_client import (
    AbstractHttpClient,
    HttpClientError,
    HttpClientTimeoutError,
    HttpResponse,
    RequestTimeout,
)


def _to_httpx_timeout(timeout: RequestTimeout) -> httpx.Timeout:
    # Long-polls hold the read side open; the pool wait follows the connect budget.
    return httpx.Timeout(
        timeout.read_seconds,
        connect=timeout.connect_seconds,
        pool=timeout.connect_seconds,
    )


class _HttpxResponse:
    """HttpResponse view over an httpx.Response; the body is already read."""

    def __init__(self, response: httpx.Response) -> None:
        self._response = response

    @property
    def status_code(self) -> int:
        return self._response.status_code

    @property
    def headers(self) -> Mapping[str, str]:
        return self._response.headers

    @property
    def content(self) -> bytes:
        return self._response.content


class HttpxHttpClient(AbstractHttpClient):
    """Sends already-signed MNS requests through one shared httpx.AsyncClient."""

    def __init__(self, client: httpx.AsyncClient) -> None:
        self._client = client

    async def request(
        self,
        method: str,
        url: str,
        *,
        timeout: RequestTimeout,
        headers: dict[str, str] | None = None,
        content: bytes = b"",
    ) -> HttpResponse:
        # Headers are passed through untouched: Date, Content-MD5 and Authorization are signed.
        try:
            response = await self._client.request(
                method,
                url,
                content=content,
                headers=headers,
                timeout=_to_httpx_timeout(timeout),
            )
        except httpx.TimeoutException as exc:
            raise HttpClientTimeoutError(f"{method} {url} timed out after {timeout.read_seconds}s") from exc
        except httpx.HTTPError as exc:
            raise HttpClientError(f"{method} {url} failed: {exc}") from exc
        return _HttpxResponse(response)

    async def close(self) -> None:
        await self._client.aclose()
