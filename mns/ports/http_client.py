"""HTTP client port: contract for performing raw HTTP exchanges.

The request authenticator depends on this port; infrastructure (e.g. httpx)
implements it. Keeps signing and queue logic free of transport imports.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Mapping, Protocol, runtime_checkable


class HttpClientError(Exception):
    """Base for HTTP client failures (network, protocol, etc.)."""


class HttpClientTimeoutError(HttpClientError):
    """Raised when the request times out."""


@runtime_checkable
class HttpResponse(Protocol):
    """Minimal read-only view of an HTTP response."""

    @property
    def status_code(self) -> int: ...

    @property
    def headers(self) -> Mapping[str, str]: ...

    @property
    def content(self) -> bytes: ...


@dataclass(frozen=True)
class RequestTimeout:
    """Connect and read timeouts in seconds."""

    connect_seconds: float
    read_seconds: float


@runtime_checkable
class AbstractHttpClient(Protocol):
    """Port: perform one HTTP request. Implementations live in infrastructure."""

    async def request(
        self,
        method: str,
        url: str,
        *,
        timeout: RequestTimeout,
        headers: dict[str, str] | None = None,
        content: bytes = b"",
    ) -> HttpResponse:
        """Perform the request; raise HttpClientTimeoutError or HttpClientError on failure.

        Non-2xx statuses are returned, not raised.
        """
        ...

    async def close(self) -> None:
        """Release resources (e.g. connection pool). No-op allowed if nothing to close."""
        ...
