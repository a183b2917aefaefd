"""Request authenticator: signs and performs one HTTP exchange with the service.

Uses the HTTP port (AbstractHttpClient); the concrete client is built in the
composition root. Statuses are returned as-is, interpreting error bodies is the
caller's job; only transport failures raise.
"""
from __future__ import annotations

from typing import Any

from loguru import logger

from mns.constants import (
    DEFAULT_CONNECT_TIMEOUT_SECONDS,
    DEFAULT_REQUEST_TIMEOUT_SECONDS,
    MNS_VERSION,
    MNS_VERSION_HEADER,
    XML_CONTENT_TYPE,
)
from mns.core import SERVICE_NAME
from mns.domain.errors import TransportError, TransportTimeoutError
from mns.domain.signing import authorization_header, content_md5, gmt_now, sign_request
from mns.ports.http_client import (
    AbstractHttpClient,
    HttpClientError,
    HttpClientTimeoutError,
    RequestTimeout,
)


def _log(event: str, **kwargs: Any) -> None:
    logger.bind(service_name=SERVICE_NAME, event=event, **kwargs).debug("")


class Client:
    """Holds endpoint and credentials; every request is signed with the secret.

    The secret never leaves the process: only the access id and the signature are sent.
    """

    def __init__(
        self,
        endpoint: str,
        access_id: str,
        access_secret: str,
        http_client: AbstractHttpClient,
        *,
        timeout_seconds: float = DEFAULT_REQUEST_TIMEOUT_SECONDS,
        connect_timeout_seconds: float = DEFAULT_CONNECT_TIMEOUT_SECONDS,
    ) -> None:
        self._endpoint = endpoint.rstrip("/")
        self._access_id = access_id
        self._access_secret = access_secret
        self._http_client = http_client
        self._timeout_seconds = float(timeout_seconds)
        self._connect_timeout_seconds = float(connect_timeout_seconds)

    @property
    def endpoint(self) -> str:
        return self._endpoint

    @property
    def access_id(self) -> str:
        return self._access_id

    def __repr__(self) -> str:
        return f"Client(endpoint={self._endpoint!r}, access_id={self._access_id!r})"

    def build_headers(self, resource: str, method: str, content_type: str, body: bytes) -> dict[str, str]:
        date = gmt_now()
        md5 = content_md5(body)
        signature = sign_request(self._access_secret, method, md5, date, resource)
        return {
            "Date": date,
            "Authorization": authorization_header(self._access_id, signature),
            "Content-Type": content_type,
            "Content-MD5": md5,
            MNS_VERSION_HEADER: MNS_VERSION,
        }

    async def request(
        self,
        resource: str,
        method: str,
        content_type: str = XML_CONTENT_TYPE,
        body: bytes | str = b"",
        *,
        timeout_seconds: float | None = None,
    ) -> tuple[int, bytes]:
        """Sign and send one request; return (status_code, raw body)."""
        method = method.upper()
        payload = body.encode("utf-8") if isinstance(body, str) else bytes(body)
        headers = self.build_headers(resource, method, content_type, payload)
        timeout = RequestTimeout(
            connect_seconds=self._connect_timeout_seconds,
            read_seconds=float(timeout_seconds) if timeout_seconds is not None else self._timeout_seconds,
        )
        url = f"{self._endpoint}{resource}"
        try:
            response = await self._http_client.request(
                method,
                url,
                timeout=timeout,
                headers=headers,
                content=payload,
            )
        except HttpClientTimeoutError as exc:
            raise TransportTimeoutError(str(exc)) from exc
        except HttpClientError as exc:
            raise TransportError(str(exc)) from exc

        _log("mns_request", method=method, resource=resource, status=response.status_code)
        return response.status_code, response.content

    async def close(self) -> None:
        await self._http_client.close()
