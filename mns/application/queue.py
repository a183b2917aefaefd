"""Queue operations: send, receive, peek, delete and change visibility of messages.

Each operation builds its resource path and XML body, calls the signed client,
and decodes either the success body or the structured error body.
"""
from __future__ import annotations

from typing import NoReturn

from mns.application.client import Client
from mns.constants import MAX_BATCH_SIZE, MAX_WAIT_SECONDS, XML_CONTENT_TYPE
from mns.domain.errors import (
    BatchSendError,
    DeserializeResponseError,
    MessageNotExistError,
    UnknownServiceError,
    error_from_response,
)
from mns.domain.models import (
    ErrorResponse,
    MessageReceiveResponse,
    MessageSendRequest,
    MessageSendResponse,
    MessageVisibilityChangeResponse,
)
from mns.infrastructure.xml import codec


def _is_success(status_code: int) -> bool:
    return 200 <= status_code < 300


def _raise_for_error(status_code: int, body: bytes) -> NoReturn:
    try:
        response = codec.decode_error_response(body)
    except DeserializeResponseError as exc:
        # Gateways in front of the service answer with HTML or empty bodies.
        snippet = body[:200].decode("utf-8", errors="replace")
        raise UnknownServiceError(
            ErrorResponse(code="", request_id="", host_id="", message=f"http {status_code}: {snippet}"),
            status_code,
        ) from exc
    raise error_from_response(response, status_code)


def _check_wait_seconds(wait_seconds: int | None) -> None:
    if wait_seconds is not None and not 0 <= wait_seconds <= MAX_WAIT_SECONDS:
        raise ValueError(f"wait_seconds must be between 0 and {MAX_WAIT_SECONDS}, got {wait_seconds}")


class Queue:
    """Message operations on one named queue."""

    def __init__(self, name: str, client: Client) -> None:
        if not name:
            raise ValueError("queue name must not be empty")
        self._name = name
        self._client = client

    @property
    def name(self) -> str:
        return self._name

    @property
    def client(self) -> Client:
        return self._client

    def __repr__(self) -> str:
        return f"Queue(name={self._name!r})"

    @property
    def _messages_path(self) -> str:
        return f"/queues/{self._name}/messages"

    def _receipt_path(self, receipt_handle: str) -> str:
        return f"{self._messages_path}?ReceiptHandle={receipt_handle}"

    async def send_message(self, request: MessageSendRequest) -> MessageSendResponse:
        status_code, body = await self._client.request(
            self._messages_path,
            "POST",
            XML_CONTENT_TYPE,
            codec.encode_message_send_request(request),
        )
        if not _is_success(status_code):
            _raise_for_error(status_code, body)
        return codec.decode_message_send_response(body)

    async def batch_send_messages(self, requests: list[MessageSendRequest]) -> list[MessageSendResponse]:
        """Send up to 16 messages in one call.

        All-success returns one response per request, in order. If any entry
        fails, BatchSendError is raised with every entry (successes included) so
        the caller can tell which messages were enqueued.
        """
        if not 1 <= len(requests) <= MAX_BATCH_SIZE:
            raise ValueError(f"batch size must be between 1 and {MAX_BATCH_SIZE}, got {len(requests)}")
        status_code, body = await self._client.request(
            self._messages_path,
            "POST",
            XML_CONTENT_TYPE,
            codec.encode_batch_send_request(requests),
        )
        if _is_success(status_code):
            entries = codec.decode_batch_send_response(body)
            if all(entry.ok for entry in entries):
                return [entry.response for entry in entries if entry.response is not None]
            raise BatchSendError(entries, status_code)
        if codec.is_batch_body(body):
            raise BatchSendError(codec.decode_batch_send_response(body), status_code)
        _raise_for_error(status_code, body)

    async def receive_message(self, wait_seconds: int | None = None) -> MessageReceiveResponse:
        """Receive one message, long-polling up to wait_seconds.

        Raises MessageNotExistError when the queue stays empty for the whole wait.
        """
        _check_wait_seconds(wait_seconds)
        resource = self._messages_path
        timeout_seconds = None
        if wait_seconds is not None:
            resource = f"{resource}?waitseconds={wait_seconds}"
            timeout_seconds = wait_seconds + 1
        status_code, body = await self._client.request(
            resource,
            "GET",
            XML_CONTENT_TYPE,
            b"",
            timeout_seconds=timeout_seconds,
        )
        if not _is_success(status_code):
            _raise_for_error(status_code, body)
        return codec.decode_message_receive_response(body)

    async def batch_receive_messages(
        self,
        num_of_messages: int,
        wait_seconds: int | None = None,
    ) -> list[MessageReceiveResponse]:
        """Receive up to num_of_messages; an empty queue yields []."""
        if not 1 <= num_of_messages <= MAX_BATCH_SIZE:
            raise ValueError(f"num_of_messages must be between 1 and {MAX_BATCH_SIZE}, got {num_of_messages}")
        _check_wait_seconds(wait_seconds)
        resource = f"{self._messages_path}?numOfMessages={num_of_messages}"
        timeout_seconds = None
        if wait_seconds is not None:
            resource = f"{resource}&waitseconds={wait_seconds}"
            timeout_seconds = wait_seconds + 1
        status_code, body = await self._client.request(
            resource,
            "GET",
            XML_CONTENT_TYPE,
            b"",
            timeout_seconds=timeout_seconds,
        )
        if not _is_success(status_code):
            try:
                _raise_for_error(status_code, body)
            except MessageNotExistError:
                return []
        return codec.decode_batch_receive_response(body)

    async def peek_message(self) -> MessageReceiveResponse:
        status_code, body = await self._client.request(
            f"{self._messages_path}?peekonly=true",
            "GET",
            XML_CONTENT_TYPE,
            b"",
        )
        if not _is_success(status_code):
            _raise_for_error(status_code, body)
        return codec.decode_message_receive_response(body)

    async def delete_message(self, receipt_handle: str) -> None:
        status_code, body = await self._client.request(
            self._receipt_path(receipt_handle),
            "DELETE",
            XML_CONTENT_TYPE,
            b"",
        )
        if not _is_success(status_code):
            _raise_for_error(status_code, body)

    async def change_message_visibility(
        self,
        receipt_handle: str,
        visibility_timeout: int,
    ) -> MessageVisibilityChangeResponse:
        status_code, body = await self._client.request(
            f"{self._receipt_path(receipt_handle)}&VisibilityTimeout={visibility_timeout}",
            "PUT",
            XML_CONTENT_TYPE,
            b"",
        )
        if not _is_success(status_code):
            _raise_for_error(status_code, body)
        return codec.decode_visibility_change_response(body)
