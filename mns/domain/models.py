"""Domain models for queue messages and service responses."""
from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class MessageSendRequest:
    """A message to enqueue. Optional fields are omitted from the XML body when None."""

    message_body: str
    delay_seconds: int | None = None
    priority: int | None = None


@dataclass(frozen=True)
class MessageSendResponse:
    message_id: str
    message_body_md5: str
    # Only assigned for delayed messages.
    receipt_handle: str | None = None


@dataclass(frozen=True)
class MessageReceiveResponse:
    """One dequeued (or peeked) message. Times are epoch milliseconds."""

    message_id: str
    receipt_handle: str
    message_body_md5: str
    message_body: str
    enqueue_time: int
    next_visible_time: int
    first_dequeue_time: int
    dequeue_count: int
    priority: int


@dataclass(frozen=True)
class MessageVisibilityChangeResponse:
    receipt_handle: str
    next_visible_time: int


@dataclass(frozen=True)
class ErrorResponse:
    """Structured error body returned with a non-2xx status."""

    code: str
    request_id: str
    host_id: str
    message: str

    def __str__(self) -> str:
        return (
            f"mns err, code: {self.code}, message: {self.message}, "
            f"request_id: {self.request_id}, host_id: {self.host_id}"
        )


@dataclass(frozen=True)
class BatchSendEntry:
    """Outcome of one message in a batch send, in request order."""

    response: MessageSendResponse | None = None
    error_code: str | None = None
    error_message: str | None = None

    @property
    def ok(self) -> bool:
        return self.response is not None and self.error_code is None
