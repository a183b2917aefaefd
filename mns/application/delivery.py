"""Delivery: one dequeued message plus the ability to ack or reject it."""
from __future__ import annotations

from dataclasses import dataclass

from mns.application.queue import Queue
from mns.constants import DEFAULT_REJECT_VISIBILITY_TIMEOUT
from mns.domain.models import MessageReceiveResponse, MessageVisibilityChangeResponse


class Delivery:
    """Implements mns.ports.incoming_message.IncomingMessage for the MNS queue.

    The server is the only authority on redelivery: there is no local timer. If
    neither ack() nor reject() is called before next_visible_time, the message
    simply becomes visible to other consumers again. Neither call is idempotent
    remotely; `processed` only records that one of them was attempted.
    """

    def __init__(
        self,
        message: MessageReceiveResponse,
        queue: Queue,
        *,
        reject_visibility_timeout: int = DEFAULT_REJECT_VISIBILITY_TIMEOUT,
    ) -> None:
        self._message = message
        self._queue = queue
        self._data = message.message_body.encode("utf-8")
        self._reject_visibility_timeout = reject_visibility_timeout
        self._processed = False

    @property
    def body(self) -> bytes:
        return self._data

    @property
    def data(self) -> bytes:
        return self._data

    @property
    def receipt_handle(self) -> str:
        return self._message.receipt_handle

    @property
    def next_visible_time(self) -> int:
        return self._message.next_visible_time

    @property
    def message(self) -> MessageReceiveResponse:
        return self._message

    @property
    def queue(self) -> Queue:
        return self._queue

    @property
    def processed(self) -> bool:
        return self._processed

    def __repr__(self) -> str:
        return (
            f"Delivery(message_id={self._message.message_id!r}, queue={self._queue.name!r}, "
            f"next_visible_time={self._message.next_visible_time})"
        )

    async def ack(self) -> None:
        """Delete the message by receipt handle.

        Raises ReceiptHandleError / MessageNotExistError when the handle is stale.
        """
        self._processed = True
        await self._queue.delete_message(self._message.receipt_handle)

    async def reject(self) -> MessageVisibilityChangeResponse:
        """Make the message visible again after a short timeout instead of its full window."""
        self._processed = True
        return await self._queue.change_message_visibility(
            self._message.receipt_handle,
            self._reject_visibility_timeout,
        )


@dataclass(frozen=True)
class DeliveryResult:
    """What a consumer delegate receives: a delivery, or the error that stopped the consumer."""

    delivery: Delivery | None = None
    error: BaseException | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def unwrap(self) -> Delivery | None:
        if self.error is not None:
            raise self.error
        return self.delivery
