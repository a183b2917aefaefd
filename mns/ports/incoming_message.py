"""Port: abstraction for a dequeued message handed to consumer delegates."""
from __future__ import annotations

from typing import Any, Protocol, runtime_checkable


@runtime_checkable
class IncomingMessage(Protocol):
    """Transport-agnostic incoming message. Delegates use this; Delivery implements it."""

    @property
    def body(self) -> bytes: ...

    @property
    def receipt_handle(self) -> str: ...

    @property
    def processed(self) -> bool: ...

    async def ack(self) -> None: ...

    async def reject(self) -> Any: ...
