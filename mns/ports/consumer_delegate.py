"""Port: per-delivery handler plugged into the consumer engine."""
from __future__ import annotations

from typing import Protocol, runtime_checkable

from mns.application.delivery import DeliveryResult


@runtime_checkable
class ConsumerDelegate(Protocol):
    """Receives every delivery (or the error that stopped the consumer)."""

    async def handle(self, result: DeliveryResult) -> None: ...
