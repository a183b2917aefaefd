"""Asyncio client for the MNS queue service: signed requests and a bounded-concurrency consumer."""

from mns.application.client import Client
from mns.application.delivery import Delivery, DeliveryResult
from mns.application.queue import Queue
from mns.constants import ConsumerState
from mns.domain.errors import (
    BatchSendError,
    ErrorCode,
    MessageNotExistError,
    MNSError,
    ReceiptHandleError,
    ServiceError,
    TransportError,
    TransportTimeoutError,
    UnknownServiceError,
)
from mns.domain.models import MessageReceiveResponse, MessageSendRequest, MessageSendResponse
from mns.messaging.consumer import ConsumeOptions, Consumer

__all__ = [
    "BatchSendError",
    "Client",
    "ConsumeOptions",
    "Consumer",
    "ConsumerState",
    "Delivery",
    "DeliveryResult",
    "ErrorCode",
    "MessageNotExistError",
    "MessageReceiveResponse",
    "MessageSendRequest",
    "MessageSendResponse",
    "MNSError",
    "Queue",
    "ReceiptHandleError",
    "ServiceError",
    "TransportError",
    "TransportTimeoutError",
    "UnknownServiceError",
]
