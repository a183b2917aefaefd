"""Error taxonomy for the MNS client.

Transport failures (connection, timeout) and protocol failures (a non-2xx
status with a structured error body) are kept apart: the first never reached
the service, the second carries the server's code, message and request id.
"""
from __future__ import annotations

from enum import Enum

from mns.domain.models import BatchSendEntry, ErrorResponse


class ErrorCode(str, Enum):
    UNKNOWN = "Unknown"
    ACCESS_DENIED = "AccessDenied"
    INVALID_ACCESS_KEY_ID = "InvalidAccessKeyId"
    INTERNAL_ERROR = "InternalError"
    INVALID_AUTHORIZATION_HEADER = "InvalidAuthorizationHeader"
    INVALID_DATE_HEADER = "InvalidDateHeader"
    INVALID_ARGUMENT = "InvalidArgument"
    INVALID_DIGEST = "InvalidDigest"
    INVALID_REQUEST_URL = "InvalidRequestURL"
    INVALID_QUERY_STRING = "InvalidQueryString"
    MALFORMED_XML = "MalformedXML"
    MISSING_AUTHORIZATION_HEADER = "MissingAuthorizationHeader"
    MISSING_DATE_HEADER = "MissingDateHeader"
    MISSING_VERSION_HEADER = "MissingVersionHeader"
    MISSING_RECEIPT_HANDLE = "MissingReceiptHandle"
    MISSING_VISIBILITY_TIMEOUT = "MissingVisibilityTimeout"
    MESSAGE_NOT_EXIST = "MessageNotExist"
    QUEUE_ALREADY_EXIST = "QueueAlreadyExist"
    QUEUE_DELETED_RECENTLY = "QueueDeletedRecently"
    INVALID_QUEUE_NAME = "InvalidQueueName"
    INVALID_VERSION_HEADER = "InvalidVersionHeader"
    INVALID_CONTENT_TYPE = "InvalidContentType"
    QUEUE_NAME_LENGTH_ERROR = "QueueNameLengthError"
    QUEUE_NOT_EXIST = "QueueNotExist"
    RECEIPT_HANDLE_ERROR = "ReceiptHandleError"
    SIGNATURE_DOES_NOT_MATCH = "SignatureDoesNotMatch"
    TIME_EXPIRED = "TimeExpired"
    QPS_LIMIT_EXCEEDED = "QpsLimitExceeded"
    TOPIC_NAME_LENGTH_ERROR = "TopicNameLengthError"
    SUBSCRIPTION_NAME_LENGTH_ERROR = "SubscriptionNameLengthError"
    TOPIC_NOT_EXIST = "TopicNotExist"
    TOPIC_ALREADY_EXIST = "TopicAlreadyExist"
    INVALID_TOPIC_NAME = "InvalidTopicName"
    INVALID_SUBSCRIPTION_NAME = "InvalidSubscriptionName"
    SUBSCRIPTION_ALREADY_EXIST = "SubscriptionAlreadyExist"
    INVALID_ENDPOINT = "EndpointInvalid"
    SUBSCRIBER_NOT_EXIST = "SubscriberNotExist"
    TOPIC_NAME_IS_TOO_LONG = "TopicNameIsTooLong"
    TOPIC_ALREADY_EXIST_AND_HAVE_SAME_ATTR = "TopicAlreadyExistAndHaveSameAttr"
    SUBSCRIPTION_ALREADY_EXIST_AND_HAVE_SAME_ATTR = "SubscriptionAlreadyExistAndHaveSameAttr"
    QUEUE_NAME_IS_TOO_LONG = "QueueNameIsTooLong"
    DELAY_SECONDS_RANGE_ERROR = "DelaySecondsRangeError"
    MAX_MESSAGE_SIZE_RANGE_ERROR = "MaxMessageSizeRangeError"
    MSG_RETENTION_PERIOD_RANGE_ERROR = "MsgRetentionPeriodRangeError"
    POLLING_WAIT_SECONDS_RANGE_ERROR = "PollingWaitSecondsRangeError"
    BATCH_OP_FAIL = "BatchOpFail"


# Spellings the service is known to send besides the canonical ones.
_CODE_ALIASES: dict[str, ErrorCode] = {
    "InvalidDegist": ErrorCode.INVALID_DIGEST,
    "MaxMessageSiZeRangeError": ErrorCode.MAX_MESSAGE_SIZE_RANGE_ERROR,
    "SubsriptionNameInvalid": ErrorCode.INVALID_SUBSCRIPTION_NAME,
}


def parse_error_code(code: str) -> ErrorCode:
    if code in _CODE_ALIASES:
        return _CODE_ALIASES[code]
    try:
        kind = ErrorCode(code)
    except ValueError:
        return ErrorCode.UNKNOWN
    return kind


class MNSError(Exception):
    """Base for all client errors."""


class TransportError(MNSError):
    """The request did not complete (connection failure, reset, protocol violation)."""


class TransportTimeoutError(TransportError):
    """The request timed out."""


class DeserializeResponseError(MNSError):
    """A response body could not be decoded into the expected shape."""


class ServiceError(MNSError):
    """The service answered with a non-2xx status and a structured error body."""

    def __init__(self, response: ErrorResponse, status_code: int = 0, kind: ErrorCode | None = None) -> None:
        super().__init__(str(response))
        self.response = response
        self.status_code = status_code
        self.kind = kind if kind is not None else parse_error_code(response.code)

    @property
    def code(self) -> str:
        return self.response.code

    @property
    def message(self) -> str:
        return self.response.message

    @property
    def request_id(self) -> str:
        return self.response.request_id

    @property
    def host_id(self) -> str:
        return self.response.host_id


class UnknownServiceError(ServiceError):
    """A service error whose code this client does not recognise."""

    def __init__(self, response: ErrorResponse, status_code: int = 0) -> None:
        super().__init__(response, status_code, kind=ErrorCode.UNKNOWN)

    def __str__(self) -> str:
        return f"unknown error: {self.response}"


class AccessDeniedError(ServiceError):
    pass


class InvalidArgumentError(ServiceError):
    pass


class InternalServerError(ServiceError):
    pass


class MessageNotExistError(ServiceError):
    """No message available (empty long-poll) or the message is gone."""


class QueueNotExistError(ServiceError):
    pass


class ReceiptHandleError(ServiceError):
    """The receipt handle is stale: the message was redelivered or already deleted."""


class SignatureDoesNotMatchError(ServiceError):
    pass


class QpsLimitExceededError(ServiceError):
    pass


class TimeExpiredError(ServiceError):
    pass


class BatchSendError(ServiceError):
    """Some messages of a batch send failed; `entries` follows request order."""

    def __init__(self, entries: list[BatchSendEntry], status_code: int = 0) -> None:
        failed = [entry for entry in entries if not entry.ok]
        first = failed[0] if failed else BatchSendEntry()
        response = ErrorResponse(
            code=first.error_code or ErrorCode.BATCH_OP_FAIL.value,
            request_id="",
            host_id="",
            message=f"{len(failed)} of {len(entries)} messages failed: {first.error_message or ''}",
        )
        super().__init__(response, status_code, kind=ErrorCode.BATCH_OP_FAIL)
        self.entries = entries

    @property
    def failed(self) -> list[BatchSendEntry]:
        return [entry for entry in self.entries if not entry.ok]

    @property
    def succeeded(self) -> list[BatchSendEntry]:
        return [entry for entry in self.entries if entry.ok]


_ERRORS_BY_KIND: dict[ErrorCode, type[ServiceError]] = {
    ErrorCode.ACCESS_DENIED: AccessDeniedError,
    ErrorCode.INVALID_ARGUMENT: InvalidArgumentError,
    ErrorCode.INTERNAL_ERROR: InternalServerError,
    ErrorCode.MESSAGE_NOT_EXIST: MessageNotExistError,
    ErrorCode.QUEUE_NOT_EXIST: QueueNotExistError,
    ErrorCode.RECEIPT_HANDLE_ERROR: ReceiptHandleError,
    ErrorCode.SIGNATURE_DOES_NOT_MATCH: SignatureDoesNotMatchError,
    ErrorCode.QPS_LIMIT_EXCEEDED: QpsLimitExceededError,
    ErrorCode.TIME_EXPIRED: TimeExpiredError,
}


def error_from_response(response: ErrorResponse, status_code: int = 0) -> ServiceError:
    """Map a decoded error body to the matching ServiceError subclass."""
    kind = parse_error_code(response.code)
    if kind is ErrorCode.UNKNOWN:
        return UnknownServiceError(response, status_code)
    error_cls = _ERRORS_BY_KIND.get(kind, ServiceError)
    return error_cls(response, status_code, kind=kind)
