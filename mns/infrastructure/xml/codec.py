"""XML encoding of request bodies and decoding of response bodies.

Requests are written in the service namespace; namespaces are stripped when
decoding so both namespaced and bare responses are accepted.
"""
from __future__ import annotations

from typing import Callable, TypeVar
from xml.etree import ElementTree

from mns.constants import XML_NAMESPACE
from mns.domain.errors import DeserializeResponseError
from mns.domain.models import (
    BatchSendEntry,
    ErrorResponse,
    MessageReceiveResponse,
    MessageSendRequest,
    MessageSendResponse,
    MessageVisibilityChangeResponse,
)

T = TypeVar("T")

_XML_DECLARATION = b'<?xml version="1.0" encoding="UTF-8"?>'


def _strip_ns(tag: str) -> str:
    return tag.split("}", 1)[-1]


def _parse(body: bytes, expected_root: str) -> ElementTree.Element:
    try:
        root = ElementTree.fromstring(body)
    except ElementTree.ParseError as exc:
        raise DeserializeResponseError(f"invalid xml payload: {exc}") from exc
    if _strip_ns(root.tag) != expected_root:
        raise DeserializeResponseError(
            f"expected <{expected_root}> root element, got <{_strip_ns(root.tag)}>"
        )
    return root


def _fields(node: ElementTree.Element) -> dict[str, str]:
    return {_strip_ns(child.tag): (child.text or "") for child in node}


def _required(fields: dict[str, str], name: str) -> str:
    if name not in fields:
        raise DeserializeResponseError(f"response missing required field: {name}")
    return fields[name]


def _required_int(fields: dict[str, str], name: str) -> int:
    value = _required(fields, name)
    try:
        return int(value)
    except ValueError as exc:
        raise DeserializeResponseError(f"field {name} is not an integer: {value!r}") from exc


def _message_element(parent: ElementTree.Element | None, request: MessageSendRequest) -> ElementTree.Element:
    if parent is None:
        node = ElementTree.Element("Message", {"xmlns": XML_NAMESPACE})
    else:
        node = ElementTree.SubElement(parent, "Message")
    ElementTree.SubElement(node, "MessageBody").text = request.message_body
    if request.delay_seconds is not None:
        ElementTree.SubElement(node, "DelaySeconds").text = str(request.delay_seconds)
    if request.priority is not None:
        ElementTree.SubElement(node, "Priority").text = str(request.priority)
    return node


def _to_bytes(node: ElementTree.Element) -> bytes:
    return _XML_DECLARATION + ElementTree.tostring(node, encoding="utf-8", xml_declaration=False)


def encode_message_send_request(request: MessageSendRequest) -> bytes:
    return _to_bytes(_message_element(None, request))


def encode_batch_send_request(requests: list[MessageSendRequest]) -> bytes:
    root = ElementTree.Element("Messages", {"xmlns": XML_NAMESPACE})
    for request in requests:
        _message_element(root, request)
    return _to_bytes(root)


def _send_response_from_fields(fields: dict[str, str]) -> MessageSendResponse:
    return MessageSendResponse(
        message_id=_required(fields, "MessageId"),
        message_body_md5=_required(fields, "MessageBodyMD5"),
        receipt_handle=fields.get("ReceiptHandle") or None,
    )


def _receive_response_from_fields(fields: dict[str, str]) -> MessageReceiveResponse:
    return MessageReceiveResponse(
        message_id=_required(fields, "MessageId"),
        receipt_handle=_required(fields, "ReceiptHandle"),
        message_body_md5=_required(fields, "MessageBodyMD5"),
        message_body=_required(fields, "MessageBody"),
        enqueue_time=_required_int(fields, "EnqueueTime"),
        next_visible_time=_required_int(fields, "NextVisibleTime"),
        first_dequeue_time=_required_int(fields, "FirstDequeueTime"),
        dequeue_count=_required_int(fields, "DequeueCount"),
        priority=_required_int(fields, "Priority"),
    )


def _decode_single(body: bytes, root_tag: str, build: Callable[[dict[str, str]], T]) -> T:
    return build(_fields(_parse(body, root_tag)))


def decode_message_send_response(body: bytes) -> MessageSendResponse:
    return _decode_single(body, "Message", _send_response_from_fields)


def decode_message_receive_response(body: bytes) -> MessageReceiveResponse:
    return _decode_single(body, "Message", _receive_response_from_fields)


def decode_batch_receive_response(body: bytes) -> list[MessageReceiveResponse]:
    root = _parse(body, "Messages")
    return [_receive_response_from_fields(_fields(child)) for child in root]


def decode_visibility_change_response(body: bytes) -> MessageVisibilityChangeResponse:
    fields = _fields(_parse(body, "ChangeVisibility"))
    return MessageVisibilityChangeResponse(
        receipt_handle=_required(fields, "ReceiptHandle"),
        next_visible_time=_required_int(fields, "NextVisibleTime"),
    )


def decode_error_response(body: bytes) -> ErrorResponse:
    fields = _fields(_parse(body, "Error"))
    return ErrorResponse(
        code=_required(fields, "Code"),
        request_id=fields.get("RequestId", ""),
        host_id=fields.get("HostId", ""),
        message=fields.get("Message", ""),
    )


def decode_batch_send_response(body: bytes) -> list[BatchSendEntry]:
    """Decode a batch send body; entries carrying an ErrorCode are failures."""
    root = _parse(body, "Messages")
    entries: list[BatchSendEntry] = []
    for child in root:
        fields = _fields(child)
        if fields.get("ErrorCode"):
            entries.append(
                BatchSendEntry(
                    error_code=fields["ErrorCode"],
                    error_message=fields.get("ErrorMessage", ""),
                )
            )
        else:
            entries.append(BatchSendEntry(response=_send_response_from_fields(fields)))
    return entries


def is_batch_body(body: bytes) -> bool:
    try:
        root = ElementTree.fromstring(body)
    except ElementTree.ParseError:
        return False
    return _strip_ns(root.tag) == "Messages"
