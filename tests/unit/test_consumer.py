"""Unit tests for the consumer engine: backpressure, fan-out, retry/fail-stop and settlement."""
from __future__ import annotations

import asyncio
from typing import Any, Callable

import pytest

from mns.application.delivery import DeliveryResult
from mns.application.queue import Queue
from mns.constants import ConsumerState
from mns.domain.errors import (
    MessageNotExistError,
    QueueNotExistError,
    ReceiptHandleError,
    SignatureDoesNotMatchError,
    TransportError,
    UnknownServiceError,
)
from mns.domain.models import ErrorResponse, MessageReceiveResponse, MessageVisibilityChangeResponse
from mns.messaging.consumer import ConsumeOptions, Consumer
from tests.fakes import FakeHttpClient
from tests.xml_samples import error_body, receive_body


def _error(error_cls, code: str):
    return error_cls(ErrorResponse(code=code, request_id="req-1", host_id="host", message=code), 404)


def _message(i: int) -> MessageReceiveResponse:
    return MessageReceiveResponse(
        message_id=f"m{i}",
        receipt_handle=f"rh-{i}",
        message_body_md5="",
        message_body=f"body-{i}",
        enqueue_time=0,
        next_visible_time=30_000,
        first_dequeue_time=0,
        dequeue_count=1,
        priority=8,
    )


class ScriptedQueue:
    """Replays a script of messages / exceptions from receive_message.

    Once the script runs out it raises QueueNotExist, which stops the consumer.
    """

    name = "scripted-queue"

    def __init__(self, script: list[Any], events: list[tuple[str, str]] | None = None) -> None:
        self._script = list(script)
        self.events = events if events is not None else []
        self.receive_calls = 0
        self.wait_seconds_seen: list[int | None] = []
        self.deleted: list[str] = []
        self.visibility_changes: list[tuple[str, int]] = []
        self.delete_error: Exception | None = None

    async def receive_message(self, wait_seconds: int | None = None) -> MessageReceiveResponse:
        self.receive_calls += 1
        self.wait_seconds_seen.append(wait_seconds)
        await asyncio.sleep(0)
        if not self._script:
            raise _error(QueueNotExistError, "QueueNotExist")
        item = self._script.pop(0)
        if isinstance(item, BaseException):
            raise item
        self.events.append(("receive", item.message_id))
        return item

    async def delete_message(self, receipt_handle: str) -> None:
        self.deleted.append(receipt_handle)
        if self.delete_error is not None:
            raise self.delete_error

    async def change_message_visibility(self, receipt_handle: str, visibility_timeout: int) -> MessageVisibilityChangeResponse:
        self.visibility_changes.append((receipt_handle, visibility_timeout))
        return MessageVisibilityChangeResponse(receipt_handle=receipt_handle, next_visible_time=0)


class BlockingQueue(ScriptedQueue):
    """receive_message never returns, like a long-poll on an empty queue."""

    def __init__(self) -> None:
        super().__init__([])

    async def receive_message(self, wait_seconds: int | None = None) -> MessageReceiveResponse:
        self.receive_calls += 1
        await asyncio.Event().wait()
        raise AssertionError("unreachable")


def _options(**overrides: Any) -> ConsumeOptions:
    values: dict[str, Any] = {
        "prefetch_count": 1,
        "wait_seconds": 30,
        "receive_max_attempts": 1,
        "initial_backoff_seconds": 0.0,
        "max_backoff_seconds": 0.0,
    }
    values.update(overrides)
    return ConsumeOptions(**values)


async def _wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met before timeout")
        await asyncio.sleep(0.005)


class RecordingDelegate:
    """ConsumerDelegate implementation that records deliveries and errors."""

    def __init__(self) -> None:
        self.deliveries: list[str] = []
        self.errors: list[BaseException] = []

    async def handle(self, result: DeliveryResult) -> None:
        if not result.ok:
            self.errors.append(result.error)
            return
        self.deliveries.append(result.delivery.message.message_id)


@pytest.mark.asyncio
async def test_prefetch_one_processes_strictly_sequentially():
    events: list[tuple[str, str]] = []
    queue = ScriptedQueue([_message(i) for i in range(3)], events)
    consumer = Consumer(queue, _options(prefetch_count=1))

    async def handler(result: DeliveryResult) -> None:
        if not result.ok:
            return
        message_id = result.delivery.message.message_id
        events.append(("start", message_id))
        await asyncio.sleep(0.01)
        events.append(("end", message_id))

    await consumer.set_delegate(handler)
    await asyncio.wait_for(consumer.run(), timeout=5)

    assert events == [
        ("receive", "m0"), ("start", "m0"), ("end", "m0"),
        ("receive", "m1"), ("start", "m1"), ("end", "m1"),
        ("receive", "m2"), ("start", "m2"), ("end", "m2"),
    ]


@pytest.mark.asyncio
async def test_prefetch_n_caps_in_flight_and_suspends_receive():
    queue = ScriptedQueue([_message(i) for i in range(5)])
    consumer = Consumer(queue, _options(prefetch_count=3))
    gate = asyncio.Event()
    in_flight = 0
    max_in_flight = 0
    handled: list[str] = []

    async def handler(result: DeliveryResult) -> None:
        nonlocal in_flight, max_in_flight
        if not result.ok:
            return
        in_flight += 1
        max_in_flight = max(max_in_flight, in_flight)
        await gate.wait()
        in_flight -= 1
        handled.append(result.delivery.message.message_id)

    await consumer.set_delegate(handler)
    task = consumer.start()

    await _wait_until(lambda: in_flight == 3)
    await asyncio.sleep(0.05)
    assert queue.receive_calls == 3
    assert consumer.in_flight == 3

    gate.set()
    await asyncio.wait_for(task, timeout=5)

    assert max_in_flight == 3
    assert sorted(handled) == ["m0", "m1", "m2", "m3", "m4"]
    assert consumer.in_flight == 0


@pytest.mark.asyncio
async def test_long_poll_uses_configured_wait_seconds():
    queue = ScriptedQueue([_message(0)])
    consumer = Consumer(queue, _options(wait_seconds=7))
    await consumer.set_delegate(RecordingDelegate())

    await asyncio.wait_for(consumer.run(), timeout=5)

    assert set(queue.wait_seconds_seen) == {7}


@pytest.mark.asyncio
async def test_without_delegate_deliveries_are_dropped():
    queue = ScriptedQueue([_message(0), _message(1)])
    consumer = Consumer(queue, _options())
    assert consumer.state is ConsumerState.IDLE

    await asyncio.wait_for(consumer.run(), timeout=5)

    assert queue.receive_calls == 3
    assert queue.deleted == []
    assert queue.visibility_changes == []
    assert consumer.state is ConsumerState.STOPPED


@pytest.mark.asyncio
async def test_empty_poll_keeps_looping():
    queue = ScriptedQueue([_error(MessageNotExistError, "MessageNotExist"), _message(0)])
    consumer = Consumer(queue, _options())
    delegate = RecordingDelegate()
    await consumer.set_delegate(delegate)

    await asyncio.wait_for(consumer.run(), timeout=5)

    assert delegate.deliveries == ["m0"]
    assert [type(e) for e in delegate.errors] == [QueueNotExistError]


@pytest.mark.asyncio
async def test_transient_receive_failure_is_retried():
    queue = ScriptedQueue([TransportError("reset"), TransportError("reset"), _message(0)])
    consumer = Consumer(queue, _options(receive_max_attempts=3))
    delegate = RecordingDelegate()
    await consumer.set_delegate(delegate)

    await asyncio.wait_for(consumer.run(), timeout=5)

    assert delegate.deliveries == ["m0"]


@pytest.mark.asyncio
async def test_exhausted_retries_stop_the_loop_and_reach_the_delegate():
    queue = ScriptedQueue([TransportError("down")] * 3 + [_message(0)])
    consumer = Consumer(queue, _options(receive_max_attempts=3))
    delegate = RecordingDelegate()
    await consumer.set_delegate(delegate)

    await asyncio.wait_for(consumer.run(), timeout=5)

    assert queue.receive_calls == 3
    assert delegate.deliveries == []
    assert len(delegate.errors) == 1
    assert isinstance(delegate.errors[0], TransportError)
    assert consumer.last_error is delegate.errors[0]
    assert consumer.state is ConsumerState.STOPPED


@pytest.mark.asyncio
async def test_non_retryable_receive_failure_stops_immediately():
    queue = ScriptedQueue([_error(SignatureDoesNotMatchError, "SignatureDoesNotMatch"), _message(0)])
    consumer = Consumer(queue, _options(receive_max_attempts=5))
    delegate = RecordingDelegate()
    await consumer.set_delegate(delegate)

    await asyncio.wait_for(consumer.run(), timeout=5)

    assert queue.receive_calls == 1
    assert delegate.errors[0].code == "SignatureDoesNotMatch"


@pytest.mark.asyncio
async def test_delegate_crash_rejects_unprocessed_delivery_and_loop_continues():
    queue = ScriptedQueue([_message(0), _message(1)])
    consumer = Consumer(queue, _options(reject_visibility_timeout=2))
    seen: list[str] = []

    async def handler(result: DeliveryResult) -> None:
        if not result.ok:
            return
        seen.append(result.delivery.message.message_id)
        if result.delivery.message.message_id == "m0":
            raise RuntimeError("handler bug")

    await consumer.set_delegate(handler)
    await asyncio.wait_for(consumer.run(), timeout=5)

    assert seen == ["m0", "m1"]
    assert queue.visibility_changes == [("rh-0", 2)]


@pytest.mark.asyncio
async def test_delegate_crash_after_ack_does_not_reject():
    queue = ScriptedQueue([_message(0)])
    consumer = Consumer(queue, _options())

    async def handler(result: DeliveryResult) -> None:
        if not result.ok:
            return
        await result.delivery.ack()
        raise RuntimeError("after ack")

    await consumer.set_delegate(handler)
    await asyncio.wait_for(consumer.run(), timeout=5)

    assert queue.deleted == ["rh-0"]
    assert queue.visibility_changes == []


@pytest.mark.asyncio
async def test_auto_ack_acks_only_unprocessed_deliveries():
    queue = ScriptedQueue([_message(0), _message(1)])
    consumer = Consumer(queue, _options(auto_ack=True))

    async def handler(result: DeliveryResult) -> None:
        if result.ok and result.delivery.message.message_id == "m1":
            await result.delivery.reject()

    await consumer.set_delegate(handler)
    await asyncio.wait_for(consumer.run(), timeout=5)

    assert queue.deleted == ["rh-0"]
    assert queue.visibility_changes == [("rh-1", 1)]


@pytest.mark.asyncio
async def test_stale_ack_inside_engine_is_not_fatal():
    queue = ScriptedQueue([_message(0), _message(1)])
    queue.delete_error = _error(ReceiptHandleError, "ReceiptHandleError")
    consumer = Consumer(queue, _options(auto_ack=True))
    delegate = RecordingDelegate()
    await consumer.set_delegate(delegate)

    await asyncio.wait_for(consumer.run(), timeout=5)

    assert delegate.deliveries == ["m0", "m1"]
    assert queue.deleted == ["rh-0", "rh-1"]
    assert isinstance(consumer.last_error, QueueNotExistError)


@pytest.mark.asyncio
async def test_delegate_can_be_swapped_while_running():
    queue = ScriptedQueue([_message(i) for i in range(3)])
    consumer = Consumer(queue, _options())
    second = RecordingDelegate()
    first_seen: list[str] = []

    async def first(result: DeliveryResult) -> None:
        if result.ok:
            first_seen.append(result.delivery.message.message_id)
            await consumer.set_delegate(second)

    await consumer.set_delegate(first)
    assert consumer.state is ConsumerState.ARMED
    await asyncio.wait_for(consumer.run(), timeout=5)

    assert first_seen == ["m0"]
    assert second.deliveries == ["m1", "m2"]


@pytest.mark.asyncio
async def test_stop_takes_effect_on_next_iteration():
    queue = ScriptedQueue([_message(i) for i in range(3)])
    consumer = Consumer(queue, _options())
    delegate = RecordingDelegate()

    async def handler(result: DeliveryResult) -> None:
        await delegate.handle(result)
        consumer.stop()
        assert consumer.state is ConsumerState.STOPPING

    await consumer.set_delegate(handler)
    await asyncio.wait_for(consumer.run(), timeout=5)

    assert queue.receive_calls == 1
    assert delegate.deliveries == ["m0"]
    assert consumer.last_error is None
    assert consumer.state is ConsumerState.STOPPED


@pytest.mark.asyncio
async def test_close_cancels_a_pending_long_poll():
    queue = BlockingQueue()
    consumer = Consumer(queue, _options())
    await consumer.set_delegate(RecordingDelegate())
    task = consumer.start()

    await _wait_until(lambda: queue.receive_calls == 1)
    await asyncio.wait_for(consumer.close(), timeout=5)

    assert task.done()
    assert consumer.state is ConsumerState.STOPPED


@pytest.mark.asyncio
async def test_start_twice_is_rejected():
    consumer = Consumer(BlockingQueue(), _options())
    consumer.start()

    with pytest.raises(RuntimeError):
        consumer.start()

    await consumer.close()


@pytest.mark.asyncio
async def test_set_delegate_rejects_non_callables():
    consumer = Consumer(ScriptedQueue([]), _options())

    with pytest.raises(TypeError):
        await consumer.set_delegate(42)


@pytest.mark.parametrize(
    "overrides",
    [
        {"prefetch_count": 0},
        {"wait_seconds": 31},
        {"receive_max_attempts": 0},
        {"reject_visibility_timeout": 0},
        {"initial_backoff_seconds": -1.0},
    ],
)
def test_consume_options_validation(overrides):
    with pytest.raises(ValueError):
        _options(**overrides)


def test_consume_options_defaults():
    options = ConsumeOptions()

    assert options.prefetch_count == 1
    assert options.wait_seconds == 30
    assert options.auto_ack is False
    assert options.reject_visibility_timeout == 1


@pytest.mark.asyncio
async def test_gateway_5xx_page_is_retried(queue: Queue, http_client: FakeHttpClient):
    http_client.respond(503, b"<html>Service Unavailable</html>")
    http_client.respond(200, receive_body(message_id="after-outage"))
    http_client.respond(404, error_body("QueueNotExist"))
    consumer = Consumer(queue, _options(receive_max_attempts=5))
    delegate = RecordingDelegate()
    await consumer.set_delegate(delegate)

    await asyncio.wait_for(consumer.run(), timeout=5)

    assert delegate.deliveries == ["after-outage"]
    assert isinstance(consumer.last_error, QueueNotExistError)


@pytest.mark.asyncio
async def test_gateway_5xx_page_fails_after_retries_with_status(queue: Queue, http_client: FakeHttpClient):
    for _ in range(2):
        http_client.respond(502, b"")
    consumer = Consumer(queue, _options(receive_max_attempts=2))
    delegate = RecordingDelegate()
    await consumer.set_delegate(delegate)

    await asyncio.wait_for(consumer.run(), timeout=5)

    assert len(http_client.requests) == 2
    assert isinstance(consumer.last_error, UnknownServiceError)
    assert consumer.last_error.status_code == 502


@pytest.mark.asyncio
async def test_stop_before_run_skips_polling():
    queue = ScriptedQueue([_message(0)])
    consumer = Consumer(queue, _options())
    delegate = RecordingDelegate()
    await consumer.set_delegate(delegate)

    consumer.stop()
    await asyncio.wait_for(consumer.run(), timeout=5)

    assert queue.receive_calls == 0
    assert consumer.state is ConsumerState.STOPPED

    await asyncio.wait_for(consumer.run(), timeout=5)

    assert delegate.deliveries == ["m0"]


class StopOnFailureQueue(ScriptedQueue):
    """Requests a consumer stop whenever a receive fails with a transport error."""

    consumer: Consumer | None = None

    async def receive_message(self, wait_seconds: int | None = None) -> MessageReceiveResponse:
        try:
            return await super().receive_message(wait_seconds)
        except TransportError:
            self.consumer.stop()
            raise


@pytest.mark.asyncio
async def test_stop_during_receive_retry_is_not_reported_as_failure():
    queue = StopOnFailureQueue([TransportError("reset"), _message(0)])
    consumer = Consumer(queue, _options(receive_max_attempts=5))
    queue.consumer = consumer
    delegate = RecordingDelegate()
    await consumer.set_delegate(delegate)

    await asyncio.wait_for(consumer.run(), timeout=5)

    assert queue.receive_calls == 1
    assert delegate.errors == []
    assert delegate.deliveries == []
    assert consumer.last_error is None
    assert consumer.state is ConsumerState.STOPPED
