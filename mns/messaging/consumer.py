"""
Consumer engine: long-poll loop, concurrency limiter and delegate dispatch.

Lifecycle:
  IDLE -> ARMED (delegate attached) -> RUNNING (run/start) -> STOPPING (stop) -> STOPPED.
  A non-retryable receive failure, or running out of receive attempts, also ends
  in STOPPED; the error is handed to the delegate as DeliveryResult(error=...).

Concurrency:
  - A semaphore sized to prefetch_count is acquired before every receive and
    released only when the delegate call for that delivery finishes. At most
    prefetch_count deliveries are in flight, and no receive is issued while the
    limit is saturated.
  - The delegate slot is guarded by an asyncio.Lock and read once per delivery,
    so it may be swapped while the loop runs.
  - stop() is honoured on the next iteration, including a stop requested before
    run(); an in-flight long-poll is not interrupted, and a stop during receive
    retries ends the loop without reporting an error. close() cancels the loop
    task and waits for in-flight deliveries.
  - Service errors with a 5xx status are retried like transport failures.
"""
from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Union

from loguru import logger

from mns.application.delivery import Delivery, DeliveryResult
from mns.application.queue import Queue
from mns.constants import (
    DEFAULT_REJECT_VISIBILITY_TIMEOUT,
    DEFAULT_WAIT_SECONDS,
    MAX_WAIT_SECONDS,
    ConsumerState,
)
from mns.core import SERVICE_NAME
from mns.core.backoff import exponential_backoff
from mns.domain.errors import (
    InternalServerError,
    MessageNotExistError,
    MNSError,
    QpsLimitExceededError,
    ServiceError,
    TimeExpiredError,
    TransportError,
)
from mns.domain.models import MessageReceiveResponse
from mns.ports.consumer_delegate import ConsumerDelegate

RETRYABLE_RECEIVE_ERRORS = (
    TransportError,
    InternalServerError,
    QpsLimitExceededError,
    TimeExpiredError,
)


def _is_retryable(exc: MNSError) -> bool:
    if isinstance(exc, RETRYABLE_RECEIVE_ERRORS):
        return True
    return isinstance(exc, ServiceError) and exc.status_code >= 500


DeliveryHandler = Callable[[DeliveryResult], Awaitable[None]]


def _log(event: str, **kwargs: Any) -> None:
    logger.bind(service_name=SERVICE_NAME, event=event, **kwargs).info("")


@dataclass(frozen=True)
class ConsumeOptions:
    """Consumer configuration; fixed for the lifetime of a Consumer."""

    prefetch_count: int = 1
    wait_seconds: int = DEFAULT_WAIT_SECONDS
    auto_ack: bool = False
    reject_visibility_timeout: int = DEFAULT_REJECT_VISIBILITY_TIMEOUT
    # Receive attempts per poll before the loop gives up (1 = fail on first error).
    receive_max_attempts: int = 5
    initial_backoff_seconds: float = 1.0
    max_backoff_seconds: float = 30.0
    backoff_multiplier: float = 2.0

    def __post_init__(self) -> None:
        if self.prefetch_count < 1:
            raise ValueError("prefetch_count must be a positive integer")
        if not 0 <= self.wait_seconds <= MAX_WAIT_SECONDS:
            raise ValueError(f"wait_seconds must be between 0 and {MAX_WAIT_SECONDS}")
        if self.reject_visibility_timeout < 1:
            raise ValueError("reject_visibility_timeout must be at least 1 second")
        if self.receive_max_attempts < 1:
            raise ValueError("receive_max_attempts must be at least 1")
        if self.initial_backoff_seconds < 0 or self.max_backoff_seconds < 0:
            raise ValueError("backoff delays must not be negative")


class _CallableDelegate:
    """Adapts a plain async callable to the ConsumerDelegate protocol."""

    def __init__(self, handler: DeliveryHandler) -> None:
        self._handler = handler

    async def handle(self, result: DeliveryResult) -> None:
        await self._handler(result)


def _as_delegate(delegate: Union[ConsumerDelegate, DeliveryHandler]) -> ConsumerDelegate:
    if isinstance(delegate, ConsumerDelegate):
        return delegate
    if callable(delegate):
        return _CallableDelegate(delegate)
    raise TypeError(f"delegate must define handle() or be callable, got {type(delegate).__name__}")


class Consumer:
    """Continuously receives from one queue and dispatches deliveries to a delegate."""

    def __init__(self, queue: Queue, options: ConsumeOptions | None = None) -> None:
        self._queue = queue
        self._options = options or ConsumeOptions()
        self._state = ConsumerState.IDLE
        self._delegate: ConsumerDelegate | None = None
        self._delegate_lock = asyncio.Lock()
        self._tasks: set[asyncio.Task[None]] = set()
        self._run_task: asyncio.Task[None] | None = None
        self._stop_requested = False
        self._last_error: MNSError | None = None

    @property
    def queue(self) -> Queue:
        return self._queue

    @property
    def options(self) -> ConsumeOptions:
        return self._options

    @property
    def state(self) -> ConsumerState:
        return self._state

    @property
    def in_flight(self) -> int:
        return len(self._tasks)

    @property
    def last_error(self) -> MNSError | None:
        return self._last_error

    def _set_state(self, state: ConsumerState) -> None:
        self._state = state

    async def set_delegate(self, delegate: Union[ConsumerDelegate, DeliveryHandler]) -> None:
        wrapped = _as_delegate(delegate)
        async with self._delegate_lock:
            self._delegate = wrapped
        if self._state is ConsumerState.IDLE:
            self._set_state(ConsumerState.ARMED)

    async def _current_delegate(self) -> ConsumerDelegate | None:
        async with self._delegate_lock:
            return self._delegate

    def start(self) -> asyncio.Task[None]:
        """Run the loop as a background task on the running event loop."""
        if self._run_task is not None and not self._run_task.done():
            raise RuntimeError("consumer already running")
        self._run_task = asyncio.create_task(self.run())
        return self._run_task

    def stop(self) -> None:
        self._stop_requested = True
        if self._state is ConsumerState.RUNNING:
            self._set_state(ConsumerState.STOPPING)
            _log("consumer_stopping", queue=self._queue.name)

    async def close(self) -> None:
        self.stop()
        if self._run_task is not None and not self._run_task.done():
            self._run_task.cancel()
            try:
                await self._run_task
            except asyncio.CancelledError:
                pass
        self._run_task = None
        await self._drain()
        self._stop_requested = False
        self._set_state(ConsumerState.STOPPED)

    async def run(self) -> None:
        if self._state in (ConsumerState.RUNNING, ConsumerState.STOPPING):
            raise RuntimeError("consumer already running")
        self._last_error = None
        semaphore = asyncio.Semaphore(self._options.prefetch_count)
        self._set_state(ConsumerState.RUNNING)
        _log(
            "consumer_started",
            queue=self._queue.name,
            prefetch_count=self._options.prefetch_count,
            wait_seconds=self._options.wait_seconds,
        )
        try:
            while not self._stop_requested:
                await semaphore.acquire()
                if self._stop_requested:
                    semaphore.release()
                    break
                try:
                    message = await self._receive()
                except MNSError as exc:
                    semaphore.release()
                    await self._fail(exc)
                    break
                except BaseException:
                    semaphore.release()
                    raise

                if message is None:
                    semaphore.release()
                    continue

                delivery = Delivery(
                    message,
                    self._queue,
                    reject_visibility_timeout=self._options.reject_visibility_timeout,
                )
                delegate = await self._current_delegate()
                if delegate is None:
                    semaphore.release()
                    _log("delivery_dropped", queue=self._queue.name, message_id=message.message_id)
                    continue

                task = asyncio.create_task(self._dispatch(delegate, delivery, semaphore))
                self._tasks.add(task)
                task.add_done_callback(self._tasks.discard)
        finally:
            await self._drain()
            self._set_state(ConsumerState.STOPPED)
            self._stop_requested = False
            _log("consumer_stopped", queue=self._queue.name)

    async def _receive(self) -> MessageReceiveResponse | None:
        """One long-poll, retried with backoff on transient failures. None means empty poll."""
        attempt = 0
        async for delay in exponential_backoff(
            self._options.initial_backoff_seconds,
            self._options.max_backoff_seconds,
            self._options.backoff_multiplier,
            self._options.receive_max_attempts,
        ):
            if self._stop_requested:
                return None
            attempt += 1
            try:
                return await self._queue.receive_message(self._options.wait_seconds)
            except MessageNotExistError:
                return None
            except MNSError as exc:
                if not _is_retryable(exc):
                    raise
                logger.warning("receive message failed: {}", exc)
                if self._stop_requested:
                    return None
                if attempt >= self._options.receive_max_attempts:
                    raise
                _log("receive_retry", queue=self._queue.name, attempt=attempt, delay=delay)
        return None

    async def _fail(self, exc: MNSError) -> None:
        self._last_error = exc
        logger.warning("receive message error, stopping consumer: {}", exc)
        _log("consumer_receive_failed", queue=self._queue.name, error=str(exc))
        delegate = await self._current_delegate()
        if delegate is None:
            return
        try:
            await delegate.handle(DeliveryResult(error=exc))
        except Exception as handler_exc:
            logger.exception("delegate failed while handling consumer error: {}", handler_exc)

    async def _dispatch(
        self,
        delegate: ConsumerDelegate,
        delivery: Delivery,
        semaphore: asyncio.Semaphore,
    ) -> None:
        try:
            try:
                await delegate.handle(DeliveryResult(delivery=delivery))
            except Exception as exc:
                logger.exception("delivery handling failed: {}", exc)
                if not delivery.processed:
                    await self._settle(delivery, "reject")
                return
            if self._options.auto_ack and not delivery.processed:
                await self._settle(delivery, "ack")
        finally:
            semaphore.release()

    async def _settle(self, delivery: Delivery, action: str) -> None:
        # Stale receipt handles are expected here; the server redelivers on its own.
        try:
            if action == "ack":
                await delivery.ack()
            else:
                await delivery.reject()
            _log(f"delivery_{action}", queue=self._queue.name, message_id=delivery.message.message_id)
        except MNSError as exc:
            logger.warning("delivery {} failed for message {}: {}", action, delivery.message.message_id, exc)

    async def _drain(self) -> None:
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
