import asyncio
import signal

from loguru import logger

from mns.application.delivery import DeliveryResult
from mns.composition import create_dependencies
from mns.core import SERVICE_NAME


def _log(event: str, **kwargs) -> None:
    logger.bind(service_name=SERVICE_NAME, event=event, **kwargs).info("")


async def on_delivery(result: DeliveryResult) -> None:
    if not result.ok:
        _log("consumer_error", error=str(result.error))
        return
    delivery = result.delivery
    if delivery is None:
        return
    _log(
        "message_received",
        message_id=delivery.message.message_id,
        dequeue_count=delivery.message.dequeue_count,
        size=len(delivery.body),
    )
    await delivery.ack()
    _log("message_acked", message_id=delivery.message.message_id)


async def run_worker() -> None:
    deps = create_dependencies()
    await deps.connect()

    consumer = deps.consumer
    await consumer.set_delegate(on_delivery)

    shutdown = asyncio.Event()

    def request_shutdown() -> None:
        if not shutdown.is_set():
            _log("shutdown_signal")
            shutdown.set()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, request_shutdown)
        except NotImplementedError:
            pass

    consumer_task = consumer.start()
    shutdown_task = asyncio.create_task(shutdown.wait())
    _log("worker_started", queue=deps.queue.name)
    try:
        await asyncio.wait({consumer_task, shutdown_task}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        shutdown_task.cancel()
        await deps.close()
    _log("worker_stopped")


def main() -> None:
    try:
        asyncio.run(run_worker())
    except KeyboardInterrupt:
        _log("worker_interrupted")
    except Exception as e:
        logger.exception("worker failed: {}", e)
        raise


if __name__ == "__main__":
    main()
