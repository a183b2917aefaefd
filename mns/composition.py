"""Composition root: build and lifecycle-manage concrete dependencies.

Composition may: import concrete classes, call factories, translate Settings into
explicit constructor arguments, manage high-level lifecycle.
"""
from __future__ import annotations

from typing import Any

from loguru import logger

from mns.application.client import Client
from mns.application.queue import Queue
from mns.config.settings import Settings
from mns.core import SERVICE_NAME
from mns.infrastructure.http.factory import create_http_client
from mns.messaging.consumer import ConsumeOptions, Consumer
from mns.ports.http_client import AbstractHttpClient


def _log(event: str, **kwargs: Any) -> None:
    logger.bind(service_name=SERVICE_NAME, event=event, **kwargs).info("")


def consume_options_from_settings(settings: Settings) -> ConsumeOptions:
    return ConsumeOptions(
        prefetch_count=settings.prefetch_count,
        wait_seconds=settings.receive_wait_seconds,
        auto_ack=settings.auto_ack,
        reject_visibility_timeout=settings.reject_visibility_timeout_seconds,
        receive_max_attempts=settings.receive_max_attempts,
        initial_backoff_seconds=settings.initial_backoff_seconds,
        max_backoff_seconds=settings.max_backoff_seconds,
        backoff_multiplier=settings.backoff_multiplier,
    )


class MNSDependencies:
    """Holds wired client dependencies and their lifecycle."""

    def __init__(self, *, settings: Settings, http_client: AbstractHttpClient | None = None) -> None:
        self._settings = settings
        self._http_client = http_client
        self._client: Client | None = None
        self._queue: Queue | None = None
        self._consumer: Consumer | None = None

    @property
    def settings(self) -> Settings:
        return self._settings

    @property
    def client(self) -> Client:
        if self._client is None:
            raise RuntimeError("client is not initialized")
        return self._client

    @property
    def queue(self) -> Queue:
        if self._queue is None:
            raise RuntimeError("queue is not initialized")
        return self._queue

    @property
    def consumer(self) -> Consumer:
        if self._consumer is None:
            raise RuntimeError("consumer is not initialized")
        return self._consumer

    async def connect(self) -> None:
        if self._http_client is None:
            self._http_client = create_http_client(self._settings)
        self._client = Client(
            self._settings.endpoint,
            self._settings.access_id,
            self._settings.access_secret,
            self._http_client,
            timeout_seconds=self._settings.request_timeout_seconds,
            connect_timeout_seconds=self._settings.connect_timeout_seconds,
        )
        self._queue = Queue(self._settings.queue_name, self._client)
        self._consumer = Consumer(self._queue, consume_options_from_settings(self._settings))
        _log("dependencies_ready", endpoint=self._client.endpoint, queue=self._queue.name)

    async def close(self) -> None:
        if self._consumer is not None:
            try:
                await self._consumer.close()
            except Exception as exc:
                logger.warning("consumer close failed: {}", exc)
            self._consumer = None

        if self._http_client is not None:
            try:
                await self._http_client.close()
            except Exception as exc:
                logger.warning("http client close failed: {}", exc)
            self._http_client = None

        self._queue = None
        self._client = None


def create_dependencies(settings: Settings | None = None) -> MNSDependencies:
    return MNSDependencies(settings=settings or Settings())
