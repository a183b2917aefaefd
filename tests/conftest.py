from __future__ import annotations

import pytest

from mns.application.client import Client
from mns.application.queue import Queue
from tests.fakes import ACCESS_ID, ACCESS_SECRET, ENDPOINT, QUEUE_NAME, FakeHttpClient


@pytest.fixture()
def http_client() -> FakeHttpClient:
    return FakeHttpClient()


@pytest.fixture()
def client(http_client: FakeHttpClient) -> Client:
    return Client(ENDPOINT + "/", ACCESS_ID, ACCESS_SECRET, http_client)


@pytest.fixture()
def queue(client: Client) -> Queue:
    return Queue(QUEUE_NAME, client)
