"""
Pytest Configuration and Fixtures for the mqtt_qos_probe project.

This module provides recording stand-ins for the transport and for the
aiomqtt client, so the session and the transport can be driven event by
event without a broker.
"""

import asyncio
import sys
import logging
from typing import List, Optional, Tuple
from unittest.mock import AsyncMock

import pytest

from mqtt_qos_probe.client.chunker import PayloadChunker
from mqtt_qos_probe.client.models import (
    ConnectParams,
    PublishIntent,
    RunSignal,
    SubscribeIntent,
    WriteOpportunity,
)
from mqtt_qos_probe.client.payload import PAYLOAD
from mqtt_qos_probe.client.retry import RetryPolicy
from mqtt_qos_probe.client.session import SessionStateMachine


class RecordingTransport:
    """
    Records every call the session makes. Write opportunities are only
    counted; `deliver_writes` feeds them back to the machine.
    """
    def __init__(self):
        self.connect_result = True
        self.subscribe_result = True
        self.publish_result = True
        self.connects: List[ConnectParams] = []
        self.subscribes: List[SubscribeIntent] = []
        self.publishes: List[Tuple[PublishIntent, bytes]] = []
        self.pending_writes = 0
        self.cancelled = 0

    def connect(self, params: ConnectParams) -> bool:
        self.connects.append(params)
        return self.connect_result

    def send_subscribe(self, intent: SubscribeIntent) -> bool:
        self.subscribes.append(intent)
        return self.subscribe_result

    def send_publish(self, intent: PublishIntent, chunk: bytes) -> bool:
        self.publishes.append((intent, chunk))
        return self.publish_result

    def request_write_opportunity(self):
        self.pending_writes += 1

    def cancel_service(self):
        self.cancelled += 1

    def deliver_writes(self, machine: SessionStateMachine, limit: Optional[int] = None) -> int:
        """Hands queued write opportunities to the machine until none are left."""
        delivered = 0
        while self.pending_writes and (limit is None or delivered < limit):
            self.pending_writes -= 1
            machine.handle(WriteOpportunity())
            delivered += 1
        return delivered


class FakeClient:
    """Stands in for aiomqtt.Client: async context manager plus a message stream."""
    def __init__(self, *args, **kwargs):
        self.args = args
        self.kwargs = kwargs
        self.subscribe = AsyncMock(return_value=(0, 1))
        self.publish = AsyncMock()
        self.inbound: asyncio.Queue = asyncio.Queue()
        self.enter_error = None

    async def __aenter__(self):
        if self.enter_error is not None:
            raise self.enter_error
        return self

    async def __aexit__(self, *exc_info):
        return False

    @property
    def messages(self):
        return self._stream()

    async def _stream(self):
        while True:
            message = await self.inbound.get()
            if message is None:
                return
            yield message


@pytest.fixture(scope="session", autouse=True)
def setup_test_logging():
    """
    Configures the Python logging framework globally for all tests.
    Because tests bypass main.py, this ensures our logs are formatted
    and visible exactly how we want them during test runs.
    """
    formatter = logging.Formatter(fmt="%(levelname)-8s %(message)s - %(funcName)s:%(lineno)d ")
    handler = logging.StreamHandler(stream=sys.stdout)
    handler.setFormatter(formatter)
    logger = logging.getLogger()
    logger.setLevel(logging.DEBUG)
    logger.addHandler(handler)


@pytest.fixture
def transport():
    return RecordingTransport()


@pytest.fixture
def run_signal():
    return RunSignal()


@pytest.fixture
def machine(transport, run_signal):
    """A state machine over the real 1337 byte payload in 300 byte chunks."""
    return SessionStateMachine(transport, run_signal, PayloadChunker(PAYLOAD, 300), RetryPolicy(3))


@pytest.fixture
def clients(mocker):
    """Replaces aiomqtt.Client; every client the transport creates is recorded here."""
    created = []

    def factory(*args, **kwargs):
        client = FakeClient(*args, **kwargs)
        created.append(client)
        return client

    mocker.patch("mqtt_qos_probe.client.mqtt.MQTTClient", side_effect=factory)
    return created


@pytest.fixture
def fake_client(mocker):
    """Replaces aiomqtt.Client with one pre-built fake the test can configure up front."""
    client = FakeClient()
    mocker.patch("mqtt_qos_probe.client.mqtt.MQTTClient", return_value=client)
    return client
