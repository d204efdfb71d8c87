import asyncio
import logging
import threading

import pytest
import paho.mqtt.client as mqtt

from mqtt_qos_probe.client.main import run_probe
from mqtt_qos_probe.client.models import Outcome
from mqtt_qos_probe.client.payload import PAYLOAD

"""
End-to-end Test: the whole probe against an embedded amqtt broker.
A paho-mqtt observer subscribes to the publish topic and checks that both
publishes arrive reassembled into the full payload.
"""

BROKER_PORT = 18830


@pytest.fixture
def broker_config():
    """
    Minimal amqtt broker configuration on a non-standard local port.
    Only the anonymous auth plugin is loaded, so the probe's fixed
    credentials are accepted without a password file.
    """
    return {
        'listeners': {
            'default': {
                'type': 'tcp',
                'bind': f'127.0.0.1:{BROKER_PORT}',
            }
        },
        'plugins': {
            'amqtt.plugins.authentication.AnonymousAuthPlugin': {'allow_anonymous': True},
        },
    }


async def start_broker(config):
    from amqtt.broker import Broker

    broker = Broker(config)
    try:
        await broker.start()
    except Exception as e:
        pytest.skip(f"Embedded amqtt broker could not be started: {e}")
    return broker


def start_observer(received: list, subscribed: threading.Event) -> mqtt.Client:
    def on_subscribe(client, userdata, mid, reason_code_list, properties):
        subscribed.set()

    def on_message(client, userdata, msg):
        logging.info(f"Observer received {len(msg.payload)} bytes on {msg.topic}")
        received.append(msg.payload)

    observer = mqtt.Client(mqtt.CallbackAPIVersion.VERSION2)
    observer.on_subscribe = on_subscribe
    observer.on_message = on_message
    observer.connect('127.0.0.1', BROKER_PORT)
    observer.subscribe("test/topic", qos=1)
    observer.loop_start()
    return observer


@pytest.mark.integration
@pytest.mark.asyncio
async def test_probe_completes_against_embedded_broker(broker_config):
    broker = await start_broker(broker_config)
    received = []
    subscribed = threading.Event()
    observer = start_observer(received, subscribed)

    try:
        assert await asyncio.to_thread(subscribed.wait, 2.0), "Observer never subscribed"

        config = {
            'mqtt': {'host': '127.0.0.1', 'port': BROKER_PORT},
            'retry': {'secs_since_valid_ping': 5},
        }
        run_signal = await asyncio.wait_for(run_probe(config), timeout=10.0)

        assert run_signal.outcome is Outcome.SUCCESS, run_signal.reason

        for _ in range(20):
            if len(received) >= 2:
                break
            await asyncio.sleep(0.1)
        assert received[:2] == [PAYLOAD, PAYLOAD]

    finally:
        observer.loop_stop()
        observer.disconnect()
        await broker.shutdown()
