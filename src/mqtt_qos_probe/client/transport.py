"""
The interface the session expects from the MQTT engine underneath it.

Every operation is synchronous from the caller's point of view: it
either accepts the request (True) or rejects it on the spot (False).
Whatever happens afterwards on the network comes back as an event.
"""
from typing import Protocol

from mqtt_qos_probe.client.models import ConnectParams, PublishIntent, SubscribeIntent


class Transport(Protocol):

    def connect(self, params: ConnectParams) -> bool:
        ...

    def send_subscribe(self, intent: SubscribeIntent) -> bool:
        ...

    def send_publish(self, intent: PublishIntent, chunk: bytes) -> bool:
        ...

    def request_write_opportunity(self) -> None:
        ...

    def cancel_service(self) -> None:
        ...
