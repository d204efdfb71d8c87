"""
aiomqtt-backed Transport.

This module is responsible for:
- Building the `aiomqtt` client from the fixed ConnectParams (will,
  credentials, TLS) and keeping the connection open in a background task.
- Turning everything that happens on the network into session events on
  a single `asyncio.Queue`.
- Assembling the chunks the session writes into one PUBLISH and turning
  an unacknowledged QoS1 publish into a resend request.
"""
import asyncio
import logging
import ssl
from typing import Optional, Set

from aiomqtt import Client as MQTTClient, MqttError, ProtocolVersion, Will

from mqtt_qos_probe.client.models import (
    Acknowledged,
    ConnectionClosed,
    ConnectionEstablished,
    ConnectionFailed,
    ConnectParams,
    IdlePolicy,
    MessageReceived,
    PublishIntent,
    ResendRequested,
    ServiceCancelled,
    SessionEvent,
    SubscribeIntent,
    Subscribed,
    WriteOpportunity,
)

logger = logging.getLogger(__name__)

PROTOCOL_VERSIONS = {
    "3.1": ProtocolVersion.V31,
    "3.1.1": ProtocolVersion.V311,
    "5": ProtocolVersion.V5,
}

MAX_ATTEMPT_ID = 65535
SUBACK_FAILURE = 0x80


def build_tls_context(params: ConnectParams) -> Optional[ssl.SSLContext]:
    """Returns None for plain TCP. Raises OSError if the CA file is unusable."""
    if not params.use_tls:
        return None

    context = ssl.create_default_context(cafile=params.ca_file)
    if params.allow_self_signed:
        context.check_hostname = False
        context.verify_mode = ssl.CERT_NONE
    return context


def suback_refused(code) -> bool:
    """
    MQTT 3.1.1 grants a QoS level (0-2) per topic and 0x80 on refusal;
    MQTT 5 hands back paho ReasonCodes, where any value >= 0x80 is a failure.
    """
    return int(getattr(code, 'value', code)) >= SUBACK_FAILURE


class AiomqttTransport:
    events: asyncio.Queue
    idle_policy: IdlePolicy
    _client: Optional[MQTTClient]
    _main_task: Optional[asyncio.Task]
    _tasks: Set[asyncio.Task]
    _outgoing: bytearray
    _attempt: int

    def __init__(self, events: asyncio.Queue, idle_policy: Optional[IdlePolicy] = None):
        self.events = events
        self.idle_policy = idle_policy or IdlePolicy()

        # Internal state
        self._client = None
        self._main_task = None
        self._tasks = set()
        self._outgoing = bytearray()
        self._attempt = 0

    @property
    def connected(self) -> bool:
        return self._client is not None

    # --- Transport operations (called synchronously by the session) ---

    def connect(self, params: ConnectParams) -> bool:
        if self._main_task is not None:
            logger.error("A connection has already been requested.")
            return False

        protocol = PROTOCOL_VERSIONS.get(params.protocol)
        if protocol is None:
            logger.error(f"Unsupported MQTT protocol version '{params.protocol}'")
            return False

        try:
            tls_context = build_tls_context(params)
        except (OSError, ssl.SSLError) as e:
            logger.error(f"Failed to set up TLS: {e}")
            return False

        last_will = Will(topic=params.will.topic,
                         payload=params.will.message.encode('utf-8'),
                         qos=params.will.qos,
                         retain=params.will.retain)

        # MQTT v5 calls it clean start, older versions clean session
        session_kwargs = ({'clean_start': params.clean_start} if protocol == ProtocolVersion.V5
                          else {'clean_session': params.clean_start})
        try:
            client = MQTTClient(params.host,
                                params.port,
                                protocol=protocol,
                                identifier=params.client_id,
                                username=params.username,
                                password=params.password,
                                will=last_will,
                                keepalive=params.keep_alive,
                                timeout=self.idle_policy.secs_since_valid_hangup,
                                tls_context=tls_context,
                                **session_kwargs)
        except (ValueError, MqttError) as e:
            logger.error(f"Failed to create MQTT client: {e}")
            return False

        self._main_task = asyncio.create_task(self._main_loop(client))
        return True

    def send_subscribe(self, intent: SubscribeIntent) -> bool:
        client = self._client
        if client is None:
            logger.warning("Subscribe requested while not connected.")
            return False

        self._spawn(self._subscribe(client, list(intent.topics)))
        return True

    def send_publish(self, intent: PublishIntent, chunk: bytes) -> bool:
        client = self._client
        if client is None:
            logger.warning("Publish requested while not connected.")
            return False

        if len(self._outgoing) + len(chunk) > intent.payload_len:
            logger.error(f"Chunk of {len(chunk)} bytes overflows the declared payload of "
                         f"{intent.payload_len} bytes ({len(self._outgoing)} already buffered)")
            self._outgoing.clear()
            return False

        self._outgoing.extend(chunk)
        if not intent.final:
            return True

        if len(self._outgoing) != intent.payload_len:
            logger.error(f"Final chunk leaves {len(self._outgoing)} of "
                         f"{intent.payload_len} declared payload bytes")
            self._outgoing.clear()
            return False

        payload = bytes(self._outgoing)
        self._outgoing.clear()
        self._spawn(self._publish(client, intent.topic, intent.qos, payload))
        return True

    def request_write_opportunity(self):
        self._emit(WriteOpportunity())

    def cancel_service(self):
        self._emit(ServiceCancelled())

    async def close(self):
        """
        Cancels the connection and every in-flight operation, which closes
        the connection.
        """
        tasks = list(self._tasks)
        if self._main_task is not None:
            tasks.append(self._main_task)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._main_task = None
        logger.info("MQTT transport closed.")

    # --- Background work ---

    async def _main_loop(self, client: MQTTClient):
        """Holds the connection open and reports inbound messages."""
        try:
            # The connection is ONLY valid inside this block
            async with client:
                self._client = client
                self._emit(ConnectionEstablished())
                async for message in client.messages:
                    payload = message.payload
                    self._emit(MessageReceived(
                        topic=str(message.topic),
                        payload=bytes(payload) if isinstance(payload, (bytes, bytearray)) else None))
        except MqttError as e:
            logger.error(f"MQTT connection lost: {e}")
            self._emit(ConnectionFailed(message=str(e)))
            return
        except Exception as e:
            logger.exception("Unexpected error in the MQTT connection task")
            self._emit(ConnectionFailed(message=f"connection task failed: {e!r}"))
            return
        finally:
            self._client = None

        self._emit(ConnectionClosed())

    async def _subscribe(self, client: MQTTClient, topics):
        try:
            granted = await client.subscribe(topics)
        except MqttError as e:
            self._emit(ConnectionFailed(message=f"subscribe failed: {e}"))
            return
        except Exception as e:
            # paho validates topics and QoS levels with ValueError
            logger.exception(f"Subscribe to {topics} raised")
            self._emit(ConnectionFailed(message=f"subscribe failed: {e!r}"))
            return

        refused = [topic for (topic, _), code in zip(topics, granted or ())
                   if suback_refused(code)]
        if refused:
            logger.error(f"Broker refused the subscription to {refused}")
            self._emit(ConnectionFailed(message=f"subscribe refused for {refused}"))
            return

        logger.debug(f"Subscribed to {topics}")
        self._emit(Subscribed())

    async def _publish(self, client: MQTTClient, topic: str, qos: int, payload: bytes):
        attempt = self._next_attempt()
        try:
            if qos == 0:
                await client.publish(topic, payload=payload, qos=0)
            else:
                await asyncio.wait_for(client.publish(topic, payload=payload, qos=qos),
                                       timeout=self.idle_policy.secs_since_valid_ping)
        except asyncio.TimeoutError:
            logger.warning(f"No ack for publish attempt {attempt} after "
                           f"{self.idle_policy.secs_since_valid_ping}s")
            self._emit(ResendRequested(packet_id=attempt))
            return
        except MqttError as e:
            self._emit(ConnectionFailed(message=f"publish failed: {e}"))
            return
        except Exception as e:
            logger.exception(f"Publish to '{topic}' raised")
            self._emit(ConnectionFailed(message=f"publish failed: {e!r}"))
            return

        logger.debug(f"Published {len(payload)} bytes to '{topic}' at QoS{qos} (attempt {attempt})")
        # QoS0 is never acknowledged by the peer: the completed send is the ack
        self._emit(Acknowledged())

    # --- Internals ---

    def _emit(self, event: SessionEvent):
        self.events.put_nowait(event)

    def _spawn(self, coro):
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def _next_attempt(self) -> int:
        # aiomqtt does not expose the MQTT packet id paho assigns, so
        # publishes are numbered locally
        self._attempt = self._attempt % MAX_ATTEMPT_ID + 1
        return self._attempt
