"""
The per-connection Session State Machine.

This module is the heart of the probe. It is responsible for:
- Deciding what to do with each write opportunity (subscribe, publish
  the next chunk, or nothing at all).
- Advancing on acknowledgments and stepping back on resend requests.
- Turning every fatal condition into a failure on the RunSignal.

The machine never blocks and never talks to the network directly: the
run loop hands it one event at a time and it answers by calling the
transport.
"""
import logging
from enum import Enum
from typing import Callable, Dict, Optional, Tuple

from mqtt_qos_probe.client.chunker import PayloadChunker
from mqtt_qos_probe.client.exceptions import ContractViolationError
from mqtt_qos_probe.client.hexdump import log_hexdump
from mqtt_qos_probe.client.models import (
    DEFAULT_SUBSCRIBE_INTENT,
    Acknowledged,
    ConnectionClosed,
    ConnectionEstablished,
    ConnectionFailed,
    MessageReceived,
    PublishIntent,
    ResendRequested,
    RunSignal,
    ServiceCancelled,
    Session,
    SessionEvent,
    SessionState,
    SubscribeIntent,
    Subscribed,
    WriteOpportunity,
)
from mqtt_qos_probe.client.retry import RetryPolicy
from mqtt_qos_probe.client.transport import Transport

logger = logging.getLogger(__name__)

DEFAULT_PUBLISH_TOPIC = "test/topic"


class Edge(str, Enum):
    ADVANCE = "advance"
    RESEND = "resend"


# Every legal move of the session. RESEND is the only backward edge.
TRANSITIONS: Dict[Tuple[SessionState, Edge], SessionState] = {
    (SessionState.SUBSCRIBE, Edge.ADVANCE): SessionState.PUBLISH_QOS0,
    (SessionState.PUBLISH_QOS0, Edge.ADVANCE): SessionState.WAIT_ACK0,
    (SessionState.WAIT_ACK0, Edge.ADVANCE): SessionState.PUBLISH_QOS1,
    (SessionState.PUBLISH_QOS1, Edge.ADVANCE): SessionState.WAIT_ACK1,
    (SessionState.WAIT_ACK1, Edge.ADVANCE): SessionState.FINISH,
    (SessionState.WAIT_ACK1, Edge.RESEND): SessionState.PUBLISH_QOS1,
}

PUBLISH_QOS = {
    SessionState.PUBLISH_QOS0: 0,
    SessionState.PUBLISH_QOS1: 1,
}


def log_inbound_message(topic: str, payload: bytes):
    logger.info(f"Received {len(payload)} bytes on '{topic}'")
    log_hexdump(topic.encode('utf-8'), log=logger)
    log_hexdump(payload, log=logger)


class SessionStateMachine:
    transport: Transport
    run_signal: RunSignal
    chunker: PayloadChunker
    retry_policy: RetryPolicy
    subscribe_intent: SubscribeIntent
    publish_topic: str
    session: Session

    def __init__(self,
                 transport: Transport,
                 run_signal: RunSignal,
                 chunker: PayloadChunker,
                 retry_policy: Optional[RetryPolicy] = None,
                 subscribe_intent: SubscribeIntent = DEFAULT_SUBSCRIBE_INTENT,
                 publish_topic: str = DEFAULT_PUBLISH_TOPIC,
                 message_observer: Callable[[str, bytes], None] = log_inbound_message):
        self.transport = transport
        self.run_signal = run_signal
        self.chunker = chunker
        self.retry_policy = retry_policy or RetryPolicy()
        self.subscribe_intent = subscribe_intent
        self.publish_topic = publish_topic
        self.message_observer = message_observer
        self.session = Session()

        self._handlers: Dict[type, Callable] = {
            ConnectionEstablished: self.on_connection_established,
            ConnectionFailed: self.on_connection_failed,
            ConnectionClosed: self.on_connection_closed,
            Subscribed: self.on_subscribed,
            WriteOpportunity: self.on_write_opportunity,
            Acknowledged: self.on_acknowledged,
            ResendRequested: self.on_resend_requested,
            MessageReceived: self.on_message_received,
            ServiceCancelled: self.on_service_cancelled,
        }

    @property
    def state(self) -> SessionState:
        return self.session.state

    @property
    def terminated(self) -> bool:
        return self.session.state is SessionState.FINISH or self.run_signal.interrupted

    def handle(self, event: SessionEvent):
        """Dispatches one transport event to its handler."""
        handler = self._handlers.get(type(event))
        if handler is None:
            logger.warning(f"No handler for event {event!r}, ignoring it.")
            return
        handler(event)

    # --- Connection lifecycle ---

    def on_connection_established(self, event: ConnectionEstablished):
        logger.info("MQTT client established")
        self.transport.request_write_opportunity()

    def on_connection_failed(self, event: ConnectionFailed):
        logger.error(f"Client connection error: {event.message or '(null)'}")
        self._abort(f"connection error: {event.message or '(null)'}")

    def on_connection_closed(self, event: ConnectionClosed):
        logger.info("Client closed")
        self._abort("connection closed")

    def on_service_cancelled(self, event: ServiceCancelled):
        logger.debug("Service cancelled")

    # --- Writes ---

    def on_write_opportunity(self, event: WriteOpportunity):
        # Write opportunities can arrive unasked for, so the current
        # state alone decides whether there is anything to send.
        if self.terminated:
            logger.debug(f"Write opportunity after termination in {self.state.name}, ignoring.")
            return

        if self.state is SessionState.SUBSCRIBE:
            if self.session.subscribe_pending:
                logger.debug("Subscribe in flight, waiting for the broker.")
                return
            self._subscribe()
        elif self.state in PUBLISH_QOS:
            self._publish_next_chunk()
        else:
            logger.debug(f"Nothing to write in {self.state.name}.")

    def _subscribe(self):
        logger.info("Writeable: subscribing")
        if not self.transport.send_subscribe(self.subscribe_intent):
            logger.warning("Subscribe failed")
            self._abort("subscribe rejected by transport")
            return

        # Publishing starts only once the broker confirms the subscription
        self.session.subscribe_pending = True

    def _publish_next_chunk(self):
        qos = PUBLISH_QOS[self.state]
        chunk = self.chunker.next_chunk(self.session.position)
        intent = PublishIntent(topic=self.publish_topic,
                               qos=qos,
                               payload_len=len(self.chunker),
                               final=chunk.final)

        logger.info(f"Writeable: publishing {len(chunk.data)} bytes at offset "
                    f"{self.session.position} (QoS{qos})")
        if not self.transport.send_publish(intent, chunk.data):
            logger.warning(f"Publish at QoS{qos} failed")
            self._abort(f"publish at QoS{qos} rejected by transport")
            return

        self.session.position += len(chunk.data)
        if self.session.position == len(self.chunker):
            self.session.position = 0
            self._take(Edge.ADVANCE)
        else:
            self.transport.request_write_opportunity()

    # --- Acknowledgments & resends ---

    def on_subscribed(self, event: Subscribed):
        logger.info("MQTT subscribed")
        if self.terminated:
            return
        if self.state is not SessionState.SUBSCRIBE or not self.session.subscribe_pending:
            logger.warning(f"Unexpected subscribe confirmation in {self.state.name}, ignoring.")
            return

        self.session.subscribe_pending = False
        self._take(Edge.ADVANCE)
        self.transport.request_write_opportunity()

    def on_acknowledged(self, event: Acknowledged):
        logger.info(f"MQTT ack in {self.state.name}")
        if self.terminated:
            return

        new_state = self._take(Edge.ADVANCE)
        if new_state is SessionState.FINISH:
            logger.info("Workflow finished, stopping the service.")
            self.run_signal.succeed()
            self.transport.cancel_service()
            return

        if new_state in PUBLISH_QOS:
            # Fresh publish attempt at the next QoS level
            self.session.retry_count = 0
            self.session.position = 0
            self.transport.request_write_opportunity()

    def on_resend_requested(self, event: ResendRequested):
        logger.info(f"MQTT resend requested for publish attempt {event.packet_id}")
        if self.terminated:
            return
        if self.state is not SessionState.WAIT_ACK1:
            logger.warning(f"Resend request in {self.state.name} ignored, "
                           f"only a QoS1 publish is ever resent.")
            return

        self.session.retry_count += 1
        if not self.retry_policy.should_retry(self.session.retry_count):
            self._abort(f"QoS1 publish not acknowledged after "
                        f"{self.session.retry_count} resend requests")
            return

        self._take(Edge.RESEND)
        self.session.position = 0
        self.transport.request_write_opportunity()

    # --- Inbound traffic ---

    def on_message_received(self, event: MessageReceived):
        if event.payload is None:
            raise ContractViolationError(f"Inbound message on '{event.topic}' carries no payload")
        self.message_observer(event.topic, event.payload)

    # --- Internals ---

    def _take(self, edge: Edge) -> SessionState:
        new_state = TRANSITIONS.get((self.state, edge))
        if new_state is None:
            raise ContractViolationError(f"No {edge.value} transition out of {self.state.name}")
        logger.debug(f"{self.state.name} -> {new_state.name} ({edge.value})")
        self.session.state = new_state
        return new_state

    def _abort(self, reason: str):
        if self.state is SessionState.FINISH:
            logger.debug(f"Ignoring '{reason}' after the workflow finished.")
            return
        logger.error(f"Aborting session in {self.state.name}: {reason}")
        self.run_signal.fail(reason)
        self.transport.cancel_service()
