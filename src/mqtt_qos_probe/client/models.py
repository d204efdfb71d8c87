"""
Data Models for the Session, its Intents and the Transport Events.

Defines the states the session walks through, the transient intents it
hands to the transport, the events the transport feeds back and the
shared RunSignal read by the host run loop.
"""
from dataclasses import dataclass, field
import logging
from typing import Any, Dict, Optional, Tuple

from enum import Enum, IntEnum

logger = logging.getLogger(__name__)


class SessionState(IntEnum):
    """Session states, in the order the workflow walks through them."""
    SUBSCRIBE = 0
    PUBLISH_QOS0 = 1
    WAIT_ACK0 = 2
    PUBLISH_QOS1 = 3
    WAIT_ACK1 = 4
    FINISH = 5


class Outcome(str, Enum):
    SUCCESS = "success"
    FAILURE = "failure"


class SystemState(IntEnum):
    """Startup phases the host environment reports, lowest first."""
    CONTEXT_CREATED = 0
    INITIALIZED = 1
    IFACE_COLDPLUG = 2
    DHCP = 3
    TIME_VALID = 4
    POLICY_VALID = 5
    REGISTERED = 6
    OPERATIONAL = 7


# --- Session & Run Signal ---

@dataclass
class Session:
    """Per-connection progress. Owned by exactly one SessionStateMachine."""
    state: SessionState = SessionState.SUBSCRIBE
    position: int = 0
    retry_count: int = 0
    # SUBSCRIBE was sent and the broker has not answered yet
    subscribe_pending: bool = False


@dataclass
class RunSignal:
    """
    The shared result object the host run loop polls.

    `outcome` starts out as FAILURE: only reaching FINISH flips it. The
    first failure reason is kept, later ones are only logged.
    """
    interrupted: bool = False
    outcome: Outcome = Outcome.FAILURE
    reason: Optional[str] = None

    def succeed(self):
        self.outcome = Outcome.SUCCESS
        self.interrupted = True

    def fail(self, reason: str):
        if self.reason is None:
            self.reason = reason
        else:
            logger.debug(f"Additional failure after '{self.reason}': {reason}")
        self.outcome = Outcome.FAILURE
        self.interrupted = True

    def interrupt(self):
        self.interrupted = True

    @property
    def exit_code(self) -> int:
        return 0 if self.outcome is Outcome.SUCCESS else 1


# --- Intents (what the session asks the transport to do) ---

@dataclass(frozen=True)
class SubscribeIntent:
    """Ordered (topic, qos) pairs subscribed to in one request."""
    topics: Tuple[Tuple[str, int], ...]

    @classmethod
    def from_config(cls, entries) -> "SubscribeIntent":
        if not entries:
            return DEFAULT_SUBSCRIBE_INTENT
        return cls(topics=tuple((str(e['topic']), int(e.get('qos', 0))) for e in entries))


DEFAULT_SUBSCRIBE_INTENT = SubscribeIntent(topics=(("test/topic0", 0), ("test/topic1", 1)))


@dataclass(frozen=True, kw_only=True)
class PublishIntent:
    """Describes one publish write: a single chunk of a larger payload."""
    topic: str
    qos: int
    payload_len: int
    final: bool


# --- Connection parameters ---

@dataclass(frozen=True, kw_only=True)
class WillParams:
    topic: str = "good/bye"
    message: str = "sign-off"
    qos: int = 0
    retain: bool = False


@dataclass(frozen=True, kw_only=True)
class ConnectParams:
    """The fixed parameters of the one connection the probe makes."""
    host: str = "localhost"
    port: int = 1883
    client_id: str = "lwsMqttClient"
    keep_alive: int = 60
    clean_start: bool = True
    will: WillParams = field(default_factory=WillParams)
    username: Optional[str] = "lwsUser"
    password: Optional[str] = "mySecretPassword"
    protocol: str = "3.1.1"
    use_tls: bool = False
    allow_self_signed: bool = True
    ca_file: Optional[str] = None

    @classmethod
    def from_config(cls, config: Dict[str, Any], use_tls: bool = False) -> "ConnectParams":
        mqtt_conf = config.get('mqtt', {})
        will_conf = mqtt_conf.get('will', {})
        use_tls = use_tls or bool(mqtt_conf.get('tls', False))
        # Unencrypted and TLS listeners sit on different well-known ports
        default_port = 8883 if use_tls else 1883
        return cls(
            host=mqtt_conf.get('host', 'localhost'),
            port=int(mqtt_conf.get('port', default_port)),
            client_id=mqtt_conf.get('client_id', 'lwsMqttClient'),
            keep_alive=int(mqtt_conf.get('keep_alive', 60)),
            clean_start=bool(mqtt_conf.get('clean_start', True)),
            will=WillParams(
                topic=will_conf.get('topic', 'good/bye'),
                message=will_conf.get('message', 'sign-off'),
                qos=int(will_conf.get('qos', 0)),
                retain=bool(will_conf.get('retain', False)),
            ),
            username=mqtt_conf.get('username', 'lwsUser'),
            password=mqtt_conf.get('password', 'mySecretPassword'),
            protocol=str(mqtt_conf.get('protocol', '3.1.1')),
            use_tls=use_tls,
            allow_self_signed=bool(mqtt_conf.get('allow_self_signed', True)),
            ca_file=mqtt_conf.get('ca_file', None),
        )


@dataclass(frozen=True, kw_only=True)
class IdlePolicy:
    """Transport timing: when to give up on an ack, when to declare the link dead."""
    secs_since_valid_ping: float = 20
    secs_since_valid_hangup: float = 25

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> "IdlePolicy":
        retry_conf = config.get('retry', {})
        return cls(
            secs_since_valid_ping=float(retry_conf.get('secs_since_valid_ping', 20)),
            secs_since_valid_hangup=float(retry_conf.get('secs_since_valid_hangup', 25)),
        )


# --- Transport Events ---

@dataclass(frozen=True)
class SessionEvent:
    """Base class for everything the transport feeds into the session."""


@dataclass(frozen=True)
class ConnectionEstablished(SessionEvent):
    pass


@dataclass(frozen=True)
class ConnectionFailed(SessionEvent):
    message: Optional[str] = None


@dataclass(frozen=True)
class ConnectionClosed(SessionEvent):
    pass


@dataclass(frozen=True)
class Subscribed(SessionEvent):
    pass


@dataclass(frozen=True)
class WriteOpportunity(SessionEvent):
    pass


@dataclass(frozen=True)
class Acknowledged(SessionEvent):
    pass


@dataclass(frozen=True)
class ResendRequested(SessionEvent):
    """
    `packet_id` is the transport's own publish attempt number, not the
    MQTT packet identifier on the wire.
    """
    packet_id: int


@dataclass(frozen=True)
class MessageReceived(SessionEvent):
    topic: str
    payload: Optional[bytes]


@dataclass(frozen=True)
class ServiceCancelled(SessionEvent):
    """Wakes up a run loop blocked on the event queue."""
