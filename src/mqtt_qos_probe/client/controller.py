"""
Connection Establishment and Readiness Gating.

This module is responsible for:
- Walking the host through its startup phases (`HostLifecycle`) and
  telling interested parties about each step.
- Holding back the connect request until the host is operational, so
  the network is up and the clock is good enough to judge certificate
  validity (`ConnectionController`).
"""
import logging
from typing import Callable, List

from mqtt_qos_probe.client.models import ConnectParams, RunSignal, SystemState
from mqtt_qos_probe.client.transport import Transport

logger = logging.getLogger(__name__)

ReadyListener = Callable[[SystemState, SystemState], None]


class HostLifecycle:
    """
    Steps through the host's SystemState phases in order and notifies
    every registered listener with (current, target) at each step.
    """
    current: SystemState
    _listeners: List[ReadyListener]

    def __init__(self):
        self.current = SystemState.CONTEXT_CREATED
        self._listeners = []

    def register(self, listener: ReadyListener):
        self._listeners.append(listener)

    def advance_to(self, target: SystemState):
        if target < self.current:
            raise ValueError(f"Cannot go back from {self.current.name} to {target.name}")

        while True:
            logger.debug(f"System state {self.current.name} (target {target.name})")
            for listener in self._listeners:
                listener(self.current, target)
            if self.current == target:
                break
            self.current = SystemState(self.current + 1)


class ConnectionController:
    transport: Transport
    params: ConnectParams
    run_signal: RunSignal
    _connect_requested: bool

    def __init__(self, transport: Transport, params: ConnectParams, run_signal: RunSignal):
        self.transport = transport
        self.params = params
        self.run_signal = run_signal
        self._connect_requested = False

    def on_ready_notification(self, current: SystemState, target: SystemState):
        """Connects the first time both current and target are OPERATIONAL."""
        if current != SystemState.OPERATIONAL or target != SystemState.OPERATIONAL:
            return
        if self._connect_requested:
            return

        self._connect_requested = True
        self.connect()

    def connect(self) -> bool:
        scheme = "mqtts" if self.params.use_tls else "mqtt"
        logger.info(f"Connecting to {scheme}://{self.params.host}:{self.params.port} "
                    f"as {self.params.client_id}...")

        if not self.transport.connect(self.params):
            logger.error("Client connect failed")
            self.run_signal.fail("connect request rejected by transport")
            return False
        return True
