"""
Main entry point for the MQTT QoS probe.

This module is responsible for:
- Parsing the command line and loading the YAML configuration.
- Wiring the transport, the session state machine and the connection
  controller together around one shared RunSignal.
- Running the host loop: walk the host up to OPERATIONAL, then feed
  transport events to the session one at a time until it is interrupted.
- Mapping the outcome to the process exit status.
"""

import argparse
import asyncio
import logging
import signal
from typing import Any, Dict, List, Optional, Tuple

from mqtt_qos_probe.client.chunker import DEFAULT_CHUNK_SIZE, PayloadChunker
from mqtt_qos_probe.client.config_loader import DEFAULT_CONFIG_PATH, load_config
from mqtt_qos_probe.client.controller import ConnectionController, HostLifecycle
from mqtt_qos_probe.client.exceptions import ConfigError, ProbeError
from mqtt_qos_probe.client.models import (
    ConnectParams,
    IdlePolicy,
    RunSignal,
    SubscribeIntent,
    SystemState,
)
from mqtt_qos_probe.client.mqtt import AiomqttTransport
from mqtt_qos_probe.client.payload import PAYLOAD
from mqtt_qos_probe.client.retry import RetryPolicy
from mqtt_qos_probe.client.session import DEFAULT_PUBLISH_TOPIC, SessionStateMachine


def setup_logging(level: int = logging.INFO):
    """
    Configures the global logging settings for the entire application.
    This should be called as early as possible during startup.
    """
    logging.basicConfig(
        level=level,
        format='%(asctime)s [%(levelname)-8s] %(name)s.%(funcName)s: %(message)s'
    )

logger = logging.getLogger(__name__)


def build_session(config: Dict[str, Any], events: asyncio.Queue, run_signal: RunSignal,
                  use_tls: bool = False) -> Tuple[AiomqttTransport, SessionStateMachine, ConnectionController]:
    """Creates the transport, the session and the controller from the configuration."""
    publish_conf = config.get('publish', {})
    try:
        chunker = PayloadChunker(PAYLOAD, int(publish_conf.get('chunk_size', DEFAULT_CHUNK_SIZE)))
        retry_policy = RetryPolicy.from_config(config)
        subscribe_intent = SubscribeIntent.from_config(config.get('subscribe'))
        params = ConnectParams.from_config(config, use_tls=use_tls)
        idle_policy = IdlePolicy.from_config(config)
    except (KeyError, TypeError, ValueError) as e:
        raise ConfigError(f"Invalid configuration: {e}") from e

    transport = AiomqttTransport(events=events, idle_policy=idle_policy)
    machine = SessionStateMachine(transport,
                                  run_signal,
                                  chunker,
                                  retry_policy=retry_policy,
                                  subscribe_intent=subscribe_intent,
                                  publish_topic=publish_conf.get('topic', DEFAULT_PUBLISH_TOPIC))
    controller = ConnectionController(transport, params, run_signal)
    return transport, machine, controller


def interrupt(signal_name: str, run_signal: RunSignal, transport: AiomqttTransport):
    """Signal handler: stop scheduling new work and wake up the run loop."""
    logger.info(f"Received exit signal {signal_name}...")
    run_signal.interrupt()
    transport.cancel_service()


async def run_probe(config: Dict[str, Any], use_tls: bool = False) -> RunSignal:
    loop = asyncio.get_running_loop()
    events: asyncio.Queue = asyncio.Queue()
    run_signal = RunSignal()

    transport, machine, controller = build_session(config, events, run_signal, use_tls=use_tls)

    # The controller only connects once the host reports it is operational
    lifecycle = HostLifecycle()
    lifecycle.register(controller.on_ready_notification)

    # Setup Signal Handlers for OS interrupts
    handled_signals = (signal.SIGINT, signal.SIGTERM)
    for sig in handled_signals:
        loop.add_signal_handler(sig, interrupt, sig.name, run_signal, transport)

    try:
        lifecycle.advance_to(SystemState.OPERATIONAL)

        # The event loop: one event at a time until something terminal happens
        while not run_signal.interrupted:
            event = await events.get()
            try:
                machine.handle(event)
            except ProbeError as e:
                logger.error(f"Session handler failed: {e}")
                run_signal.fail(str(e))
    finally:
        for sig in handled_signals:
            loop.remove_signal_handler(sig)
        await transport.close()

    if run_signal.exit_code == 0:
        logger.info("Completed: OK")
    else:
        logger.info(f"Completed: failed ({run_signal.reason or 'interrupted'})")
    return run_signal


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    p = argparse.ArgumentParser(prog="mqtt-qos-probe",
                                description="Subscribe, publish at QoS0 and QoS1, report the outcome.")
    p.add_argument("-s", "--tls", action="store_true", help="use TLS (default port 8883)")
    p.add_argument("-d", "--debug", action="store_true", help="debug logging")
    p.add_argument("-c", "--config", default=str(DEFAULT_CONFIG_PATH), help="YAML configuration file")
    p.add_argument("--host", default=None, help="broker host, overrides the configuration")
    return p.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    setup_logging(logging.DEBUG if args.debug else logging.INFO)
    logger.info(f"MQTT QoS probe {'tls enabled' if args.tls else 'unencrypted'} [-d][-s]")

    try:
        config = dict(load_config(args.config))
        if args.host:
            config['mqtt'] = {**config.get('mqtt', {}), 'host': args.host}
        run_signal = asyncio.run(run_probe(config, use_tls=args.tls))
    except ConfigError as e:
        logger.error(f"{e}")
        return 1
    except KeyboardInterrupt:
        # Handled by the signal handler, but good to catch here just in case.
        return 1

    return run_signal.exit_code


if __name__ == "__main__":
    raise SystemExit(main())
