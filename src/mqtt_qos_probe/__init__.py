"""
mqtt_qos_probe

This package drives a single, deterministic MQTT client workflow
against a broker: subscribe, publish a payload at QoS0, publish the
same payload at QoS1, wait for the acknowledgment and report whether
the whole sequence completed.
"""
__version__ = "0.1.0"
