"""
Verify package structure and module imports.
Ensures that the core application modules can be imported without syntax errors,
confirming correct package setup and path configuration.
"""

def test_client_imports():
    """Assert that the client modules can be imported without syntax errors."""
    try:
        import mqtt_qos_probe.client.main
        import mqtt_qos_probe.client.mqtt
        import mqtt_qos_probe.client.session
        import mqtt_qos_probe.client.controller
        import mqtt_qos_probe.client.config_loader
        success = True
    except ImportError as e:
        success = False
        print(f"Client Import Failed: {e}")

    assert success is True


def test_payload_has_documented_length():
    from mqtt_qos_probe.client.payload import PAYLOAD, PAYLOAD_LEN

    assert len(PAYLOAD) == PAYLOAD_LEN == 1337
