"""
Client-side components of the probe.

The session state machine and its helpers (chunker, retry policy) are
transport agnostic. `mqtt.py` binds them to `aiomqtt`, `controller.py`
gates the connection on host readiness and `main.py` wires it all up.
"""
