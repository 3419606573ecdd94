"""mqtt-tail: follow MQTT topics like ``tail -f``."""

__version__ = "1.0.0"
