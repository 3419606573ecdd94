# mqtt_tail/core/broker/__init__.py
"""
Broker connection infrastructure.

This module provides:
- ConnectionParameters construction from resolved options (TLS loaded eagerly)
- The aiomqtt-backed ProtocolEngine used by the stream controller

Example usage:

    from mqtt_tail.core.broker import AiomqttEngine, build_connection_parameters

    params = build_connection_parameters(options)
    handle = AiomqttEngine().connect(params.broker_url, params, inbox.put_nowait)
"""

from mqtt_tail.core.broker.engine import AiomqttEngine, AiomqttHandle, parse_broker_url
from mqtt_tail.core.broker.params import (
    CONNECT_TIMEOUT,
    DEFAULT_PORT,
    DEFAULT_TLS_PORT,
    RECONNECT_INTERVAL,
    build_broker_url,
    build_connection_parameters,
    build_tls_context,
    generate_client_id,
)

__all__ = [
    "AiomqttEngine",
    "AiomqttHandle",
    "CONNECT_TIMEOUT",
    "DEFAULT_PORT",
    "DEFAULT_TLS_PORT",
    "RECONNECT_INTERVAL",
    "build_broker_url",
    "build_connection_parameters",
    "build_tls_context",
    "generate_client_id",
    "parse_broker_url",
]
