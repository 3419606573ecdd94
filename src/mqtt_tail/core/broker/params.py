# mqtt_tail/core/broker/params.py
"""
ConnectionParameters construction.

TLS material is loaded here, before the first connect attempt, so an
unreadable CA, certificate or key fails fast as a SetupError instead of
surfacing later as an endless stream of reconnects.
"""
from __future__ import annotations

import logging
import ssl
from uuid import uuid4

from mqtt_tail.contracts.broker import ConnectionParameters
from mqtt_tail.core.config import TailOptions
from mqtt_tail.core.errors import SetupError

logger = logging.getLogger(__name__)

DEFAULT_HOST = "localhost"
DEFAULT_PORT = 1883
DEFAULT_TLS_PORT = 8883

# Fixed, not configurable: the engine retries forever at this interval
RECONNECT_INTERVAL = 2.0
CONNECT_TIMEOUT = 10.0

CLIENT_ID_PREFIX = "mqtt-tail"


def generate_client_id() -> str:
    return f"{CLIENT_ID_PREFIX}-{uuid4().hex[:6]}"


def build_broker_url(options: TailOptions) -> str:
    scheme = "mqtts" if options.uses_tls else "mqtt"
    host = options.host or DEFAULT_HOST
    port = options.port or (DEFAULT_TLS_PORT if options.uses_tls else DEFAULT_PORT)
    return f"{scheme}://{host}:{port}"


def build_tls_context(
    ca: str | None = None,
    cert: str | None = None,
    key: str | None = None,
) -> ssl.SSLContext:
    """
    Build a verifying client TLS context.

    Raises:
        SetupError: If any of the files cannot be read or parsed.
    """
    if key and not cert:
        raise SetupError("--key requires --cert")

    context = ssl.create_default_context()
    try:
        if ca:
            context.load_verify_locations(cafile=ca)
        if cert:
            context.load_cert_chain(certfile=cert, keyfile=key or None)
    except OSError as exc:
        # ssl.SSLError is an OSError too
        raise SetupError(f"Cannot load TLS material: {exc}") from exc
    return context


def build_connection_parameters(options: TailOptions) -> ConnectionParameters:
    """Resolve options into immutable ConnectionParameters."""
    tls_context = None
    if options.uses_tls:
        tls_context = build_tls_context(options.ca, options.cert, options.key)

    return ConnectionParameters(
        broker_url=build_broker_url(options),
        client_id=options.client_id or generate_client_id(),
        username=options.username or None,
        password=options.password or None,
        tls_context=tls_context,
        reconnect_interval=RECONNECT_INTERVAL,
        connect_timeout=CONNECT_TIMEOUT,
    )
