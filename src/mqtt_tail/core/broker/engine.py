# mqtt_tail/core/broker/engine.py
"""
aiomqtt-backed ProtocolEngine.

One listener task owns the broker connection for the whole run:

    connect -> HandshakeAck -> MessageReceived* -> (error) -> ConnectionLost
            -> sleep(reconnect_interval) -> ReconnectAttempt -> connect ...

Retries run forever at a fixed interval until ``disconnect_gracefully`` is
called. Everything the controller needs to know is pushed through ``emit``;
the engine never prints anything itself.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Sequence
from urllib.parse import urlsplit

import aiomqtt

from mqtt_tail.contracts.broker import (
    ConnectionParameters,
    EventSink,
    GrantedSubscription,
    QoS,
    Subscription,
)
from mqtt_tail.contracts.events import (
    Closed,
    ConnectionLost,
    EngineError,
    HandshakeAck,
    MessageReceived,
    ReconnectAttempt,
)
from mqtt_tail.core.broker.params import DEFAULT_PORT, DEFAULT_TLS_PORT
from mqtt_tail.core.errors import SubscribeError

logger = logging.getLogger(__name__)

ClientFactory = Callable[..., Any]

# Reason codes at or above this value mean "not granted"
SUBACK_FAILURE = 0x80


def parse_broker_url(broker_url: str) -> tuple[str, int]:
    """Split ``mqtt://host:port`` / ``mqtts://host:port`` into host and port."""
    parts = urlsplit(broker_url)
    if parts.scheme not in ("mqtt", "mqtts"):
        raise ValueError(f"Unsupported broker URL scheme: {broker_url}")
    default = DEFAULT_TLS_PORT if parts.scheme == "mqtts" else DEFAULT_PORT
    return parts.hostname or "localhost", parts.port or default


def _reason_value(code: Any) -> int:
    # paho hands back either plain ints (MQTT 3.1.1) or ReasonCode objects (MQTT 5)
    return int(getattr(code, "value", code))


def _to_event(message: aiomqtt.Message) -> MessageReceived:
    payload = message.payload
    if isinstance(payload, (bytes, bytearray)):
        raw = bytes(payload)
    elif payload is None:
        raw = b""
    else:
        raw = str(payload).encode("utf-8")
    return MessageReceived(
        topic=str(message.topic),
        payload=raw,
        qos=QoS(message.qos),
        retain=bool(message.retain),
    )


def _engine_error(exc: aiomqtt.MqttCodeError) -> EngineError:
    code = _reason_value(exc.rc)
    text = str(exc)
    prefix = f"[code:{code}] "
    if text.startswith(prefix):
        text = text[len(prefix):]
    return EngineError(message=text, code=code)


class AiomqttHandle:
    """
    A live, self-reconnecting broker connection.

    Created by ``AiomqttEngine.connect``. ``subscribe`` only works while a
    connection is up; the controller re-issues it on every handshake.
    """

    def __init__(
        self,
        broker_url: str,
        params: ConnectionParameters,
        emit: EventSink,
        client_factory: ClientFactory = aiomqtt.Client,
    ) -> None:
        self._host, self._port = parse_broker_url(broker_url)
        self._params = params
        self._emit = emit
        self._client_factory = client_factory

        self._client: Any | None = None
        self._closing = False
        self._closed = False
        self._attempts = 0
        self._listener_task: asyncio.Task | None = None

    @property
    def connected(self) -> bool:
        return self._client is not None

    @property
    def reconnect_attempts(self) -> int:
        return self._attempts

    def start(self) -> None:
        if self._listener_task is not None:
            return
        self._listener_task = asyncio.create_task(
            self._listener_loop(),
            name="mqtt-tail-listener",
        )
        self._listener_task.add_done_callback(self._on_listener_done)

    # =========================================================================
    # ConnectionHandle
    # =========================================================================

    async def subscribe(self, subscriptions: Sequence[Subscription]) -> list[GrantedSubscription]:
        """
        Issue one batch SUBSCRIBE for all subscriptions.

        Args:
            subscriptions: Topics and requested QoS, in order.

        Returns:
            Granted subscriptions in request order.

        Raises:
            SubscribeError: If not connected, the request fails, or the
                broker rejects any of the topics.
        """
        client = self._client
        if client is None:
            raise SubscribeError("Not connected")

        request = [(sub.topic, int(sub.qos)) for sub in subscriptions]
        logger.debug("Subscribing to %s", ", ".join(topic for topic, _ in request))
        try:
            codes = await client.subscribe(request)
        except aiomqtt.MqttError as exc:
            raise SubscribeError(str(exc)) from exc

        granted: list[GrantedSubscription] = []
        for sub, code in zip(subscriptions, codes):
            value = _reason_value(code)
            if value >= SUBACK_FAILURE:
                raise SubscribeError(f"Subscription to {sub.topic} rejected by broker [{value}]")
            granted.append(GrantedSubscription(topic=sub.topic, qos=QoS(value)))
        return granted

    async def disconnect_gracefully(self) -> None:
        """
        Stop retrying and close the connection.

        Cancelling the listener unwinds the client's context manager, which
        sends DISCONNECT when a connection is up. Emits Closed exactly once.
        """
        if self._closing:
            return
        self._closing = True

        task = self._listener_task
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
            except aiomqtt.MqttError as exc:
                logger.debug("Error while disconnecting: %s", exc)
        self._emit_closed()

    # =========================================================================
    # Listener
    # =========================================================================

    def _client_kwargs(self) -> dict[str, Any]:
        params = self._params
        return {
            "hostname": self._host,
            "port": self._port,
            "identifier": params.client_id,
            "username": params.username,
            "password": params.password,
            "tls_context": params.tls_context,
            "keepalive": params.keepalive,
            "clean_session": params.clean_session,
            "timeout": params.connect_timeout,
        }

    async def _listener_loop(self) -> None:
        while not self._closing:
            await self._connect_and_listen()
            if self._closing:
                break
            await asyncio.sleep(self._params.reconnect_interval)
            if self._closing:
                break
            self._attempts += 1
            logger.debug("Reconnect attempt #%d to %s:%d", self._attempts, self._host, self._port)
            self._emit(ReconnectAttempt(attempt=self._attempts))

    async def _connect_and_listen(self) -> None:
        try:
            async with self._client_factory(**self._client_kwargs()) as client:
                self._client = client
                # clean_session is always set, so there is never a stored session
                self._emit(HandshakeAck(session_present=False))
                async for message in client.messages:
                    self._emit(_to_event(message))
        except aiomqtt.MqttCodeError as exc:
            if self._closing:
                return
            logger.debug("Broker refused or dropped the connection: %s", exc)
            self._emit(_engine_error(exc))
            self._emit(ConnectionLost(reason=str(exc)))
        except aiomqtt.MqttError as exc:
            if self._closing:
                return
            logger.debug("Connection to %s:%d failed: %s", self._host, self._port, exc)
            self._emit(ConnectionLost(reason=str(exc)))
        else:
            if not self._closing:
                self._emit(ConnectionLost(reason="message stream ended"))
        finally:
            self._client = None

    def _on_listener_done(self, task: asyncio.Task) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is None:
            return
        # Anything other than MqttError is a bug or an environment failure
        logger.error("Listener task crashed: %s", exc, exc_info=exc)
        self._emit(EngineError(message=str(exc) or type(exc).__name__))
        self._emit_closed()

    def _emit_closed(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._emit(Closed())


class AiomqttEngine:
    """ProtocolEngine implementation on top of aiomqtt."""

    def __init__(self, client_factory: ClientFactory = aiomqtt.Client) -> None:
        self._client_factory = client_factory

    def connect(
        self,
        broker_url: str,
        params: ConnectionParameters,
        emit: EventSink,
    ) -> AiomqttHandle:
        handle = AiomqttHandle(broker_url, params, emit, client_factory=self._client_factory)
        handle.start()
        logger.debug("Listener started for %s as %s", broker_url, params.client_id)
        return handle
