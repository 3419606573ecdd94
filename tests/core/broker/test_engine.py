# tests/core/broker/test_engine.py
import asyncio
from dataclasses import dataclass, field
from types import SimpleNamespace

import aiomqtt
import pytest

from mqtt_tail.contracts.broker import ConnectionParameters, GrantedSubscription, QoS, Subscription
from mqtt_tail.contracts.events import (
    Closed,
    ConnectionLost,
    EngineError,
    HandshakeAck,
    MessageReceived,
    ReconnectAttempt,
)
from mqtt_tail.core.broker.engine import AiomqttEngine, parse_broker_url
from mqtt_tail.core.errors import SubscribeError
from tests.conftest import wait_until

URL = "mqtt://broker:1883"
PARAMS = ConnectionParameters(broker_url=URL, client_id="cid", username="u", password="p", reconnect_interval=0.01)


@dataclass
class Session:
    """What one connection attempt does."""

    connect_error: Exception | None = None
    messages: list = field(default_factory=list)
    end_error: Exception | None = None
    suback: tuple = (0,)
    subscribe_error: Exception | None = None


class FakeClient:
    def __init__(self, session):
        self.session = session
        self.subscribed = []
        self.exited = False

    async def __aenter__(self):
        if self.session.connect_error:
            raise self.session.connect_error
        return self

    async def __aexit__(self, *exc_info):
        self.exited = True
        return False

    @property
    def messages(self):
        return self._iterate()

    async def _iterate(self):
        for message in self.session.messages:
            yield message
        if self.session.end_error is None:
            await asyncio.Event().wait()
        raise self.session.end_error

    async def subscribe(self, topics):
        self.subscribed.append(topics)
        if self.session.subscribe_error:
            raise self.session.subscribe_error
        return self.session.suback


class ScriptedClients:
    """aiomqtt.Client stand-in: each call plays the next Session."""

    def __init__(self, *sessions):
        self.sessions = list(sessions)
        self.calls = []
        self.clients = []

    def __call__(self, **kwargs):
        self.calls.append(kwargs)
        session = self.sessions.pop(0) if self.sessions else Session(connect_error=aiomqtt.MqttError("refused"))
        client = FakeClient(session)
        self.clients.append(client)
        return client


def message(topic, payload, qos=0, retain=False):
    return SimpleNamespace(topic=topic, payload=payload, qos=qos, retain=retain)


def test_parse_broker_url():
    assert parse_broker_url("mqtt://broker:1999") == ("broker", 1999)
    assert parse_broker_url("mqtts://broker") == ("broker", 8883)
    with pytest.raises(ValueError):
        parse_broker_url("http://broker")


@pytest.mark.asyncio
async def test_handshake_then_messages():
    clients = ScriptedClients(Session(messages=[message("a/b", b"1", 1), message("a/c", "text", 0, True)]))
    events = []

    handle = AiomqttEngine(client_factory=clients).connect(URL, PARAMS, events.append)
    await wait_until(lambda: len(events) >= 3)
    await handle.disconnect_gracefully()

    assert events == [
        HandshakeAck(session_present=False),
        MessageReceived("a/b", b"1", QoS.AT_LEAST_ONCE, False),
        MessageReceived("a/c", b"text", QoS.AT_MOST_ONCE, True),
        Closed(),
    ]
    assert clients.clients[0].exited
    assert clients.calls[0] == {
        "hostname": "broker",
        "port": 1883,
        "identifier": "cid",
        "username": "u",
        "password": "p",
        "tls_context": None,
        "keepalive": 60,
        "clean_session": True,
        "timeout": 10.0,
    }


@pytest.mark.asyncio
async def test_unreachable_broker_is_retried():
    clients = ScriptedClients(
        Session(connect_error=aiomqtt.MqttError("[Errno 111] Connection refused")),
        Session(),
    )
    events = []

    handle = AiomqttEngine(client_factory=clients).connect(URL, PARAMS, events.append)
    await wait_until(lambda: HandshakeAck() in events)
    await handle.disconnect_gracefully()

    assert events == [
        ConnectionLost(reason="[Errno 111] Connection refused"),
        ReconnectAttempt(attempt=1),
        HandshakeAck(),
        Closed(),
    ]
    assert handle.reconnect_attempts == 1


@pytest.mark.asyncio
async def test_dropped_connection_reports_lost_and_reconnects():
    clients = ScriptedClients(
        Session(messages=[message("t", b"x")], end_error=aiomqtt.MqttError("Disconnected during message iteration")),
        Session(),
    )
    events = []

    handle = AiomqttEngine(client_factory=clients).connect(URL, PARAMS, events.append)
    await wait_until(lambda: events.count(HandshakeAck()) == 2)
    await handle.disconnect_gracefully()

    kinds = [type(event) for event in events]
    assert kinds == [HandshakeAck, MessageReceived, ConnectionLost, ReconnectAttempt, HandshakeAck, Closed]


@pytest.mark.asyncio
async def test_broker_refusal_is_reported_with_code():
    clients = ScriptedClients(Session(connect_error=aiomqtt.MqttCodeError(5, "Not authorized")), Session())
    events = []

    handle = AiomqttEngine(client_factory=clients).connect(URL, PARAMS, events.append)
    await wait_until(lambda: HandshakeAck() in events)
    await handle.disconnect_gracefully()

    errors = [event for event in events if isinstance(event, EngineError)]
    assert len(errors) == 1
    assert errors[0].code == 5
    assert not errors[0].message.startswith("[code:")
    assert isinstance(events[1], ConnectionLost)


@pytest.mark.asyncio
async def test_subscribe_returns_granted_qos_in_order():
    clients = ScriptedClients(Session(suback=(1, SimpleNamespace(value=0))))
    events = []
    handle = AiomqttEngine(client_factory=clients).connect(URL, PARAMS, events.append)
    await wait_until(lambda: handle.connected)

    granted = await handle.subscribe([Subscription("a/#", QoS.AT_LEAST_ONCE), Subscription("b", QoS.EXACTLY_ONCE)])
    await handle.disconnect_gracefully()

    assert granted == [GrantedSubscription("a/#", QoS.AT_LEAST_ONCE), GrantedSubscription("b", QoS.AT_MOST_ONCE)]
    assert clients.clients[0].subscribed == [[("a/#", 1), ("b", 2)]]


@pytest.mark.asyncio
async def test_subscribe_rejection_raises():
    clients = ScriptedClients(Session(suback=(0, 0x80)))
    handle = AiomqttEngine(client_factory=clients).connect(URL, PARAMS, lambda event: None)
    await wait_until(lambda: handle.connected)

    with pytest.raises(SubscribeError, match="b/# rejected"):
        await handle.subscribe([Subscription("a"), Subscription("b/#")])
    await handle.disconnect_gracefully()


@pytest.mark.asyncio
async def test_subscribe_transport_error_raises():
    clients = ScriptedClients(Session(subscribe_error=aiomqtt.MqttError("timed out")))
    handle = AiomqttEngine(client_factory=clients).connect(URL, PARAMS, lambda event: None)
    await wait_until(lambda: handle.connected)

    with pytest.raises(SubscribeError, match="timed out"):
        await handle.subscribe([Subscription("a")])
    await handle.disconnect_gracefully()


@pytest.mark.asyncio
async def test_subscribe_while_offline_raises():
    clients = ScriptedClients()
    handle = AiomqttEngine(client_factory=clients).connect(URL, PARAMS, lambda event: None)

    with pytest.raises(SubscribeError, match="Not connected"):
        await handle.subscribe([Subscription("a")])
    await handle.disconnect_gracefully()


@pytest.mark.asyncio
async def test_disconnect_is_idempotent():
    clients = ScriptedClients(Session())
    events = []
    handle = AiomqttEngine(client_factory=clients).connect(URL, PARAMS, events.append)
    await wait_until(lambda: handle.connected)

    await handle.disconnect_gracefully()
    await handle.disconnect_gracefully()

    assert events.count(Closed()) == 1
    assert not handle.connected


@pytest.mark.asyncio
async def test_unexpected_crash_reports_and_closes():
    clients = ScriptedClients(Session(connect_error=RuntimeError("boom")))
    events = []

    AiomqttEngine(client_factory=clients).connect(URL, PARAMS, events.append)
    await wait_until(lambda: Closed() in events)

    assert events == [EngineError(message="boom"), Closed()]
