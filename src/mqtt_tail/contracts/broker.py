# mqtt_tail/contracts/broker.py
"""
Protocol Engine contracts.

The stream controller never talks to the MQTT wire directly. It builds
ConnectionParameters, hands them to a ProtocolEngine, and reacts to the
events the resulting ConnectionHandle emits. Engine implementations
(aiomqtt, in-memory fakes) conform to these protocols.
"""
from __future__ import annotations

import ssl
from dataclasses import dataclass
from enum import IntEnum
from typing import TYPE_CHECKING, Callable, Protocol, Sequence, runtime_checkable

if TYPE_CHECKING:
    from mqtt_tail.contracts.events import StreamEvent


class QoS(IntEnum):
    AT_MOST_ONCE = 0
    AT_LEAST_ONCE = 1
    EXACTLY_ONCE = 2


@dataclass(frozen=True)
class ConnectionParameters:
    """
    Everything the engine needs to open and keep a broker connection.

    Attributes:
        broker_url: ``mqtt://host:port`` or ``mqtts://host:port``.
        client_id: Client identifier, user supplied or generated.
        username: Optional authentication username.
        password: Optional authentication password.
        tls_context: Verified TLS context, already loaded with CA and client
            certificate material. None for plain TCP.
        reconnect_interval: Fixed delay between reconnect attempts, seconds.
        connect_timeout: Handshake timeout, seconds.
        keepalive: MQTT keepalive interval, seconds.
        clean_session: Always True; the tool never resumes sessions.
    """

    broker_url: str
    client_id: str
    username: str | None = None
    password: str | None = None
    tls_context: ssl.SSLContext | None = None
    reconnect_interval: float = 2.0
    connect_timeout: float = 10.0
    keepalive: int = 60
    clean_session: bool = True

    @property
    def uses_tls(self) -> bool:
        return self.tls_context is not None


@dataclass(frozen=True)
class Subscription:
    topic: str
    qos: QoS = QoS.AT_MOST_ONCE


@dataclass(frozen=True)
class GrantedSubscription:
    """QoS actually granted by the broker, which may be lower than requested."""

    topic: str
    qos: QoS


SubscriptionSet = tuple[Subscription, ...]

EventSink = Callable[["StreamEvent"], None]


@runtime_checkable
class ConnectionHandle(Protocol):
    """A live (or reconnecting) connection produced by ProtocolEngine.connect."""

    async def subscribe(
        self, subscriptions: Sequence[Subscription]
    ) -> list[GrantedSubscription]: ...

    async def disconnect_gracefully(self) -> None: ...


@runtime_checkable
class ProtocolEngine(Protocol):
    """Transport owning the reactor side of a single broker connection."""

    def connect(
        self,
        broker_url: str,
        params: ConnectionParameters,
        emit: EventSink,
    ) -> ConnectionHandle: ...


def build_subscriptions(topics: Sequence[str], qos: QoS | int = QoS.AT_MOST_ONCE) -> SubscriptionSet:
    """Ordered, de-duplicated subscription set; ``#`` when no topic is given."""
    level = QoS(qos)
    seen: dict[str, Subscription] = {}
    for topic in topics or ("#",):
        if topic not in seen:
            seen[topic] = Subscription(topic=topic, qos=level)
    return tuple(seen.values())
