# mqtt_tail/contracts/events.py
"""
Stream events.

Every lifecycle signal, delivered message and asynchronous result reaches
the controller as one of these frozen records, in delivery order, and is
consumed by a single transition function.
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Union

from mqtt_tail.contracts.broker import GrantedSubscription, QoS


class ShutdownReason(str, Enum):
    SIGNAL = "signal"
    PIPE_CLOSED = "pipe-closed"


@dataclass(frozen=True)
class ConnectStarted:
    broker_url: str


@dataclass(frozen=True)
class SetupFailed:
    error: str


@dataclass(frozen=True)
class HandshakeAck:
    session_present: bool = False


@dataclass(frozen=True)
class ConnectionLost:
    reason: str | None = None


@dataclass(frozen=True)
class ReconnectAttempt:
    attempt: int


@dataclass(frozen=True)
class EngineError:
    message: str
    code: int | None = None

    def describe(self) -> str:
        if self.code is None:
            return self.message
        return f"{self.message} [{self.code}]"


@dataclass(frozen=True)
class MessageReceived:
    """A single delivered message. Not retained past filtering and formatting."""

    topic: str
    payload: bytes
    qos: QoS = QoS.AT_MOST_ONCE
    retain: bool = False

    @property
    def text(self) -> str:
        return self.payload.decode("utf-8", errors="replace")

    @property
    def size(self) -> int:
        return len(self.payload)


@dataclass(frozen=True)
class SubscribeSucceeded:
    granted: tuple[GrantedSubscription, ...]


@dataclass(frozen=True)
class SubscribeFailed:
    error: str


@dataclass(frozen=True)
class ShutdownRequested:
    reason: ShutdownReason = ShutdownReason.SIGNAL


@dataclass(frozen=True)
class ShutdownTimedOut:
    pass


@dataclass(frozen=True)
class Closed:
    pass


StreamEvent = Union[
    ConnectStarted,
    SetupFailed,
    HandshakeAck,
    ConnectionLost,
    ReconnectAttempt,
    EngineError,
    MessageReceived,
    SubscribeSucceeded,
    SubscribeFailed,
    ShutdownRequested,
    ShutdownTimedOut,
    Closed,
]
