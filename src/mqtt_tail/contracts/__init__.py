"""Public contracts for the mqtt-tail stream controller."""
from mqtt_tail.contracts.broker import (
    ConnectionHandle,
    ConnectionParameters,
    EventSink,
    GrantedSubscription,
    ProtocolEngine,
    QoS,
    Subscription,
    SubscriptionSet,
    build_subscriptions,
)
from mqtt_tail.contracts.events import (
    Closed,
    ConnectionLost,
    ConnectStarted,
    EngineError,
    HandshakeAck,
    MessageReceived,
    ReconnectAttempt,
    SetupFailed,
    ShutdownReason,
    ShutdownRequested,
    ShutdownTimedOut,
    StreamEvent,
    SubscribeFailed,
    SubscribeSucceeded,
)
from mqtt_tail.contracts.notices import Notice, Notify

__all__ = [
    "ConnectionHandle", "ConnectionParameters", "EventSink", "GrantedSubscription",
    "ProtocolEngine", "QoS", "Subscription", "SubscriptionSet", "build_subscriptions",
    "Closed", "ConnectionLost", "ConnectStarted", "EngineError", "HandshakeAck",
    "MessageReceived", "ReconnectAttempt", "SetupFailed", "ShutdownReason",
    "ShutdownRequested", "ShutdownTimedOut", "StreamEvent", "SubscribeFailed",
    "SubscribeSucceeded", "Notice", "Notify",
]
