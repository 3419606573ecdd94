# mqtt_tail/core/stream/machine.py
"""
Connection lifecycle state machine.

    INIT -> CONNECTING -> CONNECTED <-> OFFLINE -> TERMINATING -> TERMINATED

``step(state, event, config)`` is a pure function returning the next
RunState and the actions the controller must carry out. It never performs
I/O, so the whole lifecycle can be exercised without a broker.
"""
from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Callable, Union

from mqtt_tail.contracts.broker import SubscriptionSet
from mqtt_tail.contracts.events import (
    Closed,
    ConnectionLost,
    ConnectStarted,
    EngineError,
    HandshakeAck,
    MessageReceived,
    ReconnectAttempt,
    SetupFailed,
    ShutdownRequested,
    ShutdownTimedOut,
    StreamEvent,
    SubscribeFailed,
    SubscribeSucceeded,
)
from mqtt_tail.contracts.notices import Notice, Notify
from mqtt_tail.core.stream.filters import FilterSet
from mqtt_tail.core.stream.state import LIVE_PHASES, Phase, RunState


EXIT_OK = 0
EXIT_FATAL = 1


# =============================================================================
# Actions
# =============================================================================


@dataclass(frozen=True)
class Subscribe:
    subscriptions: SubscriptionSet


@dataclass(frozen=True)
class Forward:
    message: MessageReceived


@dataclass(frozen=True)
class Dropped:
    message: MessageReceived
    stage: str


@dataclass(frozen=True)
class Disconnect:
    pass


@dataclass(frozen=True)
class Finish:
    exit_code: int


Action = Union[Notify, Subscribe, Forward, Dropped, Disconnect, Finish]


@dataclass(frozen=True)
class StreamConfig:
    """Immutable inputs of the transition function."""

    broker_url: str
    subscriptions: SubscriptionSet = ()
    filters: FilterSet = field(default_factory=FilterSet)
    max_messages: int | None = None


Transition = tuple[RunState, list[Action]]


# =============================================================================
# Transitions
# =============================================================================


def _unchanged(state: RunState) -> Transition:
    return state, []


def _begin_shutdown(state: RunState, exit_code: int, notice: Notify) -> Transition:
    """Common shutdown path. Callers have already checked ``shutting_down``."""
    if state.phase is Phase.INIT:
        # Nothing to disconnect from
        done = replace(state, phase=Phase.TERMINATED, shutting_down=True, exit_code=exit_code)
        return done, [notice, Finish(exit_code)]
    terminating = replace(state, phase=Phase.TERMINATING, shutting_down=True, exit_code=exit_code)
    return terminating, [notice, Disconnect()]


def _on_connect_started(state: RunState, event: ConnectStarted, config: StreamConfig) -> Transition:
    if state.phase is not Phase.INIT:
        return _unchanged(state)
    return replace(state, phase=Phase.CONNECTING), [Notify(Notice.CONNECTING, event.broker_url)]


def _on_setup_failed(state: RunState, event: SetupFailed, config: StreamConfig) -> Transition:
    if state.phase is not Phase.INIT:
        return _unchanged(state)
    failed = replace(state, phase=Phase.TERMINATED, shutting_down=True, exit_code=EXIT_FATAL)
    return failed, [Notify(Notice.SETUP_FAILED, event.error), Finish(EXIT_FATAL)]


def _on_handshake(state: RunState, event: HandshakeAck, config: StreamConfig) -> Transition:
    if state.shutting_down or state.phase not in (Phase.CONNECTING, Phase.OFFLINE):
        return _unchanged(state)
    notice = Notice.RECONNECTED if state.ever_connected else Notice.CONNECTED
    connected = replace(
        state,
        phase=Phase.CONNECTED,
        ever_connected=True,
        offline_notice_shown=False,
        last_error=None,
        granted=(),
    )
    return connected, [Notify(notice, config.broker_url), Subscribe(config.subscriptions)]


def _on_connection_lost(state: RunState, event: ConnectionLost, config: StreamConfig) -> Transition:
    if state.shutting_down or state.phase not in LIVE_PHASES:
        return _unchanged(state)
    if state.offline_notice_shown:
        return replace(state, phase=Phase.OFFLINE), []
    notice = Notice.LOST_CONNECTION if state.ever_connected else Notice.CANNOT_REACH
    offline = replace(state, phase=Phase.OFFLINE, offline_notice_shown=True)
    return offline, [Notify(notice, config.broker_url)]


def _on_reconnect_attempt(state: RunState, event: ReconnectAttempt, config: StreamConfig) -> Transition:
    if state.shutting_down:
        return _unchanged(state)
    phase = Phase.CONNECTING if state.phase is Phase.OFFLINE else state.phase
    return replace(state, phase=phase, reconnect_attempts=state.reconnect_attempts + 1), []


def _on_engine_error(state: RunState, event: EngineError, config: StreamConfig) -> Transition:
    if state.shutting_down:
        return _unchanged(state)
    detail = event.describe()
    if detail == state.last_error:
        return _unchanged(state)
    return replace(state, last_error=detail), [Notify(Notice.ENGINE_ERROR, detail)]


def _on_subscribe_succeeded(state: RunState, event: SubscribeSucceeded, config: StreamConfig) -> Transition:
    if state.shutting_down or state.phase is not Phase.CONNECTED:
        return _unchanged(state)
    granted = tuple(event.granted)
    return replace(state, granted=granted), [Notify(Notice.SUBSCRIBED, granted=granted)]


def _on_subscribe_failed(state: RunState, event: SubscribeFailed, config: StreamConfig) -> Transition:
    # A failure for a connection that has since dropped is retried on the next handshake
    if state.shutting_down or state.phase is not Phase.CONNECTED:
        return _unchanged(state)
    return _begin_shutdown(state, EXIT_FATAL, Notify(Notice.SUBSCRIBE_FAILED, event.error))


def _on_message(state: RunState, event: MessageReceived, config: StreamConfig) -> Transition:
    if state.shutting_down:
        return _unchanged(state)

    stage = config.filters.rejecting_stage(event)
    if stage is not None:
        return state, [Dropped(event, stage)]

    forwarded = replace(state, forwarded=state.forwarded + 1)
    actions: list[Action] = [Forward(event)]
    if config.max_messages is not None and forwarded.forwarded >= config.max_messages:
        forwarded, more = _begin_shutdown(
            forwarded, EXIT_OK, Notify(Notice.LIMIT_REACHED, str(forwarded.forwarded))
        )
        actions.extend(more)
    return forwarded, actions


def _on_shutdown_requested(state: RunState, event: ShutdownRequested, config: StreamConfig) -> Transition:
    if state.shutting_down:
        return _unchanged(state)
    return _begin_shutdown(state, EXIT_OK, Notify(Notice.DISCONNECTING, event.reason.value))


def _on_shutdown_timed_out(state: RunState, event: ShutdownTimedOut, config: StreamConfig) -> Transition:
    if state.phase is not Phase.TERMINATING:
        return _unchanged(state)
    return replace(state, phase=Phase.TERMINATED), [Finish(state.exit_code)]


def _on_closed(state: RunState, event: Closed, config: StreamConfig) -> Transition:
    if state.phase is Phase.TERMINATING:
        return replace(state, phase=Phase.TERMINATED), [Finish(state.exit_code)]
    # The engine stopped without being asked to
    stopped = replace(state, phase=Phase.TERMINATED, shutting_down=True, exit_code=EXIT_FATAL)
    return stopped, [Finish(EXIT_FATAL)]


_TRANSITIONS: dict[type, Callable[..., Transition]] = {
    ConnectStarted: _on_connect_started,
    SetupFailed: _on_setup_failed,
    HandshakeAck: _on_handshake,
    ConnectionLost: _on_connection_lost,
    ReconnectAttempt: _on_reconnect_attempt,
    EngineError: _on_engine_error,
    SubscribeSucceeded: _on_subscribe_succeeded,
    SubscribeFailed: _on_subscribe_failed,
    MessageReceived: _on_message,
    ShutdownRequested: _on_shutdown_requested,
    ShutdownTimedOut: _on_shutdown_timed_out,
    Closed: _on_closed,
}


def step(state: RunState, event: StreamEvent, config: StreamConfig) -> Transition:
    """Apply one event. Events after TERMINATED are ignored."""
    if state.phase is Phase.TERMINATED:
        return _unchanged(state)
    transition = _TRANSITIONS.get(type(event))
    if transition is None:
        raise TypeError(f"Unknown stream event: {event!r}")
    return transition(state, event, config)
