# tests/core/stream/test_shutdown.py
from mqtt_tail.contracts.events import ShutdownReason
from mqtt_tail.core.stream.shutdown import ShutdownToken


def test_trigger_is_idempotent():
    token = ShutdownToken()
    calls = []
    token.add_listener(calls.append)

    assert token.trigger() is True
    assert token.trigger(ShutdownReason.PIPE_CLOSED) is False

    assert token.triggered
    assert token.reason is ShutdownReason.SIGNAL
    assert calls == [ShutdownReason.SIGNAL]


def test_removed_listener_is_not_called():
    token = ShutdownToken()
    calls = []
    token.add_listener(calls.append)
    token.remove_listener(calls.append)
    token.remove_listener(calls.append)

    token.trigger(ShutdownReason.PIPE_CLOSED)

    assert calls == []
    assert token.reason is ShutdownReason.PIPE_CLOSED
