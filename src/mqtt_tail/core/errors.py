# mqtt_tail/core/errors.py
"""
Error taxonomy.

Transient network failures never appear here: the protocol engine turns
them into ConnectionLost / EngineError events and retries on its own.
"""
from __future__ import annotations


class TailError(Exception):
    """Base class for mqtt-tail failures."""


class SetupError(TailError):
    """Fatal before the first connect attempt (bad TLS material, bad regex, bad config)."""


class SubscribeError(TailError):
    """The broker rejected the batch subscribe after a successful handshake."""


class ShutdownTimeoutError(TailError):
    """Graceful disconnect was not confirmed in time; termination is forced."""

    def __init__(self, timeout: float) -> None:
        super().__init__(f"Graceful disconnect not confirmed within {timeout:g}s")
        self.timeout = timeout
