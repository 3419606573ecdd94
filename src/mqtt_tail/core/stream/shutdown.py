# mqtt_tail/core/stream/shutdown.py
from __future__ import annotations

import logging
from typing import Callable

from mqtt_tail.contracts.events import ShutdownReason

logger = logging.getLogger(__name__)

ShutdownListener = Callable[[ShutdownReason], None]


class ShutdownToken:
    """
    Cooperative cancellation flag passed into the controller.

    Signal handlers (installed by the CLI, not the controller) only call
    ``trigger``. The controller checks ``triggered`` at the top of every
    event dispatch and registers a listener so an idle event loop wakes up.
    Triggering is idempotent: only the first call has any effect.
    """

    def __init__(self) -> None:
        self._reason: ShutdownReason | None = None
        self._listeners: list[ShutdownListener] = []

    @property
    def triggered(self) -> bool:
        return self._reason is not None

    @property
    def reason(self) -> ShutdownReason | None:
        return self._reason

    def add_listener(self, listener: ShutdownListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: ShutdownListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def trigger(self, reason: ShutdownReason = ShutdownReason.SIGNAL) -> bool:
        """Request shutdown. Returns False if it was already requested."""
        if self._reason is not None:
            logger.debug("shutdown already requested (%s), ignoring %s", self._reason.value, reason.value)
            return False
        self._reason = reason
        logger.debug("shutdown requested: %s", reason.value)
        for listener in list(self._listeners):
            listener(reason)
        return True
