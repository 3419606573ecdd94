# mqtt_tail/contracts/notices.py
"""
Status notices.

The state machine decides which notice to show; the status writer decides
how it looks. Both sides depend on these records only.
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from mqtt_tail.contracts.broker import GrantedSubscription


class Notice(str, Enum):
    """Status lines the controller may print on the status channel."""

    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTED = "reconnected"
    SUBSCRIBED = "subscribed"
    CANNOT_REACH = "cannot-reach"
    LOST_CONNECTION = "lost-connection"
    ENGINE_ERROR = "engine-error"
    SUBSCRIBE_FAILED = "subscribe-failed"
    SETUP_FAILED = "setup-failed"
    DISCONNECTING = "disconnecting"
    LIMIT_REACHED = "limit-reached"


@dataclass(frozen=True)
class Notify:
    notice: Notice
    detail: str = ""
    granted: tuple[GrantedSubscription, ...] = ()
