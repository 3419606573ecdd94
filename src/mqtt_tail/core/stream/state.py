# mqtt_tail/core/stream/state.py
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from mqtt_tail.contracts.broker import GrantedSubscription


class Phase(str, Enum):
    """Connection lifecycle. INIT is the only initial phase, TERMINATED the only final one."""

    INIT = "init"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    OFFLINE = "offline"
    TERMINATING = "terminating"
    TERMINATED = "terminated"


LIVE_PHASES = frozenset({Phase.CONNECTING, Phase.CONNECTED, Phase.OFFLINE})


@dataclass(frozen=True)
class RunState:
    """
    Everything the controller tracks for one run.

    Replaced, never mutated, by the transition function. Only the
    controller's own event dispatch holds the current instance.

    Attributes:
        phase: Current lifecycle phase.
        forwarded: Messages written to the message channel so far.
        ever_connected: True once the first handshake succeeded.
        offline_notice_shown: The offline status line for the current
            offline interval has been printed; cleared on reconnect.
        reconnect_attempts: Retries observed from the engine (diagnostics).
        shutting_down: Set once, when termination begins.
        exit_code: Process exit code recorded by the terminating cause.
        granted: QoS granted per topic on the last successful subscribe.
        last_error: Last engine error shown, to avoid repeating it while
            the broker stays unreachable.
    """

    phase: Phase = Phase.INIT
    forwarded: int = 0
    ever_connected: bool = False
    offline_notice_shown: bool = False
    reconnect_attempts: int = 0
    shutting_down: bool = False
    exit_code: int = 0
    granted: tuple[GrantedSubscription, ...] = ()
    last_error: str | None = None

    @property
    def terminated(self) -> bool:
        return self.phase is Phase.TERMINATED
