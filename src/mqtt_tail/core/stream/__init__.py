# mqtt_tail/core/stream/__init__.py
"""
Stream controller: lifecycle state machine, filter pipeline and shutdown.
"""

from mqtt_tail.core.stream.controller import DEFAULT_SHUTDOWN_TIMEOUT, StreamController
from mqtt_tail.core.stream.filters import FilterSet, compile_filter
from mqtt_tail.core.stream.machine import StreamConfig, step
from mqtt_tail.core.stream.shutdown import ShutdownToken
from mqtt_tail.core.stream.state import Phase, RunState

__all__ = [
    "DEFAULT_SHUTDOWN_TIMEOUT",
    "FilterSet",
    "Phase",
    "RunState",
    "ShutdownToken",
    "StreamConfig",
    "StreamController",
    "compile_filter",
    "step",
]
