# mqtt_tail/core/stream/filters.py
"""
Message filter pipeline.

Stages run in a fixed order and stop at the first rejection:

1. retained  - drop retained messages unless they are allowed
2. topic     - topic must match the topic regex, if one is configured
3. payload   - decoded payload must match the payload regex, if configured

Cheap boolean checks come first so payloads that would be dropped anyway
are never decoded. Stages are plain data; adding a filter kind means adding
an entry to ``FilterSet.stages``, not touching the control flow.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from functools import cached_property
from typing import Callable

from mqtt_tail.contracts.events import MessageReceived
from mqtt_tail.core.errors import SetupError


def compile_filter(pattern: str | None, label: str) -> re.Pattern[str] | None:
    """
    Compile a user supplied regex.

    Returns None for an empty pattern. Matching is unanchored and
    case-sensitive (``re.search``).

    Raises:
        SetupError: If the pattern is not a valid regular expression.
    """
    if not pattern:
        return None
    try:
        return re.compile(pattern)
    except re.error as exc:
        raise SetupError(f'Invalid {label} regex "{pattern}": {exc}') from exc


@dataclass(frozen=True)
class FilterStage:
    name: str
    accepts: Callable[[MessageReceived], bool]


@dataclass(frozen=True)
class FilterSet:
    """Compiled once at startup, immutable afterwards."""

    topic: re.Pattern[str] | None = None
    payload: re.Pattern[str] | None = None
    allow_retained: bool = True

    @classmethod
    def from_patterns(
        cls,
        topic_pattern: str | None = None,
        payload_pattern: str | None = None,
        allow_retained: bool = True,
    ) -> FilterSet:
        return cls(
            topic=compile_filter(topic_pattern, "--filter"),
            payload=compile_filter(payload_pattern, "--payload-filter"),
            allow_retained=allow_retained,
        )

    @cached_property
    def stages(self) -> tuple[FilterStage, ...]:
        stages: list[FilterStage] = []
        if not self.allow_retained:
            stages.append(FilterStage("retained", lambda msg: not msg.retain))
        if self.topic is not None:
            topic = self.topic
            stages.append(FilterStage("topic", lambda msg: topic.search(msg.topic) is not None))
        if self.payload is not None:
            payload = self.payload
            stages.append(FilterStage("payload", lambda msg: payload.search(msg.text) is not None))
        return tuple(stages)

    def rejecting_stage(self, message: MessageReceived) -> str | None:
        """Name of the first stage that drops the message, or None if it passes."""
        for stage in self.stages:
            if not stage.accepts(message):
                return stage.name
        return None

    def accepts(self, message: MessageReceived) -> bool:
        return self.rejecting_stage(message) is None

    def describe(self) -> str:
        topic = self.topic.pattern if self.topic else "none"
        payload = self.payload.pattern if self.payload else "none"
        return f"topic={topic}  payload={payload}  retained={'yes' if self.allow_retained else 'no'}"
