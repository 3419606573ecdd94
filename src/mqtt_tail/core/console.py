# mqtt_tail/core/console.py
"""
Output channels.

Message-derived text goes to stdout and nothing else does: status lines,
errors and diagnostics all go to stderr, so the message stream can be piped
into jq, grep or a file without corruption.
"""
from __future__ import annotations

import sys
from typing import TextIO

from mqtt_tail.core import ansi
from mqtt_tail.core.formatter import topic_color
from mqtt_tail.contracts.notices import Notice, Notify

QUIT_HINT = "(Ctrl+C to quit)"


class MessageWriter:
    """The message-output channel: one rendered message per write, flushed."""

    def __init__(self, stream: TextIO | None = None) -> None:
        self._stream = stream

    @property
    def stream(self) -> TextIO:
        # Resolved lazily so redirected/captured stdout is honoured
        return self._stream or sys.stdout

    def write(self, text: str) -> None:
        """Write one message. Raises BrokenPipeError if the reader went away."""
        stream = self.stream
        stream.write(text + "\n")
        stream.flush()


class StatusWriter:
    """The status-output channel: connection notices and errors."""

    def __init__(
        self,
        *,
        stream: TextIO | None = None,
        color: bool | None = None,
        username: str | None = None,
        retry_interval: float = 2.0,
    ) -> None:
        self._stream = stream
        self._color = color
        self._username = username
        self._retry_interval = retry_interval

    @property
    def stream(self) -> TextIO:
        return self._stream or sys.stderr

    @property
    def color(self) -> bool:
        if self._color is None:
            return ansi.supports_color(self.stream)
        return self._color

    def line(self, text: str = "") -> None:
        self.stream.write(text + "\n")
        self.stream.flush()

    def error(self, text: str) -> None:
        self.line(self._paint(text, ansi.RED))

    def notify(self, action: Notify) -> None:
        """Render one Notice as status line(s)."""
        notice, detail = action.notice, action.detail

        if notice is Notice.CONNECTING:
            as_user = self._paint(f" as {self._username}", ansi.DIM) if self._username else ""
            self.line(self._paint(f"Connecting to {detail}", ansi.DIM) + as_user + self._paint("...", ansi.DIM))
        elif notice is Notice.CONNECTED:
            self.line(self._paint(f"Connected to {detail}", ansi.GREEN))
        elif notice is Notice.RECONNECTED:
            self.line(self._paint(f"Reconnected to {detail}", ansi.GREEN))
        elif notice is Notice.SUBSCRIBED:
            for granted in action.granted:
                label = self._paint(granted.topic, topic_color(granted.topic))
                self.line(self._paint("  watching ", ansi.DIM) + label + self._paint(f" (QoS {int(granted.qos)})", ansi.DIM))
            self.line()
        elif notice is Notice.CANNOT_REACH:
            self.line(self._paint(f"Cannot reach {detail}", ansi.YELLOW) + "  " + self._retry_hint())
        elif notice is Notice.LOST_CONNECTION:
            self.line(self._paint(f"Lost connection to {detail}", ansi.YELLOW) + "  " + self._retry_hint())
        elif notice is Notice.ENGINE_ERROR:
            self.error(f"Error: {detail}")
        elif notice is Notice.SUBSCRIBE_FAILED:
            self.error(f"Subscribe error: {detail}")
        elif notice is Notice.SETUP_FAILED:
            self.error(detail)
        elif notice is Notice.LIMIT_REACHED:
            self.line(self._paint(f"Received {detail} messages, disconnecting...", ansi.DIM))
        elif notice is Notice.DISCONNECTING:
            self.line("\n" + self._paint("Disconnecting...", ansi.DIM))

    def _retry_hint(self) -> str:
        return self._paint(f"retrying every {self._retry_interval:g}s  {QUIT_HINT}", ansi.DIM)

    def _paint(self, text: str, *styles: str) -> str:
        return ansi.paint(text, *styles, enabled=self.color)
