# mqtt_tail/core/formatter.py
"""
Message rendering.

Turns one delivered message into the text written to the message channel,
according to the active OutputOptions:

    pretty   ▶ topic  12:00:01.123  (qos:0 12B)
             │ {
             │   "temp": 21.5
             │ }
    compact  ▶ topic  12:00:01.123  {"temp":21.5}
    raw      header plus the payload text, untouched
    json     one JSON object per line, for jq and friends

JSON payloads are re-indented and, when colour is on, highlighted with
Pygments. Topics get a stable colour derived from a hash of their name.
"""
from __future__ import annotations

import json
import sys
from datetime import datetime, timezone
from typing import Any, Callable

from pygments import highlight
from pygments.formatters import TerminalFormatter
from pygments.lexers import JsonLexer

from mqtt_tail.core import ansi
from mqtt_tail.core.config import OutputMode, OutputOptions, TimestampFormat

TOPIC_COLORS = (
    ansi.CYAN,
    ansi.GREEN,
    ansi.YELLOW,
    ansi.MAGENTA,
    ansi.BLUE,
    ansi.RED,
    ansi.BRIGHT_CYAN,
    ansi.BRIGHT_GREEN,
    ansi.BRIGHT_YELLOW,
    ansi.BRIGHT_MAGENTA,
)

HEADER_MARK = "▶"
BODY_BORDER = "│"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def topic_color(topic: str) -> str:
    """Pick a palette entry from a 32-bit ``31 * h + c`` rolling hash."""
    h = 0
    for ch in topic:
        h = (31 * h + ord(ch)) & 0xFFFFFFFF
    if h >= 0x80000000:
        h -= 0x100000000
    return TOPIC_COLORS[abs(h) % len(TOPIC_COLORS)]


def format_timestamp(fmt: TimestampFormat | str, now: datetime | None = None) -> str:
    now = now or _utcnow()
    try:
        fmt = TimestampFormat(fmt)
    except ValueError:
        fmt = TimestampFormat.LOCAL
    if fmt is TimestampFormat.ISO:
        return now.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")
    if fmt is TimestampFormat.UNIX:
        return str(int(now.timestamp()))
    if fmt is TimestampFormat.UNIXMS:
        return str(int(now.timestamp() * 1000))
    local = now.astimezone()
    return f"{local:%H:%M:%S}.{local.microsecond // 1000:03d}"


def parse_json(text: str) -> tuple[bool, Any]:
    try:
        return True, json.loads(text)
    except ValueError:
        return False, text


class Formatter:
    """Renders messages and decorated topic labels for one run."""

    def __init__(
        self,
        options: OutputOptions | None = None,
        *,
        color: bool | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._options = options or OutputOptions()
        if color is None:
            color = self._options.color
        if color is None:
            color = ansi.supports_color(sys.stdout)
        # JSON lines are for machines
        self._color = color and self._options.mode is not OutputMode.JSON
        self._clock = clock

    @property
    def options(self) -> OutputOptions:
        return self._options

    @property
    def color(self) -> bool:
        return self._color

    def format_message(
        self,
        topic: str,
        payload: bytes,
        *,
        qos: int = 0,
        retain: bool = False,
    ) -> str:
        """Render one message; the caller appends the trailing newline."""
        if self._options.mode is OutputMode.JSON:
            return self._format_json_line(topic, payload, qos, retain)

        color = topic_color(topic)
        parts = [
            self._paint(HEADER_MARK, color) + " " + self._paint(topic, ansi.BOLD, color)
        ]
        if self._options.timestamp:
            parts.append(self._paint(self.timestamp(), ansi.DIM))
        if self._options.verbose:
            parts.append(self._paint(self._meta(qos, retain, payload), ansi.DIM))
        header = "  ".join(parts)

        body = self._format_payload(payload)
        if self._options.mode is OutputMode.COMPACT:
            return f"{header}  {body}"

        border = self._paint(BODY_BORDER, color) + " "
        return header + "\n" + "\n".join(border + line for line in body.split("\n"))

    def timestamp(self) -> str:
        return format_timestamp(self._options.timestamp_format, self._clock())

    # -- Helpers ---------------------------------------------------------------

    def _paint(self, text: str, *styles: str) -> str:
        return ansi.paint(text, *styles, enabled=self._color)

    def _format_payload(self, payload: bytes) -> str:
        text = payload.decode("utf-8", errors="replace")
        if self._options.mode is OutputMode.RAW:
            return text

        ok, value = parse_json(text)
        if not ok:
            return text
        if self._options.mode is OutputMode.COMPACT:
            # Compact must stay on one line
            return json.dumps(value, ensure_ascii=False, separators=(",", ":"))

        pretty = json.dumps(value, ensure_ascii=False, indent=2)
        if not self._color:
            return pretty
        return highlight(pretty, JsonLexer(), TerminalFormatter()).rstrip("\n")

    def _meta(self, qos: int, retain: bool, payload: bytes) -> str:
        parts = [f"qos:{int(qos)}"]
        if retain:
            parts.append(self._paint("retained", ansi.YELLOW))
        parts.append(f"{len(payload)}B")
        return f"({' '.join(parts)})"

    def _format_json_line(self, topic: str, payload: bytes, qos: int, retain: bool) -> str:
        _, value = parse_json(payload.decode("utf-8", errors="replace"))
        record = {
            "timestamp": format_timestamp(TimestampFormat.ISO, self._clock()),
            "topic": topic,
            "payload": value,
            "qos": int(qos),
            "retain": bool(retain),
            "size": len(payload),
        }
        return json.dumps(record, ensure_ascii=False, separators=(",", ":"))
