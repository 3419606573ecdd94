# mqtt_tail/core/ansi.py
"""Minimal ANSI SGR styling shared by the formatter and the status writer."""
from __future__ import annotations

import os
from typing import TextIO

RESET = "\033[0m"

BOLD = "1"
DIM = "2"
RED = "31"
GREEN = "32"
YELLOW = "33"
BLUE = "34"
MAGENTA = "35"
CYAN = "36"
BRIGHT_GREEN = "92"
BRIGHT_YELLOW = "93"
BRIGHT_MAGENTA = "95"
BRIGHT_CYAN = "96"


def paint(text: str, *styles: str, enabled: bool = True) -> str:
    if not enabled or not styles or not text:
        return text
    return f"\033[{';'.join(styles)}m{text}{RESET}"


def supports_color(stream: TextIO) -> bool:
    """Colour only for terminals, and never when NO_COLOR is set."""
    if os.environ.get("NO_COLOR"):
        return False
    isatty = getattr(stream, "isatty", None)
    return bool(isatty and isatty())
