# mqtt_tail/core/logging.py
"""
Diagnostics logging setup.

Text or JSON (python-json-logger) records, always on stderr.
"""
from __future__ import annotations

import logging
import sys
from typing import TextIO

from pythonjsonlogger import jsonlogger


def configure_logging(
    level: str = "WARNING",
    fmt: str = "text",
    stream: TextIO | None = None,
) -> None:
    root = logging.getLogger()
    root.setLevel(level.upper())

    # stdout carries messages only; diagnostics always go to stderr
    handler = logging.StreamHandler(stream or sys.stderr)
    if fmt == "json":
        formatter: logging.Formatter = jsonlogger.JsonFormatter(
            "%(asctime)s %(levelname)s %(name)s %(message)s"
        )
    else:
        formatter = logging.Formatter("[%(levelname)s] %(name)s: %(message)s")
    handler.setFormatter(formatter)

    # Avoid duplicate handlers when called twice
    root.handlers = [handler]
