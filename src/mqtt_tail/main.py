# mqtt_tail/main.py
"""
mqtt-tail command line entry point.

Monitor MQTT topics like ``tail -f``. Messages go to stdout, everything else
to stderr, so the output can be piped straight into jq or grep.
"""
from __future__ import annotations

import argparse
import asyncio
import logging
import os
import signal
import sys
from typing import Any, Sequence

from mqtt_tail import __version__
from mqtt_tail.contracts.broker import ProtocolEngine
from mqtt_tail.core import ansi
from mqtt_tail.core.broker import AiomqttEngine
from mqtt_tail.core.config import LOG_LEVELS, LogFormat, OutputMode, TailOptions, TimestampFormat, resolve
from mqtt_tail.core.errors import SetupError
from mqtt_tail.core.logging import configure_logging
from mqtt_tail.core.setup import run_setup_if_needed
from mqtt_tail.core.stream import ShutdownToken, StreamController

logger = logging.getLogger(__name__)

EPILOG = """\
Examples:
    mqtt-tail                                     # All topics on localhost
    mqtt-tail sensors/#                           # All sensor topics
    mqtt-tail "sensors/+" "control/#"             # Multiple topics
    mqtt-tail -H mqtt.example.com -p 8883 --tls   # Remote TLS broker
    mqtt-tail -u alice -P secret "#"              # Authenticated connection
    mqtt-tail -f temperature "#"                  # Filter topics by regex
    mqtt-tail -n 20 "#"                           # Exit after 20 messages
    mqtt-tail --compact "#"                       # One line per message
    mqtt-tail --output-json "#" | jq .payload     # JSON lines, piped to jq
    mqtt-tail --no-retained --verbose "#"         # Skip retained, show metadata

Config file (~/.mqtttailrc.json):
    { "host": "mqtt.example.com", "username": "alice", "password": "secret" }

Environment variables:
    MQTT_HOST, MQTT_PORT, MQTT_USERNAME, MQTT_PASSWORD, MQTT_TLS, MQTT_CLIENT_ID,
    MQTT_CA, MQTT_CERT, MQTT_KEY, MQTT_TAIL_LOG_LEVEL, MQTT_TAIL_LOG_FORMAT

Precedence: flags > environment > ./.env > config file > defaults
"""


def build_parser() -> argparse.ArgumentParser:
    """
    Build the argument parser.

    Defaults are suppressed so only flags the user actually passed show up
    in the namespace; real defaults live in TailOptions.
    """
    parser = argparse.ArgumentParser(
        prog="mqtt-tail",
        description=(
            "Monitor MQTT topics like tail -f.\n\n"
            "Topics support MQTT wildcards: + (single level), # (multi level).\n"
            'Defaults to "#" (all topics) when none are specified.'
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=EPILOG,
        argument_default=argparse.SUPPRESS,
    )
    parser.add_argument(
        "-V",
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )
    parser.add_argument(
        "topics",
        nargs="*",
        default=[],
        help="MQTT topics to subscribe to (default: #)",
    )

    conn = parser.add_argument_group("connection")
    conn.add_argument("-H", "--host", help="Broker host (default: localhost)")
    conn.add_argument("-p", "--port", type=int, help="Broker port (default: 1883, 8883 with TLS)")
    conn.add_argument("-u", "--username", help="Username")
    conn.add_argument("-P", "--password", help="Password")
    conn.add_argument("--tls", action="store_true", help="Use TLS/SSL (mqtts://)")
    conn.add_argument("--ca", metavar="FILE", help="CA certificate file")
    conn.add_argument("--cert", metavar="FILE", help="Client certificate file")
    conn.add_argument("--key", metavar="FILE", help="Client key file")
    conn.add_argument("--client-id", dest="client_id", help="MQTT client ID (default: random)")

    filtering = parser.add_argument_group("filtering")
    filtering.add_argument(
        "-n",
        "--count",
        dest="max_messages",
        type=int,
        metavar="N",
        help="Exit after N messages",
    )
    filtering.add_argument("-f", "--filter", dest="topic_filter", metavar="REGEX", help="Filter by topic regex")
    filtering.add_argument(
        "--payload-filter",
        dest="payload_filter",
        metavar="REGEX",
        help="Filter by payload regex",
    )
    filtering.add_argument(
        "--no-retained",
        dest="allow_retained",
        action="store_false",
        help="Ignore retained messages",
    )
    filtering.add_argument(
        "-q",
        "--qos",
        type=int,
        choices=(0, 1, 2),
        help="QoS level for subscriptions (default: 0)",
    )

    output = parser.add_argument_group("output")
    mode = output.add_mutually_exclusive_group()
    mode.add_argument(
        "--raw",
        dest="mode",
        action="store_const",
        const=OutputMode.RAW.value,
        help="Print raw payload, no formatting",
    )
    mode.add_argument(
        "--compact",
        dest="mode",
        action="store_const",
        const=OutputMode.COMPACT.value,
        help="One message per line (no newlines in payload)",
    )
    mode.add_argument(
        "--output-json",
        dest="mode",
        action="store_const",
        const=OutputMode.JSON.value,
        help="Output newline-delimited JSON (for piping to jq)",
    )
    output.add_argument("--no-timestamp", dest="timestamp", action="store_false", help="Hide timestamps")
    output.add_argument(
        "--timestamp-format",
        dest="timestamp_format",
        choices=[fmt.value for fmt in TimestampFormat],
        help="Timestamp format (default: local)",
    )
    output.add_argument("--no-color", dest="color", action="store_false", help="Disable colored output")

    misc = parser.add_argument_group("misc")
    misc.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Show connection diagnostics and per-message metadata",
    )
    misc.add_argument("--config", metavar="FILE", help="Config file path (default: ~/.mqtttailrc.json)")
    misc.add_argument(
        "--log-level",
        dest="log_level",
        type=str.upper,
        choices=LOG_LEVELS,
        help="Diagnostics log level (default: WARNING)",
    )
    misc.add_argument(
        "--log-format",
        dest="log_format",
        choices=[fmt.value for fmt in LogFormat],
        help="Diagnostics log format (default: text)",
    )
    return parser


def parse_flags(argv: Sequence[str] | None = None) -> tuple[dict[str, Any], str | None]:
    """Return explicitly passed flags and the --config path."""
    flags = vars(build_parser().parse_args(argv))
    if not flags.get("topics"):
        flags.pop("topics", None)
    config_file = flags.pop("config", None)
    return flags, config_file


async def run(
    options: TailOptions,
    *,
    engine: ProtocolEngine | None = None,
    token: ShutdownToken | None = None,
) -> int:
    """Run one session with SIGINT/SIGTERM wired to the shutdown token."""
    token = token or ShutdownToken()
    loop = asyncio.get_running_loop()

    installed: list[signal.Signals] = []
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, token.trigger)
            installed.append(sig)
        except NotImplementedError:
            # Windows: Ctrl+C surfaces as KeyboardInterrupt instead
            pass

    controller = StreamController(options, engine or AiomqttEngine(), token=token)
    try:
        return await controller.run()
    finally:
        for sig in installed:
            loop.remove_signal_handler(sig)


def main(argv: Sequence[str] | None = None) -> int:
    """Parse flags, resolve options and run. Returns the exit code."""
    flags, config_file = parse_flags(argv)

    run_setup_if_needed(flags)

    try:
        options = resolve(flags, config_file)
    except SetupError as exc:
        sys.stderr.write(ansi.paint(str(exc), ansi.RED, enabled=ansi.supports_color(sys.stderr)) + "\n")
        return 1

    configure_logging(options.log_level, options.log_format.value)
    if options.output.verbose:
        logging.getLogger("mqtt_tail").setLevel(logging.DEBUG)

    try:
        return asyncio.run(run(options))
    except KeyboardInterrupt:
        return 0


def cli() -> None:
    """Console script entry point."""
    code = main()
    try:
        sys.stdout.flush()
    except BrokenPipeError:
        # The reader went away; keep the interpreter from complaining at exit
        devnull = os.open(os.devnull, os.O_WRONLY)
        os.dup2(devnull, sys.stdout.fileno())
    sys.exit(code)


if __name__ == "__main__":
    cli()
