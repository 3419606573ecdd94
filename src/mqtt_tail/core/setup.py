# mqtt_tail/core/setup.py
"""
First-run setup wizard.

Runs only when stdin is a terminal, no ``~/.mqtttailrc.json`` and no
``./.env`` exist, and no username/password was passed on the command line.
Prompts go to stderr; stdout stays reserved for messages.
"""
from __future__ import annotations

import getpass
import json
import logging
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Mapping, TextIO

from mqtt_tail.core import ansi
from mqtt_tail.core.broker.params import DEFAULT_HOST, DEFAULT_PORT
from mqtt_tail.core.config import ENV_FILE, RC_FILE_NAMES

logger = logging.getLogger(__name__)


def global_config_path() -> Path:
    return Path.home() / RC_FILE_NAMES[0]


def local_env_path() -> Path:
    return Path.cwd() / ENV_FILE


@dataclass(frozen=True)
class SetupAnswers:
    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    tls: bool = False
    username: str = ""
    password: str = ""

    def as_config(self) -> dict[str, Any]:
        config: dict[str, Any] = {"host": self.host, "port": self.port}
        if self.tls:
            config["tls"] = True
        if self.username:
            config["username"] = self.username
        if self.password:
            config["password"] = self.password
        return config

    def as_env_lines(self) -> list[str]:
        lines = []
        if self.host and self.host != DEFAULT_HOST:
            lines.append(f"MQTT_HOST={self.host}")
        if self.port and self.port != DEFAULT_PORT:
            lines.append(f"MQTT_PORT={self.port}")
        if self.tls:
            lines.append("MQTT_TLS=true")
        if self.username:
            lines.append(f"MQTT_USERNAME={self.username}")
        if self.password:
            lines.append(f"MQTT_PASSWORD={self.password}")
        return lines


class Prompter:
    """Line-based prompts on stderr. Input functions are injectable for tests."""

    def __init__(
        self,
        *,
        read: Callable[[], str] = input,
        read_secret: Callable[[str], str] | None = None,
        stream: TextIO | None = None,
    ) -> None:
        self._read = read
        self._stream = stream or sys.stderr
        self._read_secret = read_secret or (lambda prompt: getpass.getpass(prompt, stream=self._stream))

    def _ask(self, message: str) -> str:
        self._stream.write(message)
        self._stream.flush()
        return self._read().strip()

    def text(self, message: str, default: str = "") -> str:
        suffix = f" ({default}): " if default else ": "
        return self._ask(message + suffix) or default

    def number(self, message: str, default: int) -> int:
        while True:
            response = self.text(message, str(default))
            if response.isdigit():
                return int(response)
            self._stream.write("Must be a number\n")

    def confirm(self, message: str, default: bool = False) -> bool:
        suffix = " [Y/n]: " if default else " [y/N]: "
        response = self._ask(message + suffix).lower()
        if not response:
            return default
        return response in ("y", "yes")

    def secret(self, message: str) -> str:
        return self._read_secret(f"{message}: ")

    def choice(self, message: str, choices: Mapping[str, str]) -> str:
        keys = list(choices)
        self._stream.write(f"{message}\n")
        for i, key in enumerate(keys, 1):
            self._stream.write(f"  {i}. {choices[key]}\n")
        while True:
            response = self._ask("Enter choice (number): ")
            if response.isdigit() and 1 <= int(response) <= len(keys):
                return keys[int(response) - 1]
            self._stream.write("Invalid choice, please try again.\n")


def needs_setup(cli_flags: Mapping[str, Any], stdin: TextIO | None = None) -> bool:
    stdin = stdin or sys.stdin
    if not stdin.isatty():
        return False
    if global_config_path().exists() or local_env_path().exists():
        return False
    return not (cli_flags.get("username") or cli_flags.get("password"))


def ask_answers(prompter: Prompter) -> tuple[SetupAnswers, str]:
    host = prompter.text("Broker host", DEFAULT_HOST)
    port = prompter.number("Broker port", DEFAULT_PORT)
    tls = prompter.confirm("Use TLS/SSL?")
    username = prompter.text("Username (blank = none)")
    password = prompter.secret("Password") if username else ""

    destination = prompter.choice(
        "Where should the config be saved?",
        {
            "global": f"Global  {global_config_path()}",
            "local": f"Local   {local_env_path()}  (add to .gitignore!)",
        },
    )
    answers = SetupAnswers(host=host, port=port, tls=tls, username=username, password=password)
    return answers, destination


def save_global_json(answers: SetupAnswers, path: Path | None = None) -> Path:
    path = path or global_config_path()
    path.write_text(json.dumps(answers.as_config(), indent=2) + "\n", encoding="utf-8")
    return path


def save_local_env(answers: SetupAnswers, path: Path | None = None) -> Path:
    """Append MQTT_* lines to a .env file, creating it if needed."""
    path = path or local_env_path()
    separator = "\n" if path.exists() else ""
    with path.open("a", encoding="utf-8") as fh:
        fh.write(separator + "\n".join(answers.as_env_lines()) + "\n")
    return path


def run_setup_if_needed(
    cli_flags: Mapping[str, Any],
    *,
    prompter: Prompter | None = None,
    stdin: TextIO | None = None,
    color: bool | None = None,
) -> Path | None:
    """
    Interactively create a config file on first run.

    Args:
        cli_flags: Explicitly passed CLI flags.
        prompter: Prompt implementation, defaults to stdin/stderr.
        stdin: Stream checked for interactivity.
        color: Force colour on/off for the wizard's own lines.

    Returns:
        The path written, or None if the wizard did not run or was skipped.
    """
    if not needs_setup(cli_flags, stdin):
        return None

    prompter = prompter or Prompter()
    out = sys.stderr
    enabled = ansi.supports_color(out) if color is None else color

    out.write(
        "\n"
        + ansi.paint("No config found.", ansi.YELLOW, enabled=enabled)
        + " "
        + ansi.paint("Set up your broker connection (Ctrl+C to skip).", ansi.DIM, enabled=enabled)
        + "\n\n"
    )

    try:
        answers, destination = ask_answers(prompter)
    except (KeyboardInterrupt, EOFError):
        out.write("\n")
        logger.debug("Setup wizard skipped")
        return None

    out.write("\n")
    if destination == "global":
        path = save_global_json(answers)
    else:
        path = save_local_env(answers)

    out.write(
        ansi.paint("Saved ", ansi.GREEN, enabled=enabled)
        + ansi.paint(str(path), ansi.BOLD, ansi.GREEN, enabled=enabled)
        + "\n\n"
    )
    return path
