# mqtt_tail/core/config.py
"""
Configuration resolution.

Priority (highest to lowest):

    CLI flags  >  process env  >  .env file  >  rc file  >  defaults

Connection settings come from ``MQTT_*`` environment variables (and a local
``.env``) through pydantic-settings. The rc file (``~/.mqtttailrc.json`` and
friends) is parsed with PyYAML, which also accepts plain JSON. Only flags the
user actually passed are handed in from the command line, so argparse
defaults never shadow the environment.
"""
from __future__ import annotations

import logging
from enum import Enum
from pathlib import Path
from typing import Any, Mapping

import yaml
from pydantic import BaseModel, ConfigDict, Field, NonNegativeInt, ValidationError, field_validator
from pydantic.alias_generators import to_snake
from pydantic_settings import BaseSettings, SettingsConfigDict

from mqtt_tail.contracts.broker import QoS
from mqtt_tail.core.errors import SetupError

logger = logging.getLogger(__name__)

ENV_FILE = ".env"
RC_FILE_NAMES = (".mqtttailrc.json", ".mqtttailrc", ".mqtttailrc.yaml")

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


class OutputMode(str, Enum):
    PRETTY = "pretty"
    COMPACT = "compact"
    RAW = "raw"
    JSON = "json"


class TimestampFormat(str, Enum):
    LOCAL = "local"
    ISO = "iso"
    UNIX = "unix"
    UNIXMS = "unixms"


class LogFormat(str, Enum):
    TEXT = "text"
    JSON = "json"


# Flat keys (CLI flags, rc file) folded into TailOptions.output
OUTPUT_KEYS = ("mode", "timestamp", "timestamp_format", "color", "verbose")

# rc file keys named after command line flags
RC_FLAG_KEYS = {
    "count": "max_messages",
    "filter": "topic_filter",
    "retained": "allow_retained",
}
RC_MODE_SWITCHES = (
    ("output_json", OutputMode.JSON),
    ("compact", OutputMode.COMPACT),
    ("raw", OutputMode.RAW),
)


class OutputOptions(BaseModel):
    """How the formatter renders each message."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    mode: OutputMode = OutputMode.PRETTY
    timestamp: bool = True
    timestamp_format: TimestampFormat = TimestampFormat.LOCAL
    color: bool | None = Field(
        default=None, description="None = colour when stdout is a terminal"
    )
    verbose: bool = False


class ConnectionSettings(BaseSettings):
    """Connection settings readable from ``MQTT_*`` env vars and ``.env``."""

    model_config = SettingsConfigDict(
        env_prefix="MQTT_",
        env_file=ENV_FILE,
        extra="ignore",
    )

    host: str | None = None
    port: int | None = None
    username: str | None = None
    password: str | None = None
    tls: bool | None = None
    client_id: str | None = None
    ca: str | None = None
    cert: str | None = None
    key: str | None = None


class LogSettings(BaseSettings):
    """Diagnostics settings readable from ``MQTT_TAIL_*`` env vars."""

    model_config = SettingsConfigDict(
        env_prefix="MQTT_TAIL_",
        env_file=ENV_FILE,
        extra="ignore",
    )

    log_level: str | None = None
    log_format: LogFormat | None = None


class TailOptions(BaseModel):
    """The single merged options record handed to the stream controller."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    # Connection
    host: str = "localhost"
    port: int | None = Field(default=None, ge=1, le=65535)
    username: str | None = None
    password: str | None = None
    tls: bool = False
    ca: str | None = None
    cert: str | None = None
    key: str | None = None
    client_id: str | None = None

    # Subscription
    topics: list[str] = Field(default_factory=lambda: ["#"])
    qos: QoS = QoS.AT_MOST_ONCE

    # Filtering and termination
    max_messages: NonNegativeInt | None = Field(default=None, description="0 or None = no limit")
    topic_filter: str | None = None
    payload_filter: str | None = None
    allow_retained: bool = True

    output: OutputOptions = Field(default_factory=OutputOptions)

    log_level: str = "WARNING"
    log_format: LogFormat = LogFormat.TEXT

    @field_validator("topics")
    @classmethod
    def _default_topic(cls, value: list[str]) -> list[str]:
        return value or ["#"]

    @field_validator("max_messages")
    @classmethod
    def _zero_is_unlimited(cls, value: int | None) -> int | None:
        return value or None

    @field_validator("log_level")
    @classmethod
    def _known_level(cls, value: str) -> str:
        level = value.upper()
        if level not in LOG_LEVELS:
            raise ValueError(f"log level must be one of {', '.join(LOG_LEVELS)}")
        return level

    @property
    def uses_tls(self) -> bool:
        return bool(self.tls or self.ca or self.cert or self.key)

    def redacted(self) -> dict[str, Any]:
        """Options as a dict, safe for diagnostics."""
        data = self.model_dump(mode="json")
        if data.get("password"):
            data["password"] = "***"
        return data


# =============================================================================
# rc file
# =============================================================================


def rc_file_candidates(config_file: str | None = None) -> list[Path]:
    """Config file paths to try, in order."""
    if config_file:
        return [Path(config_file).expanduser()]
    home = Path.home()
    return [home / name for name in RC_FILE_NAMES] + [Path.cwd() / RC_FILE_NAMES[0]]


def load_rc_file(config_file: str | None = None) -> dict[str, Any]:
    """
    Load the first readable rc file.

    Keys may be camelCase (``clientId``) or snake_case; they are normalised to
    snake_case. Missing files are skipped silently, malformed ones with a
    warning.
    """
    for candidate in rc_file_candidates(config_file):
        try:
            text = candidate.read_text(encoding="utf-8")
        except OSError:
            continue

        try:
            data = yaml.safe_load(text)
        except yaml.YAMLError as exc:
            logger.warning("Ignoring malformed config file %s: %s", candidate, exc)
            continue

        if data is None:
            data = {}
        if not isinstance(data, dict):
            logger.warning("Ignoring config file %s: expected a mapping", candidate)
            continue

        logger.debug("Loaded config file %s", candidate)
        return normalise_rc_keys(data)

    return {}


def normalise_rc_keys(data: Mapping[str, Any]) -> dict[str, Any]:
    """
    Map rc file keys onto TailOptions field names.

    rc files written for the command line use flag names: ``count``,
    ``filter``, ``retained`` and the ``raw``/``compact``/``outputJson``
    switches. An explicit ``mode`` wins over the switches.
    """
    values = {to_snake(str(key)): value for key, value in data.items()}

    for flag, field_name in RC_FLAG_KEYS.items():
        if flag in values:
            value = values.pop(flag)
            values.setdefault(field_name, value)

    selected = None
    for flag, mode in RC_MODE_SWITCHES:
        if values.pop(flag, False) and selected is None:
            selected = mode
    if selected is not None:
        values.setdefault("mode", selected.value)

    return values


# =============================================================================
# Resolution
# =============================================================================


def _take(values: dict[str, Any], fields: Mapping[str, Any]) -> dict[str, Any]:
    return {name: values.pop(name) for name in list(values) if name in fields}


def resolve(cli_flags: Mapping[str, Any], config_file: str | None = None) -> TailOptions:
    """
    Merge CLI flags, environment, ``.env`` and rc file into TailOptions.

    Args:
        cli_flags: Only the flags the user explicitly passed, keyed by
            TailOptions field name (output keys may be given flat).
        config_file: Explicit rc file path, or None to search the defaults.

    Raises:
        SetupError: If any merged value fails validation.
    """
    flags = dict(cli_flags)
    file_values = load_rc_file(config_file)

    try:
        connection = ConnectionSettings(**_take(flags, ConnectionSettings.model_fields))
        logs = LogSettings(**_take(flags, LogSettings.model_fields))

        merged: dict[str, Any] = {
            **file_values,
            **connection.model_dump(exclude_unset=True),
            **logs.model_dump(exclude_unset=True),
            **flags,
        }

        output = _take(merged, dict.fromkeys(OUTPUT_KEYS))
        if output:
            nested = merged.get("output") or {}
            merged["output"] = {**nested, **output}

        return TailOptions.model_validate(merged)
    except ValidationError as exc:
        raise SetupError(f"Invalid configuration: {_describe(exc)}") from exc


def _describe(exc: ValidationError) -> str:
    """One line per ValidationError, naming each bad field."""
    return "; ".join(
        f"{'.'.join(str(part) for part in error['loc']) or 'options'}: {error['msg']}"
        for error in exc.errors(include_url=False)
    )
