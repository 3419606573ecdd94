# tests/conftest.py
import asyncio
import io
import os
from datetime import datetime, timezone

import pytest

from mqtt_tail.contracts.broker import GrantedSubscription
from mqtt_tail.contracts.events import Closed
from mqtt_tail.core.config import OutputOptions, TailOptions
from mqtt_tail.core.console import MessageWriter, StatusWriter
from mqtt_tail.core.errors import SubscribeError
from mqtt_tail.core.formatter import Formatter
from mqtt_tail.core.stream.controller import StreamController
from mqtt_tail.core.stream.shutdown import ShutdownToken

FIXED_NOW = datetime(2024, 5, 1, 12, 30, 45, 123000, tzinfo=timezone.utc)


class FakeHandle:
    def __init__(self, emit, *, subscribe_error=None, subscribe_events=(), confirm_disconnect=True):
        self.emit = emit
        self.subscribe_error = subscribe_error
        self.subscribe_events = list(subscribe_events)
        self.confirm_disconnect = confirm_disconnect
        self.subscribe_calls = []
        self.disconnect_calls = 0

    async def subscribe(self, subscriptions):
        self.subscribe_calls.append(tuple(subscriptions))
        if self.subscribe_error:
            raise SubscribeError(self.subscribe_error)
        granted = [GrantedSubscription(sub.topic, sub.qos) for sub in subscriptions]
        # Deliveries start once the broker has acknowledged the subscription
        for event in self.subscribe_events:
            self.emit(event)
        self.subscribe_events = []
        return granted

    async def disconnect_gracefully(self):
        self.disconnect_calls += 1
        if not self.confirm_disconnect:
            await asyncio.Event().wait()
        self.emit(Closed())


class FakeEngine:
    """Scripted ProtocolEngine: emits ``connect_events`` as soon as connect is called."""

    def __init__(self, connect_events=(), **handle_kwargs):
        self.connect_events = list(connect_events)
        self.handle_kwargs = handle_kwargs
        self.connect_calls = []
        self.handle = None

    def connect(self, broker_url, params, emit):
        self.connect_calls.append((broker_url, params))
        self.handle = FakeHandle(emit, **self.handle_kwargs)
        for event in self.connect_events:
            emit(event)
        return self.handle


class Transcript:
    """Records writes from both output channels in arrival order."""

    def __init__(self):
        self.entries = []
        self.stdout = _Channel("out", self.entries)
        self.stderr = _Channel("err", self.entries)

    def lines(self, channel):
        text = "".join(chunk for name, chunk in self.entries if name == channel)
        return text.splitlines()

    def channels(self):
        return [name for name, _ in self.entries]


class _Channel(io.StringIO):
    def __init__(self, name, entries):
        super().__init__()
        self.name = name
        self.entries = entries

    def write(self, text):
        self.entries.append((self.name, text))
        return super().write(text)

    def isatty(self):
        return False


def make_options(**overrides):
    overrides.setdefault("output", OutputOptions(color=False))
    return TailOptions(**overrides)


def make_controller(options, engine, transcript, **kwargs):
    formatter = Formatter(options.output, clock=lambda: FIXED_NOW)
    return StreamController(
        options,
        engine,
        formatter,
        token=kwargs.pop("token", None) or ShutdownToken(),
        messages=kwargs.pop("messages", None) or MessageWriter(transcript.stdout),
        status=StatusWriter(stream=transcript.stderr, color=False, username=options.username),
        **kwargs,
    )


async def wait_until(predicate, timeout=2.0):
    async def poll():
        while not predicate():
            await asyncio.sleep(0.001)

    await asyncio.wait_for(poll(), timeout)


@pytest.fixture
def transcript():
    return Transcript()


@pytest.fixture
def isolated_env(tmp_path, monkeypatch):
    """Empty HOME and cwd, no MQTT_* variables."""
    for name in list(os.environ):
        if name.startswith("MQTT_") or name == "NO_COLOR":
            monkeypatch.delenv(name, raising=False)
    home = tmp_path / "home"
    work = tmp_path / "work"
    home.mkdir()
    work.mkdir()
    monkeypatch.setenv("HOME", str(home))
    monkeypatch.chdir(work)
    return home, work
