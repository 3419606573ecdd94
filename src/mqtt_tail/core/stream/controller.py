# mqtt_tail/core/stream/controller.py
"""
Stream controller.

Owns the run: builds connection parameters, starts the protocol engine, and
feeds every event through the pure transition function in delivery order.
Side effects (status lines, message output, subscribe and disconnect calls)
happen only here, while executing the actions ``step`` returns.

Engine callbacks and background results never touch RunState directly; they
are posted into a single asyncio.Queue and consumed one at a time by ``run``.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Coroutine

from mqtt_tail.contracts.broker import (
    ConnectionHandle,
    ConnectionParameters,
    ProtocolEngine,
    SubscriptionSet,
    build_subscriptions,
)
from mqtt_tail.contracts.events import (
    Closed,
    ConnectStarted,
    MessageReceived,
    SetupFailed,
    ShutdownReason,
    ShutdownRequested,
    ShutdownTimedOut,
    StreamEvent,
    SubscribeFailed,
    SubscribeSucceeded,
)
from mqtt_tail.contracts.notices import Notify
from mqtt_tail.core.broker.params import (
    RECONNECT_INTERVAL,
    build_broker_url,
    build_connection_parameters,
)
from mqtt_tail.core.config import TailOptions
from mqtt_tail.core.console import MessageWriter, StatusWriter
from mqtt_tail.core.errors import SetupError, ShutdownTimeoutError, SubscribeError
from mqtt_tail.core.formatter import Formatter
from mqtt_tail.core.stream.filters import FilterSet
from mqtt_tail.core.stream.machine import (
    Action,
    Disconnect,
    Dropped,
    Finish,
    Forward,
    StreamConfig,
    Subscribe,
    step,
)
from mqtt_tail.core.stream.shutdown import ShutdownToken
from mqtt_tail.core.stream.state import RunState

logger = logging.getLogger(__name__)

DEFAULT_SHUTDOWN_TIMEOUT = 5.0


class StreamController:
    """
    Drives one live-tail session against one broker.

    Example:
        controller = StreamController(options, AiomqttEngine(), token=token)
        exit_code = await controller.run()
    """

    def __init__(
        self,
        options: TailOptions,
        engine: ProtocolEngine,
        formatter: Formatter | None = None,
        *,
        token: ShutdownToken | None = None,
        messages: MessageWriter | None = None,
        status: StatusWriter | None = None,
        shutdown_timeout: float = DEFAULT_SHUTDOWN_TIMEOUT,
    ) -> None:
        """
        Initialize the controller.

        Args:
            options: Fully resolved options.
            engine: Protocol engine that owns the broker connection.
            formatter: Message renderer; built from ``options.output`` if omitted.
            token: Shutdown token the caller triggers on signals.
            messages: Message-output channel (stdout by default).
            status: Status-output channel (stderr by default).
            shutdown_timeout: Seconds to wait for a confirmed disconnect.
        """
        self._options = options
        self._engine = engine
        self._formatter = formatter or Formatter(options.output)
        self._token = token or ShutdownToken()
        self._messages = messages or MessageWriter()
        self._status = status or StatusWriter(
            color=options.output.color,
            username=options.username,
            retry_interval=RECONNECT_INTERVAL,
        )
        self._shutdown_timeout = shutdown_timeout

        self._state = RunState()
        self._config = StreamConfig(broker_url=build_broker_url(options))
        self._inbox: asyncio.Queue[StreamEvent] = asyncio.Queue()
        self._params: ConnectionParameters | None = None
        self._handle: ConnectionHandle | None = None
        self._tasks: set[asyncio.Task] = set()
        self._disconnect_started = False

    @property
    def state(self) -> RunState:
        return self._state

    @property
    def token(self) -> ShutdownToken:
        return self._token

    async def run(self) -> int:
        """
        Run until TERMINATED.

        Returns:
            Process exit code: 0 for count limit, signal or closed pipe,
            1 for fatal setup or subscribe errors.
        """
        self._token.add_listener(self._on_shutdown)
        try:
            if not self._prepare():
                return self._state.exit_code

            self._dispatch(ConnectStarted(broker_url=self._config.broker_url))
            if self._state.terminated:
                return self._state.exit_code

            logger.debug("Calling engine.connect()")
            self._handle = self._engine.connect(
                self._config.broker_url, self._params, self._inbox.put_nowait
            )

            while not self._state.terminated:
                event = await self._inbox.get()
                self._dispatch(event)

            return self._state.exit_code
        finally:
            self._token.remove_listener(self._on_shutdown)
            await self._cancel_tasks()

    # =========================================================================
    # Setup
    # =========================================================================

    def _prepare(self) -> bool:
        """Build parameters and filters. Returns False if the run is over."""
        options = self._options
        try:
            self._params = build_connection_parameters(options)
            filters = FilterSet.from_patterns(
                options.topic_filter,
                options.payload_filter,
                options.allow_retained,
            )
        except SetupError as exc:
            self._dispatch(SetupFailed(error=str(exc)))
            return False

        self._config = StreamConfig(
            broker_url=self._params.broker_url,
            subscriptions=build_subscriptions(options.topics, options.qos),
            filters=filters,
            max_messages=options.max_messages,
        )
        self._log_diagnostics(filters)
        return True

    def _log_diagnostics(self, filters: FilterSet) -> None:
        params = self._params
        auth = f'user="{params.username}"' if params.username else "none"
        topics = ", ".join(sub.topic for sub in self._config.subscriptions)

        logger.debug("broker URL : %s", params.broker_url)
        logger.debug("client ID  : %s", params.client_id)
        logger.debug("auth       : %s", auth)
        logger.debug("tls        : %s", "yes" if params.uses_tls else "no")
        logger.debug("topics     : %s (QoS %d)", topics, int(self._options.qos))
        logger.debug("filters    : %s", filters.describe())
        logger.debug("resolved options (no password): %s", self._options.redacted())

    # =========================================================================
    # Event processing
    # =========================================================================

    def _on_shutdown(self, reason: ShutdownReason) -> None:
        # Wakes up an idle inbox; _dispatch does the actual fold
        self._post(ShutdownRequested(reason=reason))

    def _post(self, event: StreamEvent) -> None:
        self._inbox.put_nowait(event)

    def _dispatch(self, event: StreamEvent) -> None:
        if self._token.triggered and not self._state.shutting_down:
            self._apply(ShutdownRequested(reason=self._token.reason or ShutdownReason.SIGNAL))
        self._apply(event)

    def _apply(self, event: StreamEvent) -> None:
        if isinstance(event, MessageReceived):
            logger.debug(
                'message  topic="%s"  size=%dB  qos=%d  retain=%s',
                event.topic,
                event.size,
                int(event.qos),
                event.retain,
            )
        else:
            logger.debug("event %s in %s", event, self._state.phase.value)

        self._state, actions = step(self._state, event, self._config)
        for action in actions:
            self._execute(action)

    def _execute(self, action: Action) -> None:
        if isinstance(action, Notify):
            self._status.notify(action)
        elif isinstance(action, Forward):
            self._forward(action.message)
        elif isinstance(action, Dropped):
            logger.debug("  -> dropped (%s filter)", action.stage)
        elif isinstance(action, Subscribe):
            self._start_subscribe(action.subscriptions)
        elif isinstance(action, Disconnect):
            self._start_disconnect()
        elif isinstance(action, Finish):
            logger.debug("finished with exit code %d", action.exit_code)

    def _forward(self, message: MessageReceived) -> None:
        text = self._formatter.format_message(
            message.topic,
            message.payload,
            qos=message.qos,
            retain=message.retain,
        )
        try:
            self._messages.write(text)
        except BrokenPipeError:
            logger.debug("Message output closed by reader")
            self._token.trigger(ShutdownReason.PIPE_CLOSED)
            return
        logger.debug("  -> printed  (total: %d)", self._state.forwarded)

    # =========================================================================
    # Background work
    # =========================================================================

    def _spawn(self, coro: Coroutine[Any, Any, None], name: str) -> None:
        task = asyncio.create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def _start_subscribe(self, subscriptions: SubscriptionSet) -> None:
        handle = self._handle
        if handle is None:
            self._post(SubscribeFailed(error="Not connected"))
            return

        async def subscribe() -> None:
            try:
                granted = await handle.subscribe(subscriptions)
            except SubscribeError as exc:
                self._post(SubscribeFailed(error=str(exc)))
            else:
                for item in granted:
                    logger.debug("subscribed %s (QoS %d)", item.topic, int(item.qos))
                self._post(SubscribeSucceeded(granted=tuple(granted)))

        self._spawn(subscribe(), "mqtt-tail-subscribe")

    def _start_disconnect(self) -> None:
        if self._disconnect_started:
            return
        self._disconnect_started = True

        handle = self._handle
        if handle is None:
            self._post(Closed())
            return

        async def disconnect() -> None:
            try:
                await asyncio.wait_for(handle.disconnect_gracefully(), self._shutdown_timeout)
            except asyncio.TimeoutError:
                logger.debug("%s, forcing termination", ShutdownTimeoutError(self._shutdown_timeout))
                self._post(ShutdownTimedOut())
            except Exception as exc:
                logger.warning("Disconnect failed: %s", exc, exc_info=True)
                self._post(Closed())

        self._spawn(disconnect(), "mqtt-tail-disconnect")

    async def _cancel_tasks(self) -> None:
        pending = [task for task in self._tasks if not task.done()]
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
