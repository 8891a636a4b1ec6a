"""Async interface between a node server and Polyglot."""

from __future__ import annotations

import asyncio
import inspect
import json
import logging
from collections.abc import Awaitable, Callable, Iterable, Mapping
from typing import Any

from pydantic import ValidationError

from pypolyglot._constants import IMMEDIATE_KEYS, QUEUED_KEYS, REMOTE_NODE
from pypolyglot._correlation import CorrelationTable, correlation_key
from pypolyglot._interface import notices as _notices
from pypolyglot._interface import params as _params
from pypolyglot._loop_guard import LoopGuard
from pypolyglot._mqtt import MqttInbound, PolyglotMqttRuntime, build_bootstrap
from pypolyglot._queue import MessageQueue
from pypolyglot.config import InterfaceConfig, read_startup_params
from pypolyglot.events import ConfigUpdate, Event
from pypolyglot.exceptions import (
    ConfigLoopDetectedError,
    PolyglotError,
    PolyglotProtocolError,
    PolyglotTransportError,
)
from pypolyglot.models.config import ConfigSnapshot
from pypolyglot.models.messages import CommandMessage, QueueItem
from pypolyglot.models.startup import StartupParams
from pypolyglot.node import Node
from pypolyglot.registry import NodeRegistry

_logger = logging.getLogger(__name__)

Listener = Callable[..., Any]
RuntimeFactory = Callable[..., PolyglotMqttRuntime]


async def _maybe_await(result: Any) -> Any:
    if inspect.isawaitable(result):
        return await result
    return result


class Interface:
    """Session with Polyglot for one node server.

    Usage::

        interface = Interface([Controller, Switch])
        interface.on(Event.CONFIG, on_config)
        await interface.start()

    All state is owned by the event loop ``start`` runs on. The MQTT
    network thread only forwards callbacks to it.
    """

    def __init__(
        self,
        node_classes: Iterable[type[Node]] = (),
        config: InterfaceConfig | None = None,
        *,
        runtime_factory: RuntimeFactory = PolyglotMqttRuntime,
    ) -> None:
        self._config = config or InterfaceConfig()
        self._runtime_factory = runtime_factory
        self._runtime: PolyglotMqttRuntime | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._params: StartupParams | None = None
        self._topic: str | None = None
        self._connection_topic: str | None = None

        self._client_connected = False
        self._polyglot_connected = False
        self._shutting_down = False

        self._listeners: dict[Event, list[Listener]] = {event: [] for event in Event}
        self._tasks: set[asyncio.Task[Any]] = set()
        self._timers: set[asyncio.TimerHandle] = set()

        self._queue = MessageQueue(self._on_message_queued)
        self._correlation = CorrelationTable(
            publish=self._send_message,
            is_connected=self.is_connected,
            default_timeout=self._config.request_timeout,
        )
        self._registry = NodeRegistry(self, node_classes)
        self._loop_guard = LoopGuard(threshold=self._config.loop_threshold, window=self._config.loop_window)

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def config(self) -> InterfaceConfig:
        return self._config

    @property
    def profile_num(self) -> int | None:
        return self._params.profile_num if self._params is not None else None

    @property
    def topic(self) -> str | None:
        return self._topic

    @property
    def is_shutting_down(self) -> bool:
        return self._shutting_down

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self, params: StartupParams | None = None) -> None:
        """Connect to Polyglot.

        When *params* is not given they are read from stdin, where Polyglot
        writes them when it launches the node server. Returns once the MQTT
        network loop runs; the broker connection is made, and retried while
        refused, in the background. Listen for :attr:`Event.MQTT_CONNECTED`.
        """
        _logger.info("Interface starting")
        if params is None:
            params = await read_startup_params(timeout=self._config.stdin_timeout)

        self._loop = asyncio.get_running_loop()
        bootstrap = build_bootstrap(self._config, params)
        self._params = params
        self._topic = bootstrap.topic
        self._connection_topic = bootstrap.connection_topic

        runtime = self._runtime_factory(
            loop=self._loop,
            on_connect=self._on_mqtt_connect,
            on_disconnect=self._on_mqtt_disconnect,
            on_message=self._on_mqtt_message,
            keepalive=self._config.keepalive,
            logger=_logger,
        )
        # Set before starting: the connect callback may run before start returns.
        self._runtime = runtime
        try:
            await self._loop.run_in_executor(None, runtime.start, bootstrap)
        except PolyglotTransportError:
            self._runtime = None
            raise

    async def close(self) -> None:
        """Disconnect from Polyglot and release timers and pending requests."""
        runtime = self._runtime
        self._runtime = None
        if runtime is not None:
            try:
                await asyncio.get_running_loop().run_in_executor(None, runtime.stop)
            except Exception:
                _logger.warning("MQTT runtime stop failed", exc_info=True)
        was_connected = self._client_connected
        self._client_connected = False

        for timer in self._timers:
            timer.cancel()
        self._timers.clear()
        self._correlation.close()
        self._loop_guard.close()
        await self._queue.close()

        if was_connected:
            self._emit(Event.MQTT_CLOSE)
        self._emit(Event.MQTT_END)

    async def join(self) -> None:
        """Wait until every queued Polyglot message has been processed."""
        await self._queue.join()

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    def on(self, event: Event, listener: Listener) -> None:
        """Register *listener* for *event*. Listeners may be coroutines."""
        self._listeners[Event(event)].append(listener)

    def off(self, event: Event, listener: Listener) -> None:
        listeners = self._listeners[Event(event)]
        if listener in listeners:
            listeners.remove(listener)

    def _call_listeners(self, event: Event, args: tuple[Any, ...]) -> list[Awaitable[Any]]:
        pending: list[Awaitable[Any]] = []
        for listener in list(self._listeners[event]):
            try:
                result = listener(*args)
            except Exception:
                _logger.exception("Listener for %s failed", event.value)
                continue
            if inspect.isawaitable(result):
                pending.append(result)
        return pending

    def _emit(self, event: Event, *args: Any) -> None:
        """Fire *event*; coroutine listeners run as background tasks."""
        for awaitable in self._call_listeners(event, args):
            task = asyncio.ensure_future(awaitable)
            self._tasks.add(task)
            task.add_done_callback(self._on_listener_task_done)

    async def _emit_and_wait(self, event: Event, *args: Any) -> None:
        """Fire *event* and await coroutine listeners, in registration order."""
        for awaitable in self._call_listeners(event, args):
            try:
                await awaitable
            except Exception:
                _logger.exception("Listener for %s failed", event.value)

    def _on_listener_task_done(self, task: asyncio.Task[Any]) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            _logger.error("Listener task failed", exc_info=task.exception())

    # ------------------------------------------------------------------
    # MQTT callbacks (event loop thread)
    # ------------------------------------------------------------------

    def _on_mqtt_connect(self) -> None:
        self._client_connected = True
        try:
            self._send_message({"connected": True}, retain=True)
        except PolyglotTransportError as exc:
            _logger.error("Could not announce connection: %s", exc)
        self._emit(Event.MQTT_CONNECTED)

    def _on_mqtt_disconnect(self, expected: bool) -> None:
        if expected:
            return
        self._client_connected = False
        self._emit(Event.MQTT_CLOSE)
        self._emit(Event.MQTT_OFFLINE)
        self._emit(Event.MQTT_RECONNECT)

    def _on_mqtt_message(self, inbound: MqttInbound) -> None:
        # Empty payloads happen, e.g. when the node server is deleted.
        if not inbound.payload:
            return
        try:
            parsed = json.loads(inbound.payload)
        except (UnicodeDecodeError, json.JSONDecodeError):
            _logger.error("Invalid JSON received on %s: %r", inbound.topic, inbound.payload[:200])
            return
        if not isinstance(parsed, dict):
            _logger.error("Non-object message received on %s: %r", inbound.topic, parsed)
            return

        # Our own messages are echoed back on our topic.
        if parsed.get("node") != REMOTE_NODE:
            return

        try:
            if inbound.topic == self._connection_topic:
                self._polyglot_connected = bool(parsed.get("connected"))
            if inbound.topic == self._topic:
                self._on_message(parsed)
        except Exception:
            _logger.exception("Error processing message on %s", inbound.topic)

    # ------------------------------------------------------------------
    # Inbound dispatch
    # ------------------------------------------------------------------

    def _on_message(self, message: Mapping[str, Any]) -> None:
        """Route one Polyglot message.

        ``result``, ``stop`` and ``delete`` are handled right away; every
        other key is queued and processed in order by the message queue.
        """
        self._emit(Event.MESSAGE_RECEIVED, dict(message))

        for key, content in message.items():
            if key == "node":
                continue
            if key in IMMEDIATE_KEYS:
                self._on_immediate(key, content)
            elif key in QUEUED_KEYS:
                self._queue.add(QueueItem(message_key=key, message_content=content))
            else:
                _logger.error("Invalid message %s received %r", key, dict(message))

    def _on_immediate(self, key: str, content: Any) -> None:
        if key == "result":
            self._correlation.on_result(content)
        elif key == "stop":
            _logger.warning("Received stop message")
            self._shutting_down = True
            self._emit(Event.STOP)
        elif key == "delete":
            _logger.warning("Received delete message")
            self._shutting_down = True
            self._emit(Event.DELETE)

    async def _on_message_queued(self, item: QueueItem) -> None:
        key = item.message_key
        content = item.message_content

        if self._shutting_down:
            _logger.warning("Message %s ignored: Shutting down nodeserver", key)
            return

        if key == "config":
            await self._on_config(content)
        elif key in ("query", "status", "command"):
            node = self._target_node(key, content)
            if node is None:
                return
            if key == "query":
                await _maybe_await(node.query())
            elif key == "status":
                await _maybe_await(node.status())
            else:
                await node.run_cmd(content)
        elif key == "shortPoll":
            await self._emit_and_wait(Event.POLL, False)
        elif key == "longPoll":
            await self._emit_and_wait(Event.POLL, True)
        else:
            raise PolyglotProtocolError(f"Invalid queued message {key} received")

    def _target_node(self, key: str, content: Any) -> Node | None:
        if key == "command":
            try:
                address = CommandMessage.model_validate(content).address
            except ValidationError as exc:
                raise PolyglotProtocolError(f"Invalid command message: {content!r}") from exc
        elif isinstance(content, Mapping) and isinstance(content.get("address"), str):
            address = content["address"]
        else:
            raise PolyglotProtocolError(f"Invalid {key} message: {content!r}")
        return self.get_node(address)

    async def _on_config(self, content: Any) -> None:
        try:
            snapshot = ConfigSnapshot.model_validate(content)
        except ValidationError as exc:
            raise PolyglotProtocolError(f"Invalid config message: {exc}") from exc

        result = self._registry.reconcile(snapshot)

        # The registry stays current even while a loop is detected; only the
        # notification to the node server is skipped.
        try:
            self._loop_guard.check()
        except ConfigLoopDetectedError as exc:
            _logger.error("%s Skipping config processing.", exc)
            return

        await self._emit_and_wait(
            Event.CONFIG,
            ConfigUpdate(
                config=snapshot.to_wire(),
                nodes=self._registry.nodes,
                is_initial_config=result.is_initial_config,
                new_params_detected=result.new_params_detected,
            ),
        )

    # ------------------------------------------------------------------
    # Outbound
    # ------------------------------------------------------------------

    def _send_message(self, message: Mapping[str, Any], retain: bool = False) -> None:
        """Publish without checking the Polyglot connection state."""
        runtime = self._runtime
        if runtime is None or self._topic is None:
            raise PolyglotTransportError("Interface is not started")
        outbound = dict(message)
        outbound["node"] = str(self.profile_num)
        self._emit(Event.MESSAGE_SENT, outbound)
        runtime.publish(self._topic, json.dumps(outbound), retain=retain)

    def is_connected(self) -> bool:
        """True when both this client and Polyglot are connected to the broker."""
        connected = self._client_connected and self._polyglot_connected
        if not connected:
            _logger.warning(
                "Polyglot connection is not connected. MQTT Client is%s connected, Polyglot is%s connected",
                "" if self._client_connected else " NOT",
                "" if self._polyglot_connected else " NOT",
            )
        return connected

    def send_message(self, message: Mapping[str, Any]) -> None:
        """Send a message to Polyglot. Dropped when not connected."""
        if not self.is_connected():
            _logger.debug("Dropped message %s", list(message))
            return
        try:
            self._send_message(message)
        except PolyglotTransportError as exc:
            _logger.warning("Could not send message %s: %s", list(message), exc)

    async def send_message_async(
        self,
        key: str,
        message: Mapping[str, Any],
        timeout: float | None = None,
    ) -> str:
        """Send a message and wait for the Polyglot result correlated by *key*."""
        return await self._correlation.send(key, dict(message), timeout)

    # ------------------------------------------------------------------
    # Nodes
    # ------------------------------------------------------------------

    async def add_node(self, node: Node) -> str | None:
        """Add *node* to Polyglot and the ISY. Returns Polyglot's reason text."""
        if not isinstance(node, Node):
            _logger.error("add_node error: node is not an instance of Node class")
            return None
        message = {
            "addnode": {
                "nodes": [
                    {
                        "address": node.address,
                        "name": node.name,
                        "node_def_id": node.node_def_id,
                        "primary": node.primary,
                        "drivers": node.driver_list(),
                    }
                ]
            }
        }
        return await self.send_message_async(correlation_key("addnode", node.address), message)

    def del_node(self, node: Node) -> None:
        if not isinstance(node, Node):
            _logger.error("del_node error: node is not an instance of Node class")
            return
        self.send_message({"removenode": {"address": node.address}})

    def get_nodes(self) -> dict[str, Node]:
        return self._registry.nodes

    def get_node(self, address: str) -> Node | None:
        if not isinstance(address, str):
            _logger.error("get_node error: Parameter is not a string")
            return None
        node = self._registry.get(address)
        if node is None:
            _logger.error("Node %s not found", address)
        return node

    def get_controller(self) -> Node | None:
        """The controller node, or ``None`` when there is none."""
        controllers = [node for node in self._registry.nodes.values() if node.controller]
        if len(controllers) >= 2:
            _logger.warning("There are %d controllers.", len(controllers))
        return controllers[0] if controllers else None

    def get_config(self) -> dict[str, Any]:
        """Copy of the last config received."""
        snapshot = self._registry.config
        return snapshot.to_wire() if snapshot is not None else {}

    def update_profile(self) -> None:
        """Ask Polyglot to install the profile on the ISY."""
        self.send_message({"installprofile": {"reboot": False}})

    def restart(self) -> None:
        """Ask Polyglot to restart this node server."""
        _logger.warning("Telling Polyglot to restart this node server.")
        self.send_message({"restart": {}})

    # ------------------------------------------------------------------
    # Custom params, custom data and notices
    # ------------------------------------------------------------------

    def get_custom_param(self, key: str) -> Any:
        return _params.get_custom_param(self, key)

    def get_custom_params(self) -> dict[str, Any]:
        return _params.get_custom_params(self)

    def save_custom_params(self, params: Mapping[str, Any]) -> None:
        _params.save_custom_params(self, params)

    def add_custom_params(self, params: Mapping[str, Any]) -> None:
        _params.add_custom_params(self, params)

    def remove_custom_params(self, key: str) -> None:
        _params.remove_custom_params(self, key)

    def save_typed_params(self, typed_params: list[Any]) -> None:
        _params.save_typed_params(self, typed_params)

    def set_custom_params_doc(self, html: str) -> None:
        _params.set_custom_params_doc(self, html)

    def get_custom_data(self, key: str | None = None) -> Any:
        return _params.get_custom_data(self, key)

    def save_custom_data(self, data: Mapping[str, Any]) -> None:
        _params.save_custom_data(self, data)

    def add_custom_data(self, data: Mapping[str, Any]) -> None:
        _params.add_custom_data(self, data)

    def remove_custom_data(self, key: str) -> None:
        _params.remove_custom_data(self, key)

    def get_notices(self) -> Any:
        return _notices.get_notices(self)

    def notice_exists(self, key: str) -> bool:
        return _notices.notice_exists(self, key)

    def add_notice(self, key: str, text: str) -> None:
        _notices.add_notice(self, key, text)

    def add_notice_temp(self, key: str, text: str, delay: float) -> None:
        _notices.add_notice_temp(self, key, text, delay)

    def remove_notice(self, key: str) -> None:
        _notices.remove_notice(self, key)

    def remove_notices_all(self) -> None:
        _notices.remove_notices_all(self)

    def call_later(self, delay: float, callback: Callable[[], None]) -> None:
        """Run *callback* after *delay* seconds unless the interface is closed first."""
        loop = self._loop or asyncio.get_running_loop()
        handle: asyncio.TimerHandle | None = None

        def _run() -> None:
            self._timers.discard(handle)  # type: ignore[arg-type]
            try:
                callback()
            except PolyglotError:
                _logger.exception("Scheduled callback failed")

        handle = loop.call_later(delay, _run)
        self._timers.add(handle)
