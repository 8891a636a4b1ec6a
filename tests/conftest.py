from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Callable
from typing import Any

import pytest

from pypolyglot._mqtt import MqttBootstrap, MqttInbound
from pypolyglot.config import InterfaceConfig
from pypolyglot.interface import Interface
from pypolyglot.models.startup import StartupParams
from pypolyglot.node import Node

NODE_TOPIC = "udi/polyglot/ns/3"
CONNECTION_TOPIC = "udi/polyglot/connections/polyglot"


class FakeRuntime:
    """Stands in for the paho runtime: records publishes, injects messages."""

    def __init__(
        self,
        *,
        loop: asyncio.AbstractEventLoop,
        on_connect: Callable[[], None],
        on_disconnect: Callable[[bool], None],
        on_message: Callable[[MqttInbound], None],
        keepalive: int,
        logger: logging.Logger,
    ) -> None:
        self._loop = loop
        self._on_connect = on_connect
        self._on_disconnect = on_disconnect
        self._on_message = on_message
        self.bootstrap: MqttBootstrap | None = None
        self.published: list[tuple[str, dict[str, Any], bool]] = []
        self.is_running = False

    def start(self, bootstrap: MqttBootstrap) -> None:
        self.bootstrap = bootstrap
        self.is_running = True
        self._loop.call_soon_threadsafe(self._on_connect)

    def stop(self) -> None:
        self.is_running = False

    def publish(self, topic: str, payload: str, *, retain: bool = False) -> None:
        self.published.append((topic, json.loads(payload), retain))

    def deliver(self, message: dict[str, Any], topic: str = NODE_TOPIC) -> None:
        self._on_message(MqttInbound(topic=topic, payload=json.dumps(message).encode()))

    def polyglot(self, **message: Any) -> None:
        """Deliver a message from Polyglot on the node server topic."""
        self.deliver({"node": "polyglot", **message})

    def sent(self, key: str) -> list[Any]:
        return [msg[key] for _topic, msg, _retain in self.published if key in msg]


class FakeInterface:
    """Minimal context object for Node and registry tests."""

    def __init__(self) -> None:
        self.sent: list[dict[str, Any]] = []
        self.deleted: list[Node] = []

    def send_message(self, message: dict[str, Any]) -> None:
        self.sent.append(message)

    def del_node(self, node: Node) -> None:
        self.deleted.append(node)


class Harness:
    def __init__(self) -> None:
        self.runtimes: list[FakeRuntime] = []

    def _factory(self, **kwargs: Any) -> FakeRuntime:
        runtime = FakeRuntime(**kwargs)
        self.runtimes.append(runtime)
        return runtime

    async def connect(
        self,
        node_classes: list[type[Node]] | None = None,
        config: InterfaceConfig | None = None,
        *,
        polyglot_connected: bool = True,
    ) -> tuple[Interface, FakeRuntime]:
        interface = Interface(node_classes or [], config, runtime_factory=self._factory)
        await interface.start(StartupParams(mqtt_host="localhost", mqtt_port=1883, profile_num=3))
        await settle()
        runtime = self.runtimes[-1]
        if polyglot_connected:
            runtime.deliver({"node": "polyglot", "connected": True}, topic=CONNECTION_TOPIC)
        return interface, runtime


async def settle(rounds: int = 10) -> None:
    for _ in range(rounds):
        await asyncio.sleep(0)


@pytest.fixture
def harness() -> Harness:
    return Harness()


@pytest.fixture
def fake_interface() -> FakeInterface:
    return FakeInterface()


class Controller(Node):
    node_def_id = "controller"
    driver_defaults = {"ST": {"value": 0, "uom": 2}}


class Dimmer(Node):
    node_def_id = "dimmer"
    driver_defaults = {"ST": {"value": 0, "uom": 51}, "GV0": {"value": "idle", "uom": 25}}

    def on(self, message: dict[str, Any]) -> str:
        self.set_driver("ST", int(message.get("value") or 100))
        return "on"

    async def off(self, message: dict[str, Any]) -> str:
        await asyncio.sleep(0)
        self.set_driver("ST", 0)
        return "off"

    commands = {"DON": on, "DOF": off}


def node_entry(address: str, nodedef: str, **extra: Any) -> dict[str, Any]:
    """A config.newNodes entry as Polyglot sends it."""
    return {
        "address": f"n003_{address}",
        "primary": extra.pop("primary", "n003_controller"),
        "nodedef": nodedef,
        "name": extra.pop("name", address),
        **extra,
    }
