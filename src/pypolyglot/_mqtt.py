"""Internal MQTT bootstrap and runtime helpers."""

from __future__ import annotations

import asyncio
import logging
import secrets
import ssl
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

import paho.mqtt.client as mqtt

from pypolyglot._constants import RECONNECT_MAX_DELAY, RECONNECT_MIN_DELAY, connection_topic, node_topic
from pypolyglot.config import InterfaceConfig
from pypolyglot.exceptions import PolyglotTransportError
from pypolyglot.models.startup import StartupParams


@dataclass(frozen=True)
class MqttBootstrap:
    """Broker and topic data required to join the Polyglot bus."""

    broker_host: str
    broker_port: int
    topic: str
    connection_topic: str
    client_id: str
    username: str
    password: str
    tls_enabled: bool
    tls_verify: bool


def build_client_id() -> str:
    return f"mqttpy_{secrets.token_hex(4)}"


def build_bootstrap(config: InterfaceConfig, params: StartupParams) -> MqttBootstrap:
    """Combine startup parameters and interface config into broker details."""
    return MqttBootstrap(
        broker_host=params.mqtt_host,
        broker_port=params.mqtt_port,
        topic=node_topic(config.topic_namespace, params.profile_num),
        connection_topic=connection_topic(config.topic_namespace, config.remote_service),
        client_id=build_client_id(),
        username=config.username,
        password=config.password,
        tls_enabled=config.tls_enabled,
        tls_verify=config.tls_verify,
    )


@dataclass(frozen=True)
class MqttInbound:
    """A raw inbound publish, handed to the event loop."""

    topic: str
    payload: bytes


class PolyglotMqttRuntime:
    """Threaded paho-mqtt runtime that forwards callbacks onto an asyncio loop.

    The paho network thread never touches interface state: every callback
    is re-scheduled with ``loop.call_soon_threadsafe``.
    """

    def __init__(
        self,
        *,
        loop: asyncio.AbstractEventLoop,
        on_connect: Callable[[], None],
        on_disconnect: Callable[[bool], None],
        on_message: Callable[[MqttInbound], None],
        keepalive: int = 60,
        logger: logging.Logger | None = None,
    ) -> None:
        self._loop = loop
        self._on_connect = on_connect
        self._on_disconnect = on_disconnect
        self._on_message = on_message
        self._keepalive = keepalive
        self._logger = logger or logging.getLogger(__name__)
        self._client: mqtt.Client | None = None
        self._running = False
        self._topics: tuple[str, ...] = ()

    @property
    def is_running(self) -> bool:
        """Whether the MQTT runtime is actively running."""
        return self._running

    def start(self, bootstrap: MqttBootstrap) -> None:
        """Start the network loop and connect in the background.

        Returns without waiting for the broker. A refused connection is logged
        and retried by paho; subscriptions happen on every (re)connect.
        """
        self.stop()
        self._logger.debug(
            "MQTT runtime start requested host=%s port=%s topic=%s client_id=%s",
            bootstrap.broker_host,
            bootstrap.broker_port,
            bootstrap.topic,
            bootstrap.client_id,
        )

        client = mqtt.Client(
            callback_api_version=mqtt.CallbackAPIVersion.VERSION2,
            client_id=bootstrap.client_id,
            protocol=mqtt.MQTTv311,
        )
        client.enable_logger(self._logger)
        client.username_pw_set(bootstrap.username, bootstrap.password)
        if bootstrap.tls_enabled:
            if bootstrap.tls_verify:
                client.tls_set()
            else:
                client.tls_set(cert_reqs=ssl.CERT_NONE)
                client.tls_insecure_set(True)

        self._topics = (bootstrap.connection_topic, bootstrap.topic)

        def on_connect(
            c: mqtt.Client,
            _userdata: Any,
            _flags: Any,
            reason_code: Any,
            _properties: Any,
        ) -> None:
            if reason_code.is_failure:
                self._logger.warning("MQTT connect failed: %s", reason_code)
                return
            self._logger.info("MQTT client connected")
            for topic in self._topics:
                self._logger.debug("MQTT subscribing topic=%s", topic)
                c.subscribe(topic, qos=0)
            self._loop.call_soon_threadsafe(self._on_connect)

        def on_message(_c: mqtt.Client, _userdata: Any, msg: mqtt.MQTTMessage) -> None:
            self._loop.call_soon_threadsafe(self._on_message, MqttInbound(topic=msg.topic, payload=msg.payload))

        def on_disconnect(
            _client: mqtt.Client,
            _userdata: Any,
            _disconnect_flags: Any,
            reason_code: Any,
            _properties: Any,
        ) -> None:
            expected = not self._running
            if not expected:
                self._logger.warning("MQTT disconnected: %s", reason_code)
            self._loop.call_soon_threadsafe(self._on_disconnect, expected)

        def on_connect_fail(_client: mqtt.Client, _userdata: Any) -> None:
            self._logger.warning(
                "MQTT connect to %s:%s failed, retrying",
                bootstrap.broker_host,
                bootstrap.broker_port,
            )

        client.on_connect = on_connect
        client.on_connect_fail = on_connect_fail
        client.on_message = on_message
        client.on_disconnect = on_disconnect
        client.reconnect_delay_set(min_delay=RECONNECT_MIN_DELAY, max_delay=RECONNECT_MAX_DELAY)

        # The network thread makes the first connection and keeps retrying
        # until the broker accepts it; only invalid arguments fail here.
        try:
            client.connect_async(bootstrap.broker_host, bootstrap.broker_port, keepalive=self._keepalive)
        except ValueError as exc:
            raise PolyglotTransportError(
                f"Invalid MQTT broker {bootstrap.broker_host}:{bootstrap.broker_port}: {exc}"
            ) from exc
        self._client = client
        self._running = True
        client.loop_start()
        self._logger.debug("MQTT network loop started")

    def publish(self, topic: str, payload: str, *, retain: bool = False) -> None:
        """Publish *payload* on *topic*. Raises on immediate failure."""
        client = self._client
        if client is None:
            raise PolyglotTransportError("MQTT runtime is not started", topic=topic)
        info = client.publish(topic, payload, qos=0, retain=retain)
        if info.rc != mqtt.MQTT_ERR_SUCCESS:
            raise PolyglotTransportError(
                f"MQTT publish failed: {mqtt.error_string(info.rc)}",
                topic=topic,
            )

    def stop(self) -> None:
        """Stop and disconnect current MQTT client if running."""
        client = self._client
        self._client = None
        was_running = self._running
        self._running = False
        self._topics = ()

        if client is None:
            return
        try:
            if was_running:
                self._logger.debug("MQTT disconnect requested")
                client.disconnect()
        finally:
            client.loop_stop()
            self._logger.debug("MQTT network loop stopped")
