"""Events the interface emits to the hosting node server.

The set is closed: listeners register per :class:`Event` member through
:meth:`pypolyglot.interface.Interface.on`. Events fire in the order their
triggering messages were processed by the message queue.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from pypolyglot.node import Node


class Event(StrEnum):
    MQTT_CONNECTED = "mqttConnected"
    MQTT_RECONNECT = "mqttReconnect"
    MQTT_OFFLINE = "mqttOffline"
    MQTT_CLOSE = "mqttClose"
    MQTT_END = "mqttEnd"
    MESSAGE_RECEIVED = "messageReceived"
    MESSAGE_SENT = "messageSent"
    CONFIG = "config"
    POLL = "poll"
    STOP = "stop"
    DELETE = "delete"


@dataclass(frozen=True)
class ConfigUpdate:
    """Payload of :attr:`Event.CONFIG`.

    ``config`` is the camelCase config message as received; ``nodes`` is
    the live registry after reconciliation.
    """

    config: dict[str, Any]
    nodes: dict[str, Node]
    is_initial_config: bool
    new_params_detected: bool
