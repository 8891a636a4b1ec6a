"""Base class for the nodes a node server exposes to the ISY.

Node servers subclass :class:`Node` once per node definition::

    class Switch(Node):
        node_def_id = "switch"
        driver_defaults = {"ST": {"value": 0, "uom": 2}}

        def on(self, message):
            self.set_driver("ST", True)

        def off(self, message):
            self.set_driver("ST", False)

        commands = {"DON": on, "DOF": off}

and declare the subclasses to :class:`pypolyglot.interface.Interface`, which
instantiates them from the config messages it receives.
"""

from __future__ import annotations

import copy
import inspect
import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any, ClassVar

from pypolyglot._constants import BOOLEAN_UOM
from pypolyglot.exceptions import PolyglotProtocolError

if TYPE_CHECKING:
    from pypolyglot.interface import Interface

_logger = logging.getLogger(__name__)


@dataclass(slots=True)
class Driver:
    """A status value reported to the ISY, with its unit of measure."""

    value: Any
    uom: Any
    changed: bool = False


class Node:
    """An ISY node backed by this node server."""

    # Must match the nodedef id in the profile. Overridden by subclasses.
    node_def_id: ClassVar[str] = "UNDEFINED"

    # Driver name -> {"value": ..., "uom": ...}. Copied per instance; the
    # driver key set never changes afterwards.
    driver_defaults: ClassVar[Mapping[str, Mapping[str, Any]]] = {}

    # Command name -> function called as fn(node, command_message).
    commands: ClassVar[Mapping[str, Callable[..., Any]]] = {}

    def __init__(self, interface: Interface, primary: str, address: str, name: str) -> None:
        self.interface = interface
        self.primary = primary
        self.address = address
        self.name = name

        self.time_added: datetime = datetime.now(UTC)
        self.enabled = False
        self.added = False
        self.controller = False
        self.is_primary = primary == address
        self.profile_num: int | None = None

        self.drivers: dict[str, Driver] = {
            key: Driver(value=copy.deepcopy(default.get("value")), uom=default.get("uom"))
            for key, default in self.driver_defaults.items()
        }

    def __repr__(self) -> str:
        return f"{type(self).__name__}(address={self.address!r}, node_def_id={self.node_def_id!r})"

    @property
    def id(self) -> str:
        return self.node_def_id

    def get_driver(self, driver: str) -> Driver | None:
        return self.drivers.get(driver)

    def convert_value(self, driver: str, value: Any) -> Any:
        """Convert a driver value to the string form Polyglot expects."""
        # bool before int: bool is an int subclass.
        if isinstance(value, bool):
            uom = self.drivers[driver].uom
            if uom != BOOLEAN_UOM:
                _logger.warning(
                    "Value for driver %s is a boolean, but the uom is %s (Should be %d)",
                    driver,
                    uom,
                    BOOLEAN_UOM,
                )
            return "1" if value else "0"
        if isinstance(value, (int, float)):
            return str(value)
        return value

    def set_driver(
        self,
        driver: str,
        value: Any,
        report: bool = True,
        force_report: bool = False,
        uom: Any = None,
    ) -> None:
        """Set a driver to *value* and report it when it changed."""
        current = self.drivers.get(driver)
        if current is None:
            _logger.error("Driver %s is not valid for node %s", driver, self.address)
            return

        if uom is not None and current.uom != uom:
            current.uom = uom
            current.changed = True

        value = self.convert_value(driver, value)

        if current.value != value:
            _logger.info("Setting node %s driver %s: %s", self.address, driver, value)
            current.value = value
            current.changed = True

        if report:
            self.report_driver(driver, force_report)

    def report_driver(self, driver: str, force_report: bool = False) -> None:
        """Send the driver value to Polyglot if it changed (or if forced)."""
        current = self.drivers.get(driver)
        if current is None:
            _logger.error("Driver %s is not valid for node %s", driver, self.address)
            return

        if current.changed or force_report:
            self.interface.send_message(
                {
                    "status": {
                        "address": self.address,
                        "driver": driver,
                        "value": current.value,
                        "uom": current.uom,
                    }
                }
            )
            current.changed = False

    def report_drivers(self, force_report: bool = True) -> None:
        for driver in self.drivers:
            self.report_driver(driver, force_report)

    def driver_list(self) -> list[dict[str, Any]]:
        """Drivers in the list form used by ``addnode`` messages."""
        return [{"driver": key, "value": drv.value, "uom": drv.uom} for key, drv in self.drivers.items()]

    def query(self) -> Any:
        self.report_drivers()

    def status(self) -> Any:
        self.report_drivers()

    def del_node(self) -> None:
        self.interface.del_node(self)

    async def run_cmd(self, message: Mapping[str, Any]) -> Any:
        """Run the command named by ``message["cmd"]``.

        Example message::

            {"address": "node003", "cmd": "DON", "value": "6", "uom": "51"}

        Synchronous handler results are returned as-is; awaitable results
        are awaited.
        """
        cmd = message.get("cmd")
        handler = self.commands.get(cmd) if isinstance(cmd, str) else None
        if handler is None:
            _logger.error(
                "Node %s using nodeDefId %s does not have a command: %s",
                self.address,
                self.node_def_id,
                cmd,
            )
            raise PolyglotProtocolError(f"Node {self.address} has no command {cmd!r}")

        result = handler(self, message)
        if inspect.isawaitable(result):
            return await result
        return result
