"""Node registry: reconciles config snapshots into live Node objects."""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from pypolyglot._constants import MERGED_NODE_FIELDS
from pypolyglot.exceptions import UnknownNodeTypeError
from pypolyglot.models.config import ConfigSnapshot, NodeEntry
from pypolyglot.node import Node

if TYPE_CHECKING:
    from pypolyglot.interface import Interface

_logger = logging.getLogger(__name__)

# Threshold to distinguish seconds from milliseconds.
_MS_THRESHOLD = 1_000_000_000_000


def _to_bool(value: Any) -> Any:
    if isinstance(value, str):
        return value.strip().lower() == "true"
    return value


def _to_int(value: Any) -> Any:
    if isinstance(value, str):
        try:
            return int(value.strip(), 10)
        except ValueError:
            return value
    return value


def _to_datetime(value: Any) -> datetime | None:
    """Convert a Polyglot epoch timestamp (ms, possibly as a string) to UTC.

    Returns ``None`` for values that are not a timestamp in the platform range.
    """
    if isinstance(value, datetime):
        return value
    try:
        ts = int(value)
    except (TypeError, ValueError):
        _logger.warning("Ignoring invalid timestamp %r", value)
        return None
    if ts >= _MS_THRESHOLD:
        ts //= 1000
    try:
        return datetime.fromtimestamp(ts, tz=UTC)
    except (OverflowError, OSError, ValueError):
        _logger.warning("Ignoring out of range timestamp %r", value)
        return None


# Wire field -> (Node attribute, converter)
_FIELD_MAP: dict[str, tuple[str, Callable[[Any], Any]]] = {
    "controller": ("controller", _to_bool),
    "isprimary": ("is_primary", _to_bool),
    "profileNum": ("profile_num", _to_int),
    "timeAdded": ("time_added", _to_datetime),
}


def _iter_driver_updates(raw: Any) -> Iterable[tuple[str, Mapping[str, Any]]]:
    """Yield ``(driver, {value, uom})`` from either wire form.

    Polyglot sends drivers as a list of ``{"driver", "value", "uom"}``;
    a ``{driver: {"value", "uom"}}`` mapping is accepted as well.
    """
    if isinstance(raw, Mapping):
        for key, update in raw.items():
            if isinstance(update, Mapping):
                yield str(key), update
    elif isinstance(raw, list):
        for update in raw:
            if isinstance(update, Mapping) and "driver" in update:
                yield str(update["driver"]), update


def params_changed(old: Mapping[str, Any] | None, new: Mapping[str, Any] | None) -> bool:
    """True if any custom parameter was added, removed or changed."""
    old = old or {}
    new = new or {}
    if old.keys() != new.keys():
        return True
    return any(old[key] != new[key] for key in new)


@dataclass(slots=True)
class ReconcileResult:
    """Outcome of applying one snapshot."""

    is_initial_config: bool
    new_params_detected: bool
    added: list[str] = field(default_factory=list)
    removed: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)


class NodeRegistry:
    """Owns the Node objects of this node server, keyed by address."""

    def __init__(self, interface: Interface, node_classes: Iterable[type[Node]]) -> None:
        self._interface = interface
        self._node_classes: dict[str, type[Node]] = {}
        for node_class in node_classes:
            existing = self._node_classes.get(node_class.node_def_id)
            if existing is not None and existing is not node_class:
                raise ValueError(
                    f"Duplicate node_def_id {node_class.node_def_id!r}: {existing.__name__}, {node_class.__name__}"
                )
            self._node_classes[node_class.node_def_id] = node_class
        self._nodes: dict[str, Node] = {}
        self._config: ConfigSnapshot | None = None

    @property
    def nodes(self) -> dict[str, Node]:
        return self._nodes

    @property
    def config(self) -> ConfigSnapshot | None:
        """Last snapshot applied."""
        return self._config

    def get(self, address: str) -> Node | None:
        return self._nodes.get(address)

    def node_class(self, node_def_id: str, *, address: str = "") -> type[Node]:
        node_class = self._node_classes.get(node_def_id)
        if node_class is None:
            raise UnknownNodeTypeError(node_def_id, address=address)
        return node_class

    def reconcile(self, snapshot: ConfigSnapshot) -> ReconcileResult:
        """Apply *snapshot*: create, update and remove nodes."""
        result = ReconcileResult(
            is_initial_config=self._config is None,
            new_params_detected=params_changed(
                self._config.custom_params if self._config is not None else None,
                snapshot.custom_params,
            ),
        )

        seen: set[str] = set()
        for entry in snapshot.new_nodes:
            seen.add(entry.address)
            node = self._nodes.get(entry.address)
            if node is None:
                try:
                    node_class = self.node_class(entry.nodedef, address=entry.address)
                except UnknownNodeTypeError as exc:
                    _logger.error("%s", exc)
                    result.skipped.append(entry.address)
                    continue
                node = node_class(self._interface, entry.primary, entry.address, entry.name)
                self._nodes[entry.address] = node
                result.added.append(entry.address)
            self._merge(node, entry)

        for address in [addr for addr in self._nodes if addr not in seen]:
            _logger.info("Node %s was removed from the config", address)
            del self._nodes[address]
            result.removed.append(address)

        self._config = snapshot
        return result

    def _merge(self, node: Node, entry: NodeEntry) -> None:
        for wire_name in MERGED_NODE_FIELDS:
            present, value = entry.raw_field(wire_name)
            if not present or value is None:
                continue
            if wire_name == "drivers":
                self._merge_drivers(node, value)
                continue
            attr, convert = _FIELD_MAP[wire_name]
            converted = convert(value)
            if converted is None:
                continue
            setattr(node, attr, converted)

    @staticmethod
    def _merge_drivers(node: Node, raw: Any) -> None:
        for key, update in _iter_driver_updates(raw):
            current = node.drivers.get(key)
            if current is None:
                _logger.debug("Ignoring undeclared driver %s for node %s", key, node.address)
                continue
            if "value" in update:
                current.value = update["value"]
            if "uom" in update:
                current.uom = _to_int(update["uom"])
