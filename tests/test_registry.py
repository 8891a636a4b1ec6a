from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

import pytest

from conftest import Controller, Dimmer, FakeInterface, node_entry
from pypolyglot.exceptions import UnknownNodeTypeError
from pypolyglot.models.config import ConfigSnapshot
from pypolyglot.registry import NodeRegistry, params_changed


def _snapshot(nodes: list[dict[str, Any]], custom_params: dict[str, Any] | None = None) -> ConfigSnapshot:
    return ConfigSnapshot.model_validate(
        {"newNodes": nodes, "customParams": custom_params or {}, "customData": {}, "notices": {}}
    )


def _registry(fake_interface: FakeInterface) -> NodeRegistry:
    return NodeRegistry(fake_interface, [Controller, Dimmer])  # type: ignore[arg-type]


def _state(registry: NodeRegistry) -> dict[str, Any]:
    return {
        address: (
            type(node).__name__,
            node.controller,
            node.is_primary,
            node.profile_num,
            node.time_added,
            {key: (drv.value, drv.uom) for key, drv in node.drivers.items()},
        )
        for address, node in registry.nodes.items()
    }


def test_creates_nodes_by_node_def_id(fake_interface: FakeInterface) -> None:
    registry = _registry(fake_interface)

    result = registry.reconcile(
        _snapshot(
            [
                node_entry("controller", "controller", controller="true", primary="n003_controller"),
                node_entry("dimmer1", "dimmer", controller="false"),
            ]
        )
    )

    assert result.is_initial_config
    assert result.added == ["controller", "dimmer1"]
    controller = registry.get("controller")
    dimmer = registry.get("dimmer1")
    assert isinstance(controller, Controller)
    assert isinstance(dimmer, Dimmer)
    assert controller.controller is True
    assert dimmer.controller is False
    assert dimmer.primary == "controller"
    assert dimmer.interface is fake_interface


def test_unknown_node_def_id_is_skipped(fake_interface: FakeInterface, caplog: pytest.LogCaptureFixture) -> None:
    registry = _registry(fake_interface)

    result = registry.reconcile(
        _snapshot([node_entry("mystery", "thermostat"), node_entry("dimmer1", "dimmer")])
    )

    assert result.skipped == ["mystery"]
    assert list(registry.nodes) == ["dimmer1"]
    assert "Config node with address mystery has an invalid class thermostat" in caplog.text


def test_node_class_lookup_raises_for_unknown(fake_interface: FakeInterface) -> None:
    with pytest.raises(UnknownNodeTypeError):
        _registry(fake_interface).node_class("thermostat")


def test_duplicate_node_def_id_rejected(fake_interface: FakeInterface) -> None:
    class OtherDimmer(Dimmer):
        pass

    with pytest.raises(ValueError, match="Duplicate node_def_id"):
        NodeRegistry(fake_interface, [Dimmer, OtherDimmer])  # type: ignore[arg-type]


def test_field_conversions(fake_interface: FakeInterface) -> None:
    registry = _registry(fake_interface)

    registry.reconcile(
        _snapshot(
            [
                node_entry(
                    "dimmer1",
                    "dimmer",
                    controller="false",
                    isprimary="true",
                    profileNum="3",
                    timeAdded="1700000000000",
                )
            ]
        )
    )

    node = registry.get("dimmer1")
    assert node is not None
    assert node.controller is False
    assert node.is_primary is True
    assert node.profile_num == 3
    assert node.time_added == datetime(2023, 11, 14, 22, 13, 20, tzinfo=UTC)


def test_existing_node_updated_in_place(fake_interface: FakeInterface) -> None:
    registry = _registry(fake_interface)
    registry.reconcile(_snapshot([node_entry("dimmer1", "dimmer")]))
    node = registry.get("dimmer1")

    result = registry.reconcile(
        _snapshot(
            [
                node_entry(
                    "dimmer1",
                    "dimmer",
                    drivers=[
                        {"driver": "ST", "value": "42", "uom": "51"},
                        {"driver": "GV9", "value": "1", "uom": 2},
                    ],
                )
            ]
        )
    )

    assert result.added == []
    assert registry.get("dimmer1") is node
    assert node is not None
    assert node.drivers["ST"].value == "42"
    assert node.drivers["ST"].uom == 51
    # Driver key set is fixed by the node type.
    assert set(node.drivers) == {"ST", "GV0"}


def test_absent_node_is_removed(fake_interface: FakeInterface, caplog: pytest.LogCaptureFixture) -> None:
    caplog.set_level("INFO")
    registry = _registry(fake_interface)
    registry.reconcile(_snapshot([node_entry("controller", "controller"), node_entry("dimmer1", "dimmer")]))

    result = registry.reconcile(_snapshot([node_entry("controller", "controller")]))

    assert result.removed == ["dimmer1"]
    assert registry.get("dimmer1") is None
    assert "Node dimmer1 was removed from the config" in caplog.text


def test_same_snapshot_twice_is_idempotent(fake_interface: FakeInterface) -> None:
    registry = _registry(fake_interface)
    payload = [
        node_entry("controller", "controller", controller="true", timeAdded="1700000000000"),
        node_entry("dimmer1", "dimmer", drivers=[{"driver": "ST", "value": "10", "uom": 51}]),
    ]

    first = registry.reconcile(_snapshot(payload, {"host": "10.0.0.2"}))
    state = _state(registry)
    second = registry.reconcile(_snapshot(payload, {"host": "10.0.0.2"}))

    assert first.new_params_detected is True
    assert second.new_params_detected is False
    assert second.is_initial_config is False
    assert _state(registry) == state


@pytest.mark.parametrize(
    ("old", "new", "expected"),
    [
        ({"a": "1"}, {"a": "1"}, False),
        ({"a": "1"}, {"a": "2"}, True),
        ({"a": "1"}, {"a": "1", "b": "2"}, True),
        ({"a": "1", "b": "2"}, {"a": "1"}, True),
        (None, {}, False),
    ],
)
def test_params_changed(old: dict[str, Any] | None, new: dict[str, Any], expected: bool) -> None:
    assert params_changed(old, new) is expected


def test_out_of_range_timestamp_does_not_abort_reconcile(
    fake_interface: FakeInterface, caplog: pytest.LogCaptureFixture
) -> None:
    registry = _registry(fake_interface)
    registry.reconcile(_snapshot([node_entry("old", "dimmer")]))

    result = registry.reconcile(
        _snapshot(
            [
                node_entry("controller", "controller"),
                node_entry("dimmer1", "dimmer", timeAdded="99999999999999999999"),
            ],
            {"a": "1"},
        )
    )

    assert sorted(registry.nodes) == ["controller", "dimmer1"]
    assert result.removed == ["old"]
    assert registry.config is not None
    assert registry.config.custom_params == {"a": "1"}
    node = registry.get("dimmer1")
    assert node is not None
    assert isinstance(node.time_added, datetime)
    assert "Ignoring out of range timestamp '99999999999999999999'" in caplog.text


def test_invalid_timestamp_keeps_previous_value(fake_interface: FakeInterface) -> None:
    registry = _registry(fake_interface)
    registry.reconcile(_snapshot([node_entry("dimmer1", "dimmer", timeAdded="1700000000000")]))

    registry.reconcile(_snapshot([node_entry("dimmer1", "dimmer", timeAdded="yesterday")]))

    node = registry.get("dimmer1")
    assert node is not None
    assert node.time_added == datetime(2023, 11, 14, 22, 13, 20, tzinfo=UTC)
