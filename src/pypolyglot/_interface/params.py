"""Custom parameters and custom data for :class:`pypolyglot.interface.Interface`.

These functions keep `interface.py` small without changing the public API.
Values are read from the last config received and written back by sending
the complete new value to Polyglot, which echoes it in the next config.
"""

from __future__ import annotations

import copy
import logging
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from pypolyglot.interface import Interface

_logger = logging.getLogger(__name__)


def _config_section(interface: Interface, name: str) -> dict[str, Any]:
    value = interface.get_config().get(name)
    return copy.deepcopy(value) if isinstance(value, dict) else {}


def get_custom_params(interface: Interface) -> dict[str, Any]:
    return _config_section(interface, "customParams")


def get_custom_param(interface: Interface, key: str) -> Any:
    if not isinstance(key, str):
        _logger.error("get_custom_param error: Parameter is not a string.")
        return None
    params = get_custom_params(interface)
    if key not in params:
        _logger.error("get_custom_param error: Parameter %s does not exist.", key)
        return None
    return params[key]


def save_custom_params(interface: Interface, params: Mapping[str, Any]) -> None:
    """Replace all custom parameters with *params*."""
    if not isinstance(params, Mapping):
        _logger.error("save_custom_params error: Parameter is not an object.")
        return
    interface.send_message({"customparams": dict(params)})


def add_custom_params(interface: Interface, params: Mapping[str, Any]) -> None:
    """Merge *params* into the existing custom parameters.

    The merge base is the last config received: a second call before Polyglot
    echoes the first one back in a config overwrites the first change.
    """
    if not isinstance(params, Mapping):
        _logger.error("add_custom_params error: Parameter is not an object.")
        return
    save_custom_params(interface, get_custom_params(interface) | dict(params))


def remove_custom_params(interface: Interface, key: str) -> None:
    if not isinstance(key, str):
        _logger.error("remove_custom_params error: Parameter is not a string.")
        return
    params = get_custom_params(interface)
    if key in params:
        del params[key]
        save_custom_params(interface, params)


def save_typed_params(interface: Interface, typed_params: list[Any]) -> None:
    if not isinstance(typed_params, list):
        _logger.error("save_typed_params error: Parameter is not a list.")
        return
    interface.send_message({"typedparams": typed_params})


def set_custom_params_doc(interface: Interface, html: str) -> None:
    """Set the custom parameters documentation shown in the Polyglot UI."""
    if not isinstance(html, str):
        _logger.error("set_custom_params_doc error: Parameter is not a string.")
        return
    interface.send_message({"customparamsdoc": html})


def get_custom_data(interface: Interface, key: str | None = None) -> Any:
    """Whole custom data, or the value stored under *key*."""
    data = _config_section(interface, "customData")
    return data.get(key) if key is not None else data


def save_custom_data(interface: Interface, data: Mapping[str, Any]) -> None:
    """Replace all custom data with *data*."""
    if not isinstance(data, Mapping):
        _logger.error("save_custom_data error: Parameter is not an object.")
        return
    interface.send_message({"customdata": dict(data)})


def add_custom_data(interface: Interface, data: Mapping[str, Any]) -> None:
    """Merge *data* into custom data. Same last-config caveat as :func:`add_custom_params`."""
    if not isinstance(data, Mapping):
        _logger.error("add_custom_data error: Parameter is not an object.")
        return
    save_custom_data(interface, get_custom_data(interface) | dict(data))


def remove_custom_data(interface: Interface, key: str) -> None:
    if not isinstance(key, str):
        _logger.error("remove_custom_data error: Parameter is not a string.")
        return
    data = get_custom_data(interface)
    if key in data:
        del data[key]
        save_custom_data(interface, data)
