"""Notices shown in the Polyglot front-end.

Keyed notices are tracked in custom data under ``keyedNotices`` so that a
notice can be removed by key after a restart.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from pypolyglot._constants import KEYED_NOTICES
from pypolyglot._interface.params import add_custom_data, get_custom_data

if TYPE_CHECKING:
    from pypolyglot.interface import Interface

_logger = logging.getLogger(__name__)


def _keyed_notices(interface: Interface) -> dict[str, Any]:
    value = get_custom_data(interface, KEYED_NOTICES)
    return dict(value) if isinstance(value, dict) else {}


def get_notices(interface: Interface) -> Any:
    notices = interface.get_config().get("notices")
    return notices if notices else []


def notice_exists(interface: Interface, key: str) -> bool:
    return key in _keyed_notices(interface)


def add_notice(interface: Interface, key: str, text: str) -> None:
    """Show a keyed notice.

    Keys are merged into the custom data of the last config received, so
    after two notices added back to back before the next config, the
    keyed record holds only the second key.
    """
    if notice_exists(interface, key):
        return
    keyed = _keyed_notices(interface)
    keyed[key] = text
    add_custom_data(interface, {KEYED_NOTICES: keyed})
    interface.send_message({"addnotice": {"key": key, "value": text}})


def add_notice_temp(interface: Interface, key: str, text: str, delay: float) -> None:
    """Show a notice for *delay* seconds."""
    add_notice(interface, key, text)
    interface.call_later(delay, lambda: remove_notice(interface, key))


def remove_notice(interface: Interface, key: str) -> None:
    if not notice_exists(interface, key):
        return
    keyed = _keyed_notices(interface)
    del keyed[key]
    add_custom_data(interface, {KEYED_NOTICES: keyed})
    interface.send_message({"removenotice": {"key": key}})


def remove_notices_all(interface: Interface) -> None:
    """Remove every notice, keyed or not."""
    add_custom_data(interface, {KEYED_NOTICES: {}})
    notices = get_notices(interface)
    texts = notices.values() if isinstance(notices, dict) else notices
    for text in texts:
        # Polyglot also accepts removal by text.
        interface.send_message({"removenotice": text})
    _logger.debug("Removed %d notices", len(texts))
