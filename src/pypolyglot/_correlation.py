"""Correlation of outbound commands with Polyglot ``result`` messages."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any

from pydantic import ValidationError

from pypolyglot._constants import DEFAULT_REQUEST_TIMEOUT, IGNORED_RESULT_KEYS, TRACKED_RESULT_COMMANDS
from pypolyglot.exceptions import (
    CorrelationRejectedError,
    CorrelationTimeoutError,
    PolyglotError,
    PolyglotTransportError,
)
from pypolyglot.models.messages import CommandResult

_logger = logging.getLogger(__name__)


def correlation_key(command: str, address: str) -> str:
    """Key pairing a tracked command with its result, e.g. ``addnode-node003``."""
    return f"{command}-{address}"


@dataclass(slots=True)
class PendingRequest:
    key: str
    future: asyncio.Future[str]
    timer: asyncio.TimerHandle | None = None


class CorrelationTable:
    """Pending correlated requests, at most one per key.

    A request for a key that is already in flight waits for the previous
    request to settle (either way) before it is published, so competing
    operations on the same target are serialized.
    """

    def __init__(
        self,
        *,
        publish: Callable[[dict[str, Any]], None],
        is_connected: Callable[[], bool],
        default_timeout: float = DEFAULT_REQUEST_TIMEOUT,
    ) -> None:
        self._publish = publish
        self._is_connected = is_connected
        self._default_timeout = default_timeout
        self._pending: dict[str, PendingRequest] = {}

    def __contains__(self, key: object) -> bool:
        return key in self._pending

    def __len__(self) -> int:
        return len(self._pending)

    async def send(self, key: str, message: dict[str, Any], timeout: float | None = None) -> str:
        """Publish *message* and wait for the result correlated by *key*.

        Parameters
        ----------
        key
            Correlation key, see :func:`correlation_key`.
        message
            Outbound message (without the ``node`` field).
        timeout
            Seconds to wait for the result. ``None`` uses the table default;
            ``0`` waits forever.

        Returns
        -------
        str
            The ``reason`` string of a successful result.

        Raises
        ------
        CorrelationTimeoutError
            No result arrived within *timeout*.
        CorrelationRejectedError
            Polyglot reported a failure.
        PolyglotTransportError
            Not connected, or the publish failed.
        """
        previous = self._pending.get(key)
        while previous is not None and not previous.future.done():
            # Outcome belongs to the previous caller.
            await asyncio.wait([previous.future])
            previous = self._pending.get(key)

        if not self._is_connected():
            raise PolyglotTransportError("Polyglot not connected")

        loop = asyncio.get_running_loop()
        request = PendingRequest(key=key, future=loop.create_future())
        self._pending[key] = request
        request.future.add_done_callback(lambda _fut: self._forget(request))

        try:
            self._publish(message)
        except PolyglotError as exc:
            if not request.future.done():
                request.future.set_exception(exc)

        effective = self._default_timeout if timeout is None else timeout
        if effective and not request.future.done():
            request.timer = loop.call_later(effective, self._expire, request, effective)

        return await request.future

    def _expire(self, request: PendingRequest, timeout: float) -> None:
        if not request.future.done():
            _logger.warning("Result for %s not received within %ss", request.key, timeout)
            request.future.set_exception(CorrelationTimeoutError(request.key, timeout))

    def _forget(self, request: PendingRequest) -> None:
        if request.timer is not None:
            request.timer.cancel()
        if self._pending.get(request.key) is request:
            del self._pending[request.key]

    def settle(self, key: str, *, success: bool, reason: str) -> bool:
        """Resolve or reject the pending request for *key*.

        Returns ``True`` when a pending request was found.
        """
        request = self._pending.get(key)
        if request is None or request.future.done():
            _logger.debug("No pending request for result %s", key)
            return False
        if success:
            request.future.set_result(reason)
        else:
            request.future.set_exception(CorrelationRejectedError(key, reason))
        return True

    def on_result(self, content: Mapping[str, Any]) -> None:
        """Handle the content of a ``result`` message. Never raises.

        Sample result content::

            {"profileNum": "1",
             "addnode": {"success": True, "address": "node006",
                         "reason": "AddNode: n001_node006 added to database successfully."}}
        """
        if not isinstance(content, Mapping):
            _logger.error("Invalid result message received: %r", content)
            return

        for key, value in content.items():
            if key in TRACKED_RESULT_COMMANDS:
                try:
                    result = CommandResult.model_validate(value)
                except ValidationError:
                    _logger.error("Invalid %s result received: %r", key, value)
                    continue
                self.settle(correlation_key(key, result.address), success=result.success, reason=result.reason)
            elif key == "isyresponse":
                category = ""
                reason = ""
                for sub_key in ("change", "status"):
                    sub = content.get(sub_key)
                    if isinstance(sub, Mapping) and sub.get("reason"):
                        category = sub_key
                        reason = str(sub["reason"])
                _logger.info("Received result ISY Response [%s]: %s", category, reason)
            elif key in IGNORED_RESULT_KEYS:
                continue
            else:
                _logger.info("Received result for unhandled command %s: %r", key, content)

    def close(self) -> None:
        """Fail every pending request."""
        for request in list(self._pending.values()):
            if not request.future.done():
                request.future.set_exception(PolyglotError("Interface closed"))
        self._pending.clear()
