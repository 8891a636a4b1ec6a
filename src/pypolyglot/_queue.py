"""Single-worker FIFO queue for inbound Polyglot messages."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections import deque
from collections.abc import Awaitable, Callable

from pypolyglot.models.messages import QueueItem

_logger = logging.getLogger(__name__)


class MessageQueue:
    """Process queued items one at a time, in arrival order.

    The worker awaits each handler before popping the next item, so no two
    handler bodies ever overlap. Between items it yields to the event loop
    instead of recursing, which bounds stack depth under bursts and lets
    immediate messages interleave.
    """

    def __init__(
        self,
        handler: Callable[[QueueItem], Awaitable[None]],
        *,
        name: str = "Message Queue Processor",
    ) -> None:
        self._handler = handler
        self._name = name
        self._items: deque[QueueItem] = deque()
        self._in_flight = 0
        self._worker: asyncio.Task[None] | None = None
        self._idle = asyncio.Event()
        self._idle.set()

    @property
    def name(self) -> str:
        return self._name

    @property
    def pending(self) -> int:
        """Items waiting to be processed (excluding the one in flight)."""
        return len(self._items)

    @property
    def in_flight(self) -> int:
        return self._in_flight

    def add(self, item: QueueItem) -> None:
        """Append *item* and start draining if the worker is idle.

        Must be called from the event loop thread.
        """
        self._items.append(item)
        self._idle.clear()
        if self._worker is None or self._worker.done():
            self._worker = asyncio.get_running_loop().create_task(self._drain(), name=self._name)

    async def _drain(self) -> None:
        while self._items:
            item = self._items.popleft()
            self._in_flight += 1
            try:
                await self._handler(item)
            except Exception:
                _logger.exception(
                    "Queue %s process error caught for %s. Currently processing %d",
                    self._name,
                    item.message_key,
                    self._in_flight,
                )
            finally:
                self._in_flight -= 1
            await asyncio.sleep(0)
        self._idle.set()

    async def join(self) -> None:
        """Wait until every queued item has been processed."""
        await self._idle.wait()

    async def close(self) -> None:
        """Drop pending items and stop the worker."""
        dropped = len(self._items)
        self._items.clear()
        worker = self._worker
        self._worker = None
        if worker is not None and not worker.done():
            worker.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await worker
        self._idle.set()
        if dropped:
            _logger.warning("Queue %s closed with %d unprocessed items", self._name, dropped)
