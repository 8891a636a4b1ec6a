"""Sliding-window detector for config messages sent in a loop."""

from __future__ import annotations

import asyncio

from pypolyglot._constants import LOOP_THRESHOLD, LOOP_WINDOW
from pypolyglot.exceptions import ConfigLoopDetectedError


class LoopGuard:
    """Count hits over a sliding window.

    Every :meth:`hit` increments the counter and schedules its own decrement
    ``window`` seconds later; there is no manual reset. The guard is tripped
    while the counter is above ``threshold``.
    """

    def __init__(self, *, threshold: int = LOOP_THRESHOLD, window: float = LOOP_WINDOW) -> None:
        self._threshold = threshold
        self._window = window
        self._count = 0
        self._handles: set[asyncio.TimerHandle] = set()

    @property
    def count(self) -> int:
        return self._count

    @property
    def tripped(self) -> bool:
        return self._count > self._threshold

    def hit(self) -> bool:
        """Record one hit. Returns ``True`` when a loop is detected."""
        self._count += 1
        loop = asyncio.get_running_loop()
        handle: asyncio.TimerHandle | None = None

        def _expire() -> None:
            self._count -= 1
            self._handles.discard(handle)  # type: ignore[arg-type]

        handle = loop.call_later(self._window, _expire)
        self._handles.add(handle)
        return self.tripped

    def check(self) -> None:
        """Record one hit and raise :class:`ConfigLoopDetectedError` when tripped."""
        if self.hit():
            raise ConfigLoopDetectedError(f"Config processing loop detected iteration {self._count}.")

    def close(self) -> None:
        """Cancel pending decrements and reset the counter."""
        for handle in self._handles:
            handle.cancel()
        self._handles.clear()
        self._count = 0
