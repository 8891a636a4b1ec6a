from __future__ import annotations

import asyncio
import time

import pytest

from pypolyglot._queue import MessageQueue
from pypolyglot.models.messages import QueueItem


@pytest.mark.asyncio
async def test_items_processed_once_in_order_without_overlap() -> None:
    spans: list[tuple[int, float, float]] = []
    active = 0
    max_active = 0

    async def handler(item: QueueItem) -> None:
        nonlocal active, max_active
        active += 1
        max_active = max(max_active, active)
        entered = time.monotonic()
        await asyncio.sleep(0.001 * (item.message_content % 3))
        active -= 1
        spans.append((item.message_content, entered, time.monotonic()))

    queue = MessageQueue(handler)
    for i in range(20):
        queue.add(QueueItem(message_key="command", message_content=i))
    await queue.join()

    assert [index for index, _enter, _exit in spans] == list(range(20))
    assert max_active == 1
    for (_i, _enter, exited), (_j, entered, _exit) in zip(spans, spans[1:]):
        assert exited <= entered


@pytest.mark.asyncio
async def test_handler_error_is_logged_and_queue_continues(caplog: pytest.LogCaptureFixture) -> None:
    seen: list[str] = []

    async def handler(item: QueueItem) -> None:
        if item.message_key == "bad":
            raise RuntimeError("boom")
        seen.append(item.message_key)

    queue = MessageQueue(handler, name="test queue")
    queue.add(QueueItem("query", None))
    queue.add(QueueItem("bad", None))
    queue.add(QueueItem("status", None))
    await queue.join()

    assert seen == ["query", "status"]
    assert "Queue test queue process error caught for bad. Currently processing 1" in caplog.text


@pytest.mark.asyncio
async def test_worker_yields_between_items() -> None:
    order: list[str] = []

    async def handler(item: QueueItem) -> None:
        order.append(item.message_key)

    queue = MessageQueue(handler)
    queue.add(QueueItem("first", None))
    queue.add(QueueItem("second", None))

    async def other() -> None:
        order.append("other")

    task = asyncio.get_running_loop().create_task(other())
    await queue.join()
    await task

    # The unrelated task gets a turn before the queue finishes draining.
    assert order.index("other") < order.index("second")


@pytest.mark.asyncio
async def test_items_added_while_draining_are_processed() -> None:
    seen: list[int] = []
    queue: MessageQueue

    async def handler(item: QueueItem) -> None:
        seen.append(item.message_content)
        if item.message_content == 0:
            queue.add(QueueItem("command", 1))

    queue = MessageQueue(handler)
    queue.add(QueueItem("command", 0))
    await queue.join()

    assert seen == [0, 1]


@pytest.mark.asyncio
async def test_close_drops_pending_items() -> None:
    release = asyncio.Event()
    seen: list[int] = []

    async def handler(item: QueueItem) -> None:
        await release.wait()
        seen.append(item.message_content)

    queue = MessageQueue(handler)
    for i in range(3):
        queue.add(QueueItem("command", i))
    await asyncio.sleep(0)
    assert queue.pending == 2

    await queue.close()

    assert queue.pending == 0
    assert seen == []
