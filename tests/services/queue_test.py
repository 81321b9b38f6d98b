"""Tests for the work queue."""

from __future__ import annotations

import asyncio
from datetime import timedelta

import pytest

from csiattacher.models.domain.attachment import WorkKey, WorkKind
from csiattacher.services.queue import WorkQueue

KEY = WorkKey(WorkKind.ATTACHMENT, "csi-1")
OTHER_KEY = WorkKey(WorkKind.VOLUME, "pv1")


def build_queue(
    base_delay: timedelta = timedelta(milliseconds=10),
) -> WorkQueue[WorkKey]:
    return WorkQueue(base_delay=base_delay, max_delay=timedelta(seconds=1))


@pytest.mark.asyncio
async def test_deduplicate() -> None:
    queue = build_queue()
    queue.add(KEY)
    queue.add(OTHER_KEY)
    queue.add(KEY)
    assert len(queue) == 2

    assert await queue.get() == KEY
    assert await queue.get() == OTHER_KEY
    assert len(queue) == 0


@pytest.mark.asyncio
async def test_single_flight() -> None:
    queue = build_queue()
    queue.add(KEY)
    assert await queue.get() == KEY

    # Adding a key that is being processed defers it until it is done.
    queue.add(KEY)
    queue.add(KEY)
    assert len(queue) == 0
    queue.done(KEY)
    assert len(queue) == 1
    assert await queue.get() == KEY
    queue.done(KEY)
    assert len(queue) == 0


@pytest.mark.asyncio
async def test_wait() -> None:
    queue = build_queue()
    task = asyncio.create_task(queue.get())
    await asyncio.sleep(0)
    assert not task.done()
    queue.add(KEY)
    assert await asyncio.wait_for(task, 1) == KEY


@pytest.mark.asyncio
async def test_rate_limited() -> None:
    queue = build_queue(base_delay=timedelta(milliseconds=50))
    queue.add_rate_limited(KEY)
    assert queue.num_requeues(KEY) == 1
    assert len(queue) == 0
    assert await asyncio.wait_for(queue.get(), 1) == KEY
    queue.done(KEY)

    # The delay doubles with each failure until forgotten.
    queue.add_rate_limited(KEY)
    assert queue.num_requeues(KEY) == 2
    await asyncio.sleep(0.06)
    assert len(queue) == 0
    assert await asyncio.wait_for(queue.get(), 1) == KEY
    queue.done(KEY)

    queue.forget(KEY)
    assert queue.num_requeues(KEY) == 0


@pytest.mark.asyncio
async def test_add_after_keeps_earliest() -> None:
    queue = build_queue()
    queue.add_after(KEY, 10)
    queue.add_after(KEY, 0.01)
    queue.add_after(KEY, 20)
    assert await asyncio.wait_for(queue.get(), 1) == KEY
    queue.done(KEY)
    queue.add_after(OTHER_KEY, 0)
    assert len(queue) == 1
    queue.shutdown()


@pytest.mark.asyncio
async def test_max_delay() -> None:
    queue = WorkQueue[WorkKey](
        base_delay=timedelta(seconds=1), max_delay=timedelta(milliseconds=10)
    )
    for _ in range(100):
        queue.add_rate_limited(KEY)
    assert await asyncio.wait_for(queue.get(), 1) == KEY


@pytest.mark.asyncio
async def test_shutdown() -> None:
    queue = build_queue()
    tasks = [asyncio.create_task(queue.get()) for _ in range(3)]
    await asyncio.sleep(0)
    queue.add_after(KEY, 10)
    queue.shutdown()
    assert queue.is_shutdown
    assert await asyncio.gather(*tasks) == [None, None, None]

    queue.add(KEY)
    assert len(queue) == 0
    assert await queue.get() is None
