import asyncio
import threading

import pytest

from todo_sync.errors import DataAccessError
from todo_sync.streams import Subscription


async def test_items_arrive_in_order():
    sub = Subscription(name="t")
    sub.push(1)
    sub.push(2)
    assert await sub.next(timeout=1) == 1
    assert await sub.next(timeout=1) == 2
    assert sub.emitted == 2


async def test_close_is_idempotent_and_releases_once():
    released = []
    sub = Subscription(name="t")
    sub.bind(lambda: released.append(True))
    sub.push("pending")
    sub.close()
    sub.close()
    sub.unsubscribe()
    assert released == [True]
    assert sub.closed
    with pytest.raises(StopAsyncIteration):
        await sub.next(timeout=1)
    # Still closed for later readers.
    with pytest.raises(StopAsyncIteration):
        await sub.next(timeout=1)


async def test_nothing_delivered_after_close():
    sub = Subscription(name="t")
    sub.close()
    sub.push("late")
    assert sub.emitted == 0
    assert [item async for item in sub] == []


async def test_bind_after_close_releases_immediately():
    released = []
    sub = Subscription(name="t")
    sub.close()
    sub.bind(lambda: released.append(True))
    assert released == [True]


async def test_fail_delivers_pending_items_then_error():
    sub = Subscription(name="t")
    sub.push([1])
    sub.fail(DataAccessError("listener died"))
    sub.push([2])
    assert await sub.next(timeout=1) == [1]
    with pytest.raises(DataAccessError):
        await sub.next(timeout=1)


async def test_push_from_other_thread_is_marshalled():
    sub = Subscription(name="t")
    worker = threading.Thread(target=lambda: sub.push("from-thread"))
    worker.start()
    worker.join()
    assert await sub.next(timeout=1) == "from-thread"


async def test_next_timeout():
    sub = Subscription(name="t")
    with pytest.raises(asyncio.TimeoutError):
        await sub.next(timeout=0.01)


async def test_async_context_manager_closes():
    released = []
    async with Subscription(name="t") as sub:
        sub.bind(lambda: released.append(True))
        sub.push(1)
        assert sub.drain() == [1]
    assert released == [True]
    assert sub.closed


def test_requires_running_loop():
    with pytest.raises(RuntimeError):
        Subscription(name="t")
