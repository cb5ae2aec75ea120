from __future__ import annotations

import asyncio
import logging
import threading
from typing import Any, AsyncIterator, Callable, Generic, List, Optional, TypeVar

T = TypeVar("T")

logger = logging.getLogger(__name__)


class _StreamFailure:
    __slots__ = ("error",)

    def __init__(self, error: BaseException) -> None:
        self.error = error


_CLOSED = object()


# PUBLIC_INTERFACE
class Subscription(Generic[T]):
    """
    Cancellable handle over a stream of snapshots.

    A producer (usually a backing-store or identity-provider listener) calls
    ``push``/``fail``; the subscriber consumes with ``async for`` or ``next``
    and calls ``close`` when done. ``close`` is idempotent: the release hook
    runs exactly once, and nothing is delivered afterwards.

    Pushes may come from any thread; they are marshalled onto the event loop
    the subscription was created on.

    Usage:
        sub = repo.observe_todos(owner_id)
        async with sub:
            async for todos in sub:
                ...
    """

    def __init__(self, name: str = "subscription", loop: Optional[asyncio.AbstractEventLoop] = None) -> None:
        self.name = name
        self._loop = loop or asyncio.get_running_loop()
        self._loop_thread = threading.get_ident()
        self._queue: "asyncio.Queue[Any]" = asyncio.Queue()
        self._lock = threading.Lock()
        self._closed = False
        self._finished = False
        self._release: Optional[Callable[[], None]] = None
        self._emitted = 0

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def emitted(self) -> int:
        """Number of snapshots accepted so far."""
        return self._emitted

    def bind(self, release: Callable[[], None]) -> None:
        """
        Attach the hook that releases the underlying listener.

        If the subscription was already closed, the hook runs immediately.
        """
        with self._lock:
            if not self._closed:
                self._release = release
                return
        release()

    def push(self, item: T) -> None:
        with self._lock:
            if self._closed:
                return
            self._emitted += 1
        self._call(self._deliver, item)

    def fail(self, error: BaseException) -> None:
        """Deliver ``error`` to the subscriber and end the stream."""
        release = self._mark_closed()
        if release is False:
            return
        self._call(self._finish, _StreamFailure(error))
        self._run_release(release)

    def close(self) -> None:
        release = self._mark_closed()
        if release is False:
            return
        self._call(self._finish, None)
        self._run_release(release)

    # Alias matching common "disposable" naming.
    unsubscribe = close

    def _mark_closed(self) -> Any:
        with self._lock:
            if self._closed:
                return False
            self._closed = True
            release, self._release = self._release, None
            return release

    def _run_release(self, release: Optional[Callable[[], None]]) -> None:
        if release is None:
            return
        try:
            release()
        finally:
            logger.debug("Released listener for %s", self.name)

    def _call(self, fn: Callable[..., None], *args: Any) -> None:
        if threading.get_ident() == self._loop_thread:
            fn(*args)
        elif not self._loop.is_closed():
            self._loop.call_soon_threadsafe(fn, *args)

    # The two methods below only ever run on the subscription's loop thread.

    def _deliver(self, item: Any) -> None:
        if not self._finished:
            self._queue.put_nowait(item)

    def _finish(self, failure: Optional[_StreamFailure]) -> None:
        if self._finished:
            return
        self._finished = True
        if failure is None:
            # Cancelled: pending snapshots are dropped.
            while not self._queue.empty():
                self._queue.get_nowait()
        else:
            self._queue.put_nowait(failure)
        self._queue.put_nowait(_CLOSED)

    async def next(self, timeout: Optional[float] = None) -> T:
        """
        Return the next snapshot.

        Raises StopAsyncIteration once the subscription is closed, the
        delivered error if the producer failed, and asyncio.TimeoutError when
        ``timeout`` elapses first.
        """
        if timeout is None:
            item = await self._queue.get()
        else:
            item = await asyncio.wait_for(self._queue.get(), timeout)
        if item is _CLOSED:
            # Keep the sentinel for any later readers.
            self._queue.put_nowait(_CLOSED)
            raise StopAsyncIteration
        if isinstance(item, _StreamFailure):
            raise item.error
        return item

    def drain(self) -> List[T]:
        """Return every snapshot already queued without waiting."""
        items: List[T] = []
        while not self._queue.empty():
            item = self._queue.get_nowait()
            if item is _CLOSED:
                self._queue.put_nowait(_CLOSED)
                break
            if isinstance(item, _StreamFailure):
                raise item.error
            items.append(item)
        return items

    def __aiter__(self) -> AsyncIterator[T]:
        return self

    async def __anext__(self) -> T:
        return await self.next()

    async def __aenter__(self) -> "Subscription[T]":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        self.close()

    def __enter__(self) -> "Subscription[T]":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    def __repr__(self) -> str:
        state = "closed" if self._closed else "open"
        return f"<Subscription {self.name} {state} emitted={self._emitted}>"
