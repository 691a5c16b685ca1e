"""Latest-snapshot channel between one producer and one consumer."""

import asyncio
from typing import Generic, TypeVar

T = TypeVar("T")


class SnapshotStream(Generic[T]):
    """Single-producer, single-consumer channel of full-state snapshots.

    Holds at most one unread snapshot: ``publish`` never blocks and replaces
    whatever the consumer has not read yet, so a slow consumer skips
    intermediate states but never reads an older one after a newer one. The
    consumer reads with ``async for`` or ``await stream.get()``. ``close()``
    ends iteration; when closed with an error the consumer first gets the
    unread snapshot, if any, and then the error raised.
    """

    def __init__(self) -> None:
        self._unread: T | None = None
        self._has_unread = False
        self._ready = asyncio.Event()
        self._closed = False
        self._error: BaseException | None = None
        self.latest: T | None = None
        self.skipped = 0

    @property
    def closed(self) -> bool:
        return self._closed

    def publish(self, item: T) -> None:
        if self._closed:
            return
        if self._has_unread:
            self.skipped += 1
        self.latest = item
        self._unread = item
        self._has_unread = True
        self._ready.set()

    def close(self, error: BaseException | None = None) -> None:
        if self._closed:
            return
        self._closed = True
        self._error = error
        if error is None:
            # Consumer asked to stop: the unread snapshot is stale
            self._unread = None
            self._has_unread = False
        self._ready.set()

    def pending(self) -> int:
        """1 when a snapshot is waiting to be read, else 0."""
        return int(self._has_unread)

    async def get(self) -> T:
        """Newest unread snapshot; raises StopAsyncIteration once closed (or the close error)."""
        while not self._has_unread and not self._closed:
            self._ready.clear()
            await self._ready.wait()
        if self._has_unread:
            item = self._unread
            self._unread = None
            self._has_unread = False
            return item
        if self._error is not None:
            raise self._error
        raise StopAsyncIteration

    def __aiter__(self) -> "SnapshotStream[T]":
        return self

    async def __anext__(self) -> T:
        return await self.get()
