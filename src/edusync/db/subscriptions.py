"""Live query subscriptions.

A Subscription is an explicit observer handle: the store pushes the full
matching result set into it immediately and after every mutation that
touches the selector. Consumers either iterate asynchronously or poll.

    sub = store.subscribe("progress", {"userId": "u1"})
    async for rows in sub:
        render(rows)
    ...
    sub.cancel()
"""

from __future__ import annotations

import asyncio
from typing import Any, Callable

from edusync.db.query import Selector

ResultSet = list[dict[str, Any]]


class Subscription:
    """Handle for a live query; cancel() is immediate and idempotent."""

    def __init__(
        self,
        collection: str,
        selector: Selector | None,
        on_cancel: Callable[[Subscription], None],
    ):
        self.collection = collection
        self.selector = dict(selector or {})
        self._on_cancel = on_cancel
        # None is the end-of-stream sentinel
        self._queue: asyncio.Queue[ResultSet | None] = asyncio.Queue()
        self._latest: ResultSet | None = None
        self._cancelled = False
        self.emissions = 0

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def latest(self) -> ResultSet | None:
        """Most recent result set delivered before cancellation."""
        return self._latest

    def emit(self, results: ResultSet) -> None:
        """Deliver a result set. Ignored once cancelled."""
        if self._cancelled:
            return
        self._latest = results
        self.emissions += 1
        self._queue.put_nowait(results)

    def cancel(self) -> None:
        """Stop the stream. Undelivered result sets are discarded."""
        if self._cancelled:
            return
        self._cancelled = True
        while not self._queue.empty():
            self._queue.get_nowait()
        self._queue.put_nowait(None)
        self._on_cancel(self)

    def drain(self) -> list[ResultSet]:
        """Return every pending result set without waiting."""
        pending: list[ResultSet] = []
        while not self._queue.empty():
            item = self._queue.get_nowait()
            if item is None:
                self._queue.put_nowait(None)
                break
            pending.append(item)
        return pending

    def __aiter__(self) -> Subscription:
        return self

    async def __anext__(self) -> ResultSet:
        if self._cancelled and self._queue.empty():
            raise StopAsyncIteration
        item = await self._queue.get()
        if item is None:
            raise StopAsyncIteration
        return item
