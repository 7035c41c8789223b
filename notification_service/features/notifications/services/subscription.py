"""
Subscription adapter glue.

The change feed itself (connection lifecycle, reconnects, backlog
redelivery) belongs to the host. The engine consumes either a direct
`on_event` callback or any async iterable of events; QueueSubscription is
the push-style adapter for hosts that receive events from callbacks.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Mapping
from typing import Any

from notification_service.infrastructure.observability.logging import get_logger

from ..domain.models import RawEvent

logger = get_logger(__name__)

FeedItem = RawEvent | Mapping[str, Any]

_CLOSED = object()


class QueueSubscription:
    """Async-iterable feed backed by an asyncio.Queue."""

    def __init__(self, name: str = "feed", maxsize: int = 0):
        self.name = name
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self._closed = False
        self.delivered = 0

    def push(self, item: FeedItem) -> None:
        """Deliver an item from code running on the event loop."""
        if self._closed:
            raise RuntimeError(f"Subscription '{self.name}' is closed")
        self._queue.put_nowait(item)

    def push_threadsafe(self, loop: asyncio.AbstractEventLoop, item: FeedItem) -> None:
        """Deliver an item from a thread that does not run the loop."""
        loop.call_soon_threadsafe(self.push, item)

    async def put(self, item: FeedItem) -> None:
        if self._closed:
            raise RuntimeError(f"Subscription '{self.name}' is closed")
        await self._queue.put(item)

    def close(self) -> None:
        """End the stream once queued items are drained."""
        if not self._closed:
            self._closed = True
            self._queue.put_nowait(_CLOSED)

    @property
    def closed(self) -> bool:
        return self._closed

    def __aiter__(self) -> AsyncIterator[FeedItem]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[FeedItem]:
        while True:
            item = await self._queue.get()
            if item is _CLOSED:
                logger.info("Subscription drained", subscription=self.name, delivered=self.delivered)
                return
            self.delivered += 1
            yield item
