"""
DevMatch — Realtime change feed.

In-process publish/subscribe over inserted rows.  A subscription is scoped by
table name and a predicate over the row; each subscription has its own
bounded queue, so delivery is in publish order per subscription and
independent across subscriptions.

Nothing is buffered for a subscription that is not open: consumers must
reconcile with a full fetch and treat the feed as a best-effort live tail.
"""

from __future__ import annotations

import asyncio
import uuid
from typing import Any, AsyncIterator, Callable

import structlog

logger = structlog.get_logger("devmatch.change_feed")

Row = dict[str, Any]
RowPredicate = Callable[[Row], bool]

_CLOSED = object()


def match_filter(match_id: uuid.UUID | str) -> RowPredicate:
    """Predicate accepting message rows that belong to ``match_id``."""
    wanted = str(match_id)

    def _predicate(row: Row) -> bool:
        return str(row.get("match_id")) == wanted

    return _predicate


class Subscription:
    """A live, filtered view of insert events for one table."""

    def __init__(
        self,
        feed: "ChangeFeed",
        table: str,
        predicate: RowPredicate,
        maxsize: int,
    ) -> None:
        self.id = uuid.uuid4()
        self.table = table
        self._feed = feed
        self._predicate = predicate
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self.closed = False
        self.dropped = 0

    def accepts(self, row: Row) -> bool:
        return not self.closed and self._predicate(row)

    def _deliver(self, row: Row) -> None:
        try:
            self._queue.put_nowait(row)
        except asyncio.QueueFull:
            # Slow consumer; the reader recovers through a full refetch.
            self.dropped += 1
            logger.warning(
                "change_feed_event_dropped",
                subscription_id=str(self.id),
                table=self.table,
                dropped=self.dropped,
            )

    async def get(self) -> Row | None:
        """Wait for the next row; ``None`` once the subscription is closed."""
        if self.closed and self._queue.empty():
            return None
        item = await self._queue.get()
        if item is _CLOSED:
            return None
        return item

    def close(self) -> None:
        """Release the subscription.  Synchronous and idempotent."""
        if self.closed:
            return
        self.closed = True
        self._feed._remove(self)
        try:
            self._queue.put_nowait(_CLOSED)
        except asyncio.QueueFull:
            # Reader will see ``closed`` after draining.
            pass

    def __aiter__(self) -> AsyncIterator[Row]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[Row]:
        while True:
            row = await self.get()
            if row is None:
                return
            yield row


class ChangeFeed:
    """Registry of open subscriptions plus the publish entry-point."""

    def __init__(self, queue_size: int = 256) -> None:
        self._queue_size = queue_size
        self._subscriptions: dict[uuid.UUID, Subscription] = {}

    @property
    def subscription_count(self) -> int:
        return len(self._subscriptions)

    def subscribe(self, table: str, predicate: RowPredicate) -> Subscription:
        sub = Subscription(self, table, predicate, self._queue_size)
        self._subscriptions[sub.id] = sub
        logger.debug("change_feed_subscribed", subscription_id=str(sub.id), table=table)
        return sub

    def publish(self, table: str, row: Row) -> int:
        """Deliver ``row`` to every matching subscription.  Returns the count."""
        delivered = 0
        for sub in list(self._subscriptions.values()):
            if sub.table == table and sub.accepts(row):
                sub._deliver(dict(row))
                delivered += 1
        logger.debug("change_feed_published", table=table, delivered=delivered)
        return delivered

    def close_all(self) -> None:
        for sub in list(self._subscriptions.values()):
            sub.close()

    def _remove(self, sub: Subscription) -> None:
        self._subscriptions.pop(sub.id, None)
        logger.debug("change_feed_unsubscribed", subscription_id=str(sub.id))
