"""
Live tail fan-out.

A Subscription is one open streaming connection bound to one application.
The ingestion path calls publish() for each new record; the hub pushes it
onto the queue of every current subscriber of that application.

Delivery is at-most-once and best effort:
    - Records published while nobody is subscribed are not kept
    - A subscriber sees records in the order publish() was called
    - A subscriber whose queue is full misses the record (counted in
      ``dropped``); other subscribers are unaffected

Invariants:
    - Subscriptions never receive records of another application
    - unsubscribe() is synchronous and idempotent, so a disconnect
      handler can always release the subscription in ``finally``
"""

from __future__ import annotations

import asyncio
import itertools
import logging
from collections import defaultdict
from collections.abc import AsyncIterator
from typing import Any

logger = logging.getLogger(__name__)

_CLOSED = object()


class Subscription:
    """One subscriber's view of an application's live records.

    Example:
        >>> sub = hub.subscribe(app_id)
        >>> try:
        ...     async for record in sub:
        ...         await websocket.send_json(record)
        ... finally:
        ...     sub.close()
    """

    def __init__(self, hub: TrailHub, application_id: str, subscriber_id: int, queue_size: int) -> None:
        self.hub = hub
        self.application_id = application_id
        self.subscriber_id = subscriber_id
        self._queue: asyncio.Queue[Any] = asyncio.Queue(maxsize=queue_size)
        self.delivered = 0
        self.dropped = 0
        self.closed = False

    def offer(self, record: dict[str, Any]) -> bool:
        """Enqueue without waiting. Returns False if the record was dropped."""
        if self.closed:
            return False
        try:
            self._queue.put_nowait(record)
        except asyncio.QueueFull:
            self.dropped += 1
            if self.dropped == 1 or self.dropped % 100 == 0:
                logger.warning(
                    "Live tail subscriber is falling behind, dropping records",
                    extra={
                        "application_id": self.application_id,
                        "subscriber_id": self.subscriber_id,
                        "dropped": self.dropped,
                    },
                )
            return False
        self.delivered += 1
        return True

    async def get(self) -> dict[str, Any] | None:
        """Next record, or None once the subscription is closed."""
        if self.closed and self._queue.empty():
            return None
        item = await self._queue.get()
        if item is _CLOSED:
            return None
        return item

    def close(self) -> None:
        """Deregister from the hub and wake any pending get()."""
        if self.closed:
            return
        self.closed = True
        self.hub.unsubscribe(self)
        # Drain so the sentinel always fits.
        while not self._queue.empty():
            self._queue.get_nowait()
        self._queue.put_nowait(_CLOSED)

    def __aiter__(self) -> AsyncIterator[dict[str, Any]]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[dict[str, Any]]:
        while True:
            record = await self.get()
            if record is None:
                return
            yield record


class TrailHub:
    """Registry of live tail subscriptions keyed by application id.

    Thread safety:
        Single event loop. publish(), subscribe() and unsubscribe() never
        await, so they are atomic with respect to other coroutines.
    """

    def __init__(self, queue_size: int = 1000) -> None:
        self.queue_size = queue_size
        self._subscribers: dict[str, dict[int, Subscription]] = defaultdict(dict)
        self._ids = itertools.count(1)

    def subscribe(self, application_id: str) -> Subscription:
        """Register a new subscriber for an application."""
        sub = Subscription(self, application_id, next(self._ids), self.queue_size)
        self._subscribers[application_id][sub.subscriber_id] = sub
        logger.debug(
            "Live tail subscribed",
            extra={"application_id": application_id, "subscriber_id": sub.subscriber_id},
        )
        return sub

    def unsubscribe(self, sub: Subscription) -> None:
        subs = self._subscribers.get(sub.application_id)
        if subs is None or subs.pop(sub.subscriber_id, None) is None:
            return
        if not subs:
            del self._subscribers[sub.application_id]
        if not sub.closed:
            sub.close()
        logger.debug(
            "Live tail unsubscribed",
            extra={"application_id": sub.application_id, "subscriber_id": sub.subscriber_id},
        )

    def publish(self, application_id: str, record: dict[str, Any]) -> int:
        """Push a record to every current subscriber of the application.

        Returns:
            Number of subscribers the record was queued for
        """
        subs = self._subscribers.get(application_id)
        if not subs:
            return 0
        return sum(1 for sub in list(subs.values()) if sub.offer(record))

    def subscriber_count(self, application_id: str | None = None) -> int:
        if application_id is not None:
            return len(self._subscribers.get(application_id, {}))
        return sum(len(s) for s in self._subscribers.values())

    def close(self) -> None:
        """Close every subscription, ending their iterators."""
        for subs in list(self._subscribers.values()):
            for sub in list(subs.values()):
                sub.close()
