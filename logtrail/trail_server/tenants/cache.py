"""
Read-through cache of Application records.

Only the Application record is cached. Access decisions and team
membership are never cached; see access/resolver.py.

Invariants:
    - A cached entry is at most ``ttl_seconds`` old
    - Any registry write to an application invalidates its entry
    - Misses (unknown ids) are not cached, so a newly created
      application is visible immediately
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import OrderedDict
from collections.abc import Awaitable, Callable

from .models import Application

logger = logging.getLogger(__name__)


class ApplicationCache:
    """TTL + LRU cache in front of an application loader.

    Example:
        >>> cache = ApplicationCache(store.get_application, ttl_seconds=30)
        >>> app = await cache.get("b1c4...")
        >>> cache.invalidate("b1c4...")
    """

    def __init__(
        self,
        loader: Callable[[str], Awaitable[Application | None]],
        ttl_seconds: float = 30.0,
        max_size: int = 10_000,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._loader = loader
        self.ttl_seconds = ttl_seconds
        self.max_size = max_size
        self._clock = clock
        self._entries: OrderedDict[str, tuple[float, Application]] = OrderedDict()
        self._lock = asyncio.Lock()
        self.hits = 0
        self.misses = 0

    async def get(self, application_id: str) -> Application | None:
        """Return the application, loading it on miss or expiry."""
        now = self._clock()
        async with self._lock:
            entry = self._entries.get(application_id)
            if entry is not None:
                stored_at, app = entry
                if now - stored_at < self.ttl_seconds:
                    self._entries.move_to_end(application_id)
                    self.hits += 1
                    return app
                del self._entries[application_id]

        self.misses += 1
        app = await self._loader(application_id)
        if app is not None:
            self.put(app)
        return app

    def put(self, app: Application) -> None:
        if self.ttl_seconds <= 0:
            return
        self._entries[app.id] = (self._clock(), app)
        self._entries.move_to_end(app.id)
        while len(self._entries) > self.max_size:
            self._entries.popitem(last=False)

    def invalidate(self, application_id: str) -> None:
        """Drop a cached entry. Safe to call for ids that are not cached."""
        if self._entries.pop(application_id, None) is not None:
            logger.debug(f"Invalidated cached application {application_id}")

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)
