"""Short lived cache of resolved actors keyed by external identity id."""

from __future__ import annotations

import asyncio
import logging
import time
from collections import OrderedDict
from typing import Awaitable, Callable

from .roles import Actor

logger = logging.getLogger(__name__)

ActorLoader = Callable[[], Awaitable[Actor | None]]


class RoleCache:
    """Bounded TTL cache used to avoid a user lookup on every request.

    Entries expire ``ttl_seconds`` after they were stored. When the cache is
    full the least recently used entry is evicted. Lookups that resolve to no
    user are not cached, so a freshly provisioned account is visible on the
    next request.
    """

    def __init__(
        self,
        *,
        ttl_seconds: float = 30.0,
        max_entries: int = 1024,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        if max_entries <= 0:
            raise ValueError("max_entries must be positive")
        self._ttl = ttl_seconds
        self._max_entries = max_entries
        self._clock = clock
        self._entries: OrderedDict[str, tuple[Actor, float]] = OrderedDict()
        self._lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, key: str) -> Actor | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        actor, expires_at = entry
        if expires_at <= self._clock():
            del self._entries[key]
            return None
        self._entries.move_to_end(key)
        return actor

    def set(self, key: str, actor: Actor) -> None:
        self._entries[key] = (actor, self._clock() + self._ttl)
        self._entries.move_to_end(key)
        while len(self._entries) > self._max_entries:
            evicted, _ = self._entries.popitem(last=False)
            logger.debug("Evicted role cache entry for %s", evicted)

    async def get_or_load(self, key: str, loader: ActorLoader) -> Actor | None:
        cached = self.get(key)
        if cached is not None:
            return cached
        async with self._lock:
            cached = self.get(key)
            if cached is not None:
                return cached
            actor = await loader()
            if actor is not None:
                self.set(key, actor)
            return actor

    def invalidate(self, key: str) -> None:
        if self._entries.pop(key, None) is not None:
            logger.debug("Invalidated role cache entry for %s", key)

    def clear(self) -> None:
        self._entries.clear()
