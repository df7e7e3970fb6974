"""Store abstraction for process-wide mutable state (job cache, rate limits)."""
from __future__ import annotations

import abc
import asyncio
from collections import OrderedDict
from typing import Generic, List, Optional, TypeVar

K = TypeVar("K")
V = TypeVar("V")


class Store(abc.ABC, Generic[K, V]):
    """Key/value store with an optional capacity.

    Async so a shared external backing can replace the in-process one
    without changing callers.
    """

    @abc.abstractmethod
    async def get(self, key: K) -> Optional[V]:
        """Return the value stored under ``key`` or ``None``."""

    @abc.abstractmethod
    async def put(self, key: K, value: V) -> None:
        """Store ``value``; last writer wins."""

    @abc.abstractmethod
    async def delete(self, key: K) -> None:
        """Drop ``key`` if present."""

    @abc.abstractmethod
    async def evict_oldest_beyond_capacity(self) -> List[K]:
        """Evict the oldest entry while over capacity and return evicted keys."""


class MemoryStore(Store[K, V]):
    """In-process store ordered by insertion.

    When ``capacity`` is set, every ``put`` that pushes the store over it
    evicts the single oldest entry.
    """

    def __init__(self, capacity: Optional[int] = None) -> None:
        if capacity is not None and capacity < 1:
            raise ValueError("capacity must be positive")
        self.capacity = capacity
        self._items: "OrderedDict[K, V]" = OrderedDict()
        self._lock = asyncio.Lock()

    async def get(self, key: K) -> Optional[V]:
        return self._items.get(key)

    async def put(self, key: K, value: V) -> None:
        async with self._lock:
            # Re-inserting moves the key to the newest position.
            self._items.pop(key, None)
            self._items[key] = value
        await self.evict_oldest_beyond_capacity()

    async def delete(self, key: K) -> None:
        async with self._lock:
            self._items.pop(key, None)

    async def evict_oldest_beyond_capacity(self) -> List[K]:
        evicted: List[K] = []
        async with self._lock:
            if self.capacity is not None and len(self._items) > self.capacity:
                key, _ = self._items.popitem(last=False)
                evicted.append(key)
        return evicted

    def keys(self) -> List[K]:
        return list(self._items.keys())

    def __len__(self) -> int:
        return len(self._items)

    def __contains__(self, key: object) -> bool:
        return key in self._items
