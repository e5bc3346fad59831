"""Bounded, insertion-ordered collections with FIFO eviction."""

from __future__ import annotations

from collections import OrderedDict
from typing import Generic, TypeVar

V = TypeVar("V")


class DedupeWindow:
    """A set of recently seen keys holding at most ``capacity`` entries.

    When full, the oldest inserted key is evicted. Re-adding a key that is
    still present does not refresh its position.
    """

    def __init__(self, capacity: int) -> None:
        if capacity < 1:
            raise ValueError("capacity must be >= 1")
        self._capacity = capacity
        self._keys: OrderedDict[str, None] = OrderedDict()

    @property
    def capacity(self) -> int:
        return self._capacity

    def __len__(self) -> int:
        return len(self._keys)

    def __contains__(self, key: object) -> bool:
        return key in self._keys

    def add(self, key: str) -> bool:
        """Insert ``key``; return False if it was already present."""
        if key in self._keys:
            return False
        self._keys[key] = None
        while len(self._keys) > self._capacity:
            self._keys.popitem(last=False)
        return True

    def discard(self, key: str) -> None:
        self._keys.pop(key, None)

    def clear(self) -> None:
        self._keys.clear()


class BoundedCache(Generic[V]):
    """A mapping holding at most ``capacity`` entries, evicting the oldest."""

    def __init__(self, capacity: int) -> None:
        if capacity < 1:
            raise ValueError("capacity must be >= 1")
        self._capacity = capacity
        self._items: OrderedDict[str, V] = OrderedDict()

    def __len__(self) -> int:
        return len(self._items)

    def __contains__(self, key: object) -> bool:
        return key in self._items

    def get(self, key: str) -> V | None:
        return self._items.get(key)

    def put(self, key: str, value: V) -> None:
        if key in self._items:
            self._items[key] = value
            return
        self._items[key] = value
        while len(self._items) > self._capacity:
            self._items.popitem(last=False)

    def values(self) -> list[V]:
        """Values in insertion order (oldest first)."""
        return list(self._items.values())

    def clear(self) -> None:
        self._items.clear()
