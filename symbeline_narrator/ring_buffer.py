"""Fixed-capacity ring buffer.

Used for the World State event history and the coherence log: pushing onto a
full buffer silently overwrites the oldest item.
"""

from __future__ import annotations

from collections.abc import Iterator
from typing import Generic, TypeVar

T = TypeVar("T")


class RingBuffer(Generic[T]):
    def __init__(self, capacity: int) -> None:
        if capacity <= 0:
            raise ValueError("capacity must be positive")
        self._capacity = capacity
        self._items: list[T | None] = [None] * capacity
        self._cursor = 0  # next write position
        self._count = 0

    @property
    def capacity(self) -> int:
        return self._capacity

    def __len__(self) -> int:
        return self._count

    def push(self, item: T) -> None:
        self._items[self._cursor] = item
        self._cursor = (self._cursor + 1) % self._capacity
        if self._count < self._capacity:
            self._count += 1

    def newest(self, n: int | None = None) -> list[T]:
        """Up to `n` items, newest first."""
        limit = self._count if n is None else max(0, min(n, self._count))
        result: list[T] = []
        for i in range(limit):
            idx = (self._cursor - 1 - i) % self._capacity
            result.append(self._items[idx])  # type: ignore[arg-type]
        return result

    def __iter__(self) -> Iterator[T]:
        """Oldest first."""
        return iter(reversed(self.newest()))

    def clear(self) -> None:
        self._items = [None] * self._capacity
        self._cursor = 0
        self._count = 0
