"""
Bounded reordering queue.

Producers hand in items tagged with a dense index (0, 1, 2, ...) in any order;
the consumer takes them strictly in index order. A producer whose index is
`capacity` or more ahead of the next index to be taken blocks until the
consumer catches up, which bounds how much finished-but-undrained output is
held at once.

`close()` wakes every waiter: blocked producers get QueueClosed, and the
consumer gets QueueClosed as soon as it would otherwise have to wait.
"""

from __future__ import annotations

import threading
from typing import Any, Dict


class QueueClosed(Exception):
    """The queue was closed while waiting on it."""


class ReorderingQueue:
    def __init__(self, capacity: int) -> None:
        if capacity < 1:
            raise ValueError("capacity must be >= 1")
        self._capacity = int(capacity)
        self._items: Dict[int, Any] = {}
        self._next = 0
        self._closed = False
        self._cond = threading.Condition()

    def put(self, index: int, item: Any) -> None:
        with self._cond:
            while not self._closed and index - self._next >= self._capacity:
                self._cond.wait()
            if self._closed:
                raise QueueClosed(f"queue closed before index {index} was put")
            if index < self._next or index in self._items:
                raise ValueError(f"index {index} already put")
            self._items[index] = item
            self._cond.notify_all()

    def take(self) -> Any:
        with self._cond:
            while not self._closed and self._next not in self._items:
                self._cond.wait()
            if self._closed:
                raise QueueClosed(f"queue closed while waiting for index {self._next}")
            item = self._items.pop(self._next)
            self._next += 1
            self._cond.notify_all()
            return item

    def close(self) -> None:
        with self._cond:
            self._closed = True
            self._cond.notify_all()

    def drain_pending(self) -> Dict[int, Any]:
        """Remove and return items that were put but never taken."""
        with self._cond:
            pending, self._items = self._items, {}
            return pending

    def __len__(self) -> int:
        with self._cond:
            return len(self._items)
