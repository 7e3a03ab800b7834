"""Bounded queue of operations waiting for their due tick."""
from __future__ import annotations

import logging
from typing import List

from .models import PendingOperation

logger = logging.getLogger(__name__)


class PendingQueue:
    """Unordered list of scheduled operations, partitioned once per tick.

    Ordinary entries count against ``capacity``; when the queue is full the
    new entry is dropped and logged. Reserved entries (rollback reversions)
    are always accepted so a destructive edit can never lose its undo.
    """

    def __init__(self, capacity: int) -> None:
        self._capacity = max(8, capacity)
        self._items: List[PendingOperation] = []
        self._reserved: List[PendingOperation] = []
        self.dropped = 0

    @property
    def capacity(self) -> int:
        return self._capacity

    def resize(self, capacity: int) -> None:
        self._capacity = max(8, capacity)

    def __len__(self) -> int:
        return len(self._items) + len(self._reserved)

    def enqueue(self, operation: PendingOperation, reserved: bool = False) -> bool:
        if reserved:
            self._reserved.append(operation)
            return True
        if len(self._items) >= self._capacity:
            self.dropped += 1
            logger.warning(
                "Pending queue full (%s); dropping %s due at tick %s",
                self._capacity,
                operation.kind.value,
                operation.due_tick,
            )
            return False
        self._items.append(operation)
        return True

    def pop_due(self, now: int) -> List[PendingOperation]:
        """Remove and return every operation due at or before ``now``.

        Reserved entries come first, each group in insertion order.
        """

        due: List[PendingOperation] = []
        for bucket in (self._reserved, self._items):
            waiting = []
            for operation in bucket:
                (due if operation.due_tick <= now else waiting).append(operation)
            bucket[:] = waiting
        return due

    def snapshot(self) -> List[PendingOperation]:
        return list(self._reserved) + list(self._items)


__all__ = ["PendingQueue"]
