"""
Per-record locks.

Turns and negotiation actions on the same service request are serialized on a
lock keyed by record id; different records never contend. Locks are re-entrant
so the coordinator can hold a record's lock while the finalizer takes it again
on the same thread.

Each entry counts its holders and waiters and is dropped when the count falls
to zero, so the registry only holds records that are in use.
"""

from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import Dict, Iterator, List


class RecordLocks:
    def __init__(self) -> None:
        self._guard = threading.Lock()
        # record id -> [lock, holders + waiters]
        self._locks: Dict[str, List] = {}

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)

    def _checkout(self, record_id: str) -> threading.RLock:
        with self._guard:
            entry = self._locks.get(record_id)
            if entry is None:
                entry = [threading.RLock(), 0]
                self._locks[record_id] = entry
            entry[1] += 1
            return entry[0]

    def _checkin(self, record_id: str) -> None:
        # caller holds self._guard
        entry = self._locks[record_id]
        entry[1] -= 1
        if entry[1] == 0:
            del self._locks[record_id]

    def acquire(self, record_id: str, *, blocking: bool = True) -> bool:
        lock = self._checkout(record_id)
        if lock.acquire(blocking=blocking):
            return True
        with self._guard:
            self._checkin(record_id)
        return False

    def release(self, record_id: str) -> None:
        with self._guard:
            entry = self._locks.get(record_id)
            if entry is None:
                raise RuntimeError(f"release of unheld record lock {record_id}")
            entry[0].release()
            self._checkin(record_id)

    @contextmanager
    def hold(self, record_id: str) -> Iterator[None]:
        self.acquire(record_id)
        try:
            yield
        finally:
            self.release(record_id)


# Process-wide registry shared by the coordinator, finalizer and negotiation workflow
RECORD_LOCKS = RecordLocks()
