"""Per-key mutual exclusion for conditional writes.

Each key (a product id, an order id, a job id) gets its own lock, so writes
against different records never wait on each other. Multiple keys are always
acquired in sorted order to rule out lock-order deadlocks.
"""

import threading
from collections.abc import Iterator
from contextlib import contextmanager


class KeyedLocks:
    """A registry of re-entrant locks addressed by string key."""

    def __init__(self, name: str) -> None:
        self.name = name
        self._guard = threading.Lock()
        self._locks: dict[str, threading.RLock] = {}

    def _lock_for(self, key: str) -> threading.RLock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.RLock()
                self._locks[key] = lock
            return lock

    @contextmanager
    def hold(self, *keys: str) -> Iterator[None]:
        """Hold the locks for all ``keys`` for the duration of the block."""
        locks = [self._lock_for(key) for key in sorted({str(k) for k in keys})]
        acquired = []
        try:
            for lock in locks:
                lock.acquire()
                acquired.append(lock)
            yield
        finally:
            for lock in reversed(acquired):
                lock.release()


stock_locks = KeyedLocks("stock")
order_locks = KeyedLocks("order")
job_locks = KeyedLocks("job")
key_locks = KeyedLocks("idempotency")
