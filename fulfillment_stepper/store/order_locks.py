"""Per-order mutexes for the recorder critical section."""

from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import Iterator


class OrderLockRegistry:
    """Hands out one ``threading.Lock`` per order key.

    Two saves on the same order never interleave between reading the
    current stage and committing; saves on different orders run freely.
    """

    def __init__(self) -> None:
        self._locks: dict[str, threading.Lock] = {}
        self._registry_lock = threading.Lock()

    def lock_for(self, order_key: str) -> threading.Lock:
        with self._registry_lock:
            lock = self._locks.get(order_key)
            if lock is None:
                lock = threading.Lock()
                self._locks[order_key] = lock
            return lock

    @contextmanager
    def hold(self, order_key: str) -> Iterator[None]:
        lock = self.lock_for(order_key)
        with lock:
            yield
