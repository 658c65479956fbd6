"""
Per-key mutual exclusion: one lock per key, created on demand and dropped
once no thread holds or waits for it.
"""
import threading
from contextlib import contextmanager
from typing import Dict, Generator, Hashable, List


class KeyedLock:
    def __init__(self):
        self._guard = threading.Lock()
        self._locks: Dict[Hashable, threading.Lock] = {}
        self._waiters: Dict[Hashable, int] = {}

    @contextmanager
    def hold(self, key: Hashable) -> Generator[None, None, None]:
        """Block until key is free, then hold it for the duration of the with block."""
        with self._guard:
            lock = self._locks.setdefault(key, threading.Lock())
            self._waiters[key] = self._waiters.get(key, 0) + 1
        try:
            with lock:
                yield
        finally:
            with self._guard:
                self._waiters[key] -= 1
                if self._waiters[key] == 0:
                    del self._waiters[key]
                    del self._locks[key]

    def active_keys(self) -> List[Hashable]:
        with self._guard:
            return list(self._locks.keys())
