import threading
from contextlib import contextmanager
from typing import Dict


class _KeyLock:
    __slots__ = ("lock", "holders")

    def __init__(self):
        self.lock = threading.RLock()
        self.holders = 0


class KeyLockManager:
    """
    Serializes writes per document key.

    Locks are created on demand and discarded once no thread holds or waits
    for them, so memory tracks the number of in-flight writes rather than the
    number of keys ever written. Writes to different keys never contend.
    """

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: Dict[str, _KeyLock] = {}

    @contextmanager
    def locked(self, key: str):
        with self._guard:
            entry = self._locks.get(key)
            if entry is None:
                entry = _KeyLock()
                self._locks[key] = entry
            entry.holders += 1

        entry.lock.acquire()
        try:
            yield
        finally:
            entry.lock.release()
            with self._guard:
                entry.holders -= 1
                if entry.holders == 0:
                    del self._locks[key]

    def active_keys(self) -> int:
        with self._guard:
            return len(self._locks)
