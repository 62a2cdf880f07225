import threading
from contextlib import contextmanager
from typing import Dict, Optional


class ReentrantRWLock:
    """
    A reentrant reader-writer lock with context manager support.

    Readers share the lock; a writer excludes everyone else. A thread holding
    the write side may take either side again, and a sole reader may upgrade.
    Waiting writers block new readers from other threads so a steady stream of
    queries can't starve an index commit.
    """

    def __init__(self):
        self._cond = threading.Condition()
        self._writer: Optional[int] = None
        self._writer_depth: int = 0
        self._readers: Dict[int, int] = {}
        self._writers_waiting: int = 0

    def acquire_read(self) -> None:
        me = threading.get_ident()
        with self._cond:
            if self._writer == me or me in self._readers:
                self._readers[me] = self._readers.get(me, 0) + 1
                return

            while self._writer is not None or self._writers_waiting:
                self._cond.wait()

            self._readers[me] = 1

    def release_read(self) -> None:
        me = threading.get_ident()
        with self._cond:
            count = self._readers.get(me, 0)
            if count == 0:
                raise RuntimeError("Cannot release read lock: not held")
            if count == 1:
                self._readers.pop(me)
            else:
                self._readers[me] = count - 1

            if not self._readers or len(self._readers) == 1:
                self._cond.notify_all()

    def _sole_reader(self, me: int) -> bool:
        return not self._readers or (len(self._readers) == 1 and me in self._readers)

    def acquire_write(self) -> None:
        me = threading.get_ident()
        with self._cond:
            if self._writer == me:
                self._writer_depth += 1
                return

            self._writers_waiting += 1
            try:
                while self._writer is not None or not self._sole_reader(me):
                    self._cond.wait()
            finally:
                self._writers_waiting -= 1

            self._writer = me
            self._writer_depth = 1

    def release_write(self) -> None:
        me = threading.get_ident()
        with self._cond:
            if self._writer != me:
                raise RuntimeError("Cannot release write lock: not the owner")

            self._writer_depth -= 1
            if self._writer_depth == 0:
                self._writer = None
                self._cond.notify_all()

    @contextmanager
    def read_lock(self):
        self.acquire_read()
        try:
            yield self
        finally:
            self.release_read()

    @contextmanager
    def write_lock(self):
        self.acquire_write()
        try:
            yield self
        finally:
            self.release_write()
