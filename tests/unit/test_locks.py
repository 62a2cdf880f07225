import threading
import time
import unittest

from vsearch_db.core.lock.key_lock_manager import KeyLockManager
from vsearch_db.core.lock.locks import ReentrantRWLock


class TestReentrantRWLock(unittest.TestCase):

    def setUp(self):
        self.lock = ReentrantRWLock()

    def test_readers_share(self):
        inside = []
        barrier = threading.Barrier(3)

        def reader():
            with self.lock.read_lock():
                barrier.wait(timeout=2)
                inside.append(1)

        threads = [threading.Thread(target=reader) for _ in range(3)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=5)
        self.assertEqual(3, len(inside))

    def test_writer_excludes_readers(self):
        events = []
        self.lock.acquire_write()

        def reader():
            with self.lock.read_lock():
                events.append("read")

        t = threading.Thread(target=reader)
        t.start()
        time.sleep(0.05)
        events.append("write-done")
        self.lock.release_write()
        t.join(timeout=2)
        self.assertEqual(["write-done", "read"], events)

    def test_write_is_reentrant_and_may_read(self):
        with self.lock.write_lock():
            with self.lock.write_lock():
                with self.lock.read_lock():
                    pass
        # fully released: another thread can write
        acquired = []
        t = threading.Thread(target=lambda: (self.lock.acquire_write(), acquired.append(True), self.lock.release_write()))
        t.start()
        t.join(timeout=2)
        self.assertEqual([True], acquired)

    def test_sole_reader_can_upgrade(self):
        with self.lock.read_lock():
            with self.lock.write_lock():
                pass

    def test_release_without_holding_raises(self):
        with self.assertRaises(RuntimeError):
            self.lock.release_read()
        with self.assertRaises(RuntimeError):
            self.lock.release_write()


class TestKeyLockManager(unittest.TestCase):

    def test_same_key_serialized(self):
        manager = KeyLockManager()
        active = []
        overlaps = []

        def writer():
            with manager.locked("doc:1"):
                active.append(1)
                if len(active) > 1:
                    overlaps.append(True)
                time.sleep(0.01)
                active.pop()

        threads = [threading.Thread(target=writer) for _ in range(5)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=5)
        self.assertEqual([], overlaps)

    def test_different_keys_do_not_block(self):
        manager = KeyLockManager()
        entered = threading.Event()

        def other():
            with manager.locked("doc:2"):
                entered.set()

        with manager.locked("doc:1"):
            t = threading.Thread(target=other)
            t.start()
            self.assertTrue(entered.wait(timeout=2))
            t.join(timeout=2)

    def test_locks_are_discarded_after_use(self):
        manager = KeyLockManager()
        with manager.locked("a"):
            with manager.locked("b"):
                self.assertEqual(2, manager.active_keys())
        self.assertEqual(0, manager.active_keys())


if __name__ == '__main__':
    unittest.main()
