import threading
import unittest

import numpy as np

from vsearch_data_model.index_definition import DistanceMetric
from vsearch_db.core.cancellation import CancellationToken
from vsearch_db.indexing.vector.hnsw import HNSW
from vsearch_exception_model.exception import (
    VectorDimensionMismatchException, UnsupportedMetricException, InvalidFieldSpecException,
    OperationCancelledException
)


class _GatedToken(CancellationToken):
    """Parks the first check() until released, holding a compaction mid-build."""

    def __init__(self):
        super().__init__()
        self.entered = threading.Event()
        self.release = threading.Event()

    def check(self):
        self.entered.set()
        self.release.wait(10)
        super().check()


def _add(index, key, vector):
    staged = index.stage(key, vector)
    index.commit(staged)
    return staged


class TestHNSW(unittest.TestCase):

    def setUp(self):
        self.index = HNSW(dim=2, metric=DistanceMetric.L2, max_conn_per_element=4, ef_construction=32, seed=7)
        self.points = {f"p{i}": [float(i), float(i % 3)] for i in range(20)}
        for key, vec in self.points.items():
            _add(self.index, key, vec)

    def test_constructor_rejects_bad_parameters(self):
        with self.assertRaises(UnsupportedMetricException):
            HNSW(dim=2, metric="HAMMING")
        with self.assertRaises(InvalidFieldSpecException):
            HNSW(dim=0)
        with self.assertRaises(InvalidFieldSpecException):
            HNSW(dim=2, max_conn_per_element=1)

    def test_nearest_neighbors_sorted_by_distance(self):
        results = self.index.search([5.0, 2.0], 3)
        self.assertEqual("p5", results[0][0])
        self.assertAlmostEqual(0.0, results[0][1])
        distances = [d for _, d in results]
        self.assertEqual(sorted(distances), distances)

    def test_matches_brute_force_on_small_graph(self):
        rng = np.random.default_rng(0)
        index = HNSW(dim=8, metric=DistanceMetric.COSINE, seed=1)
        data = {f"k{i:03d}": rng.normal(size=8).astype(np.float32) for i in range(200)}
        for key, vec in data.items():
            _add(index, key, vec)
        query = rng.normal(size=8).astype(np.float32)
        qn = query / np.linalg.norm(query)
        expected = sorted(data, key=lambda k: (1.0 - float(np.dot(data[k] / np.linalg.norm(data[k]), qn)), k))[:5]
        found = [k for k, _ in index.search(query, 5, ef_runtime=200)]
        self.assertEqual(set(expected), set(found))

    def test_staged_vectors_are_invisible(self):
        staged = self.index.stage("new", [100.0, 100.0])
        self.assertNotIn("new", [k for k, _ in self.index.search([100.0, 100.0], 5)])
        self.index.discard(staged)
        self.assertNotIn("new", self.index.get_ids())

    def test_dimension_mismatch_on_stage_and_search(self):
        with self.assertRaises(VectorDimensionMismatchException):
            self.index.stage("bad", [1.0, 2.0, 3.0])
        with self.assertRaises(VectorDimensionMismatchException):
            self.index.search([1.0], 2)

    def test_update_replaces_vector(self):
        _add(self.index, "p0", [50.0, 50.0])
        self.assertEqual(20, len(self.index))
        self.assertEqual("p0", self.index.search([50.0, 50.0], 1)[0][0])
        self.assertNotEqual("p0", self.index.search([0.0, 0.0], 1)[0][0])

    def test_revert_restores_previous_vector(self):
        staged = _add(self.index, "p0", [50.0, 50.0])
        self.index.revert(staged)
        self.assertEqual("p0", self.index.search([0.0, 0.0], 1)[0][0])
        self.assertEqual(20, len(self.index))

    def test_delete_and_restore(self):
        token = self.index.delete("p3")
        self.assertIsNotNone(token)
        self.assertNotIn("p3", [k for k, _ in self.index.search([3.0, 0.0], 20)])
        self.index.restore("p3", token)
        self.assertEqual("p3", self.index.search([3.0, 0.0], 1)[0][0])
        self.assertIsNone(self.index.delete("missing"))

    def test_filtered_search_only_returns_allowed(self):
        allowed = {"p1", "p2", "p18"}
        results = self.index.search([18.0, 0.0], 5, allowed_keys=allowed)
        self.assertEqual(["p18", "p2", "p1"], [k for k, _ in results])

    def test_filtered_search_through_graph(self):
        index = HNSW(dim=2, seed=3, flat_filter_threshold=0)
        for i in range(50):
            _add(index, f"d{i:02d}", [float(i), 0.0])
        allowed = {f"d{i:02d}" for i in range(0, 50, 2)}
        results = index.search([25.0, 0.0], 3, allowed_keys=allowed, ef_runtime=50)
        self.assertEqual(["d24", "d26", "d22"], [k for k, _ in results])
        self.assertTrue(all(k in allowed for k, _ in results))

    def test_empty_filter_and_zero_k(self):
        self.assertEqual([], self.index.search([1.0, 1.0], 3, allowed_keys=set()))
        self.assertEqual([], self.index.search([1.0, 1.0], 0))
        self.assertEqual([], HNSW(dim=2).search([1.0, 1.0], 3))

    def test_ties_broken_by_key(self):
        index = HNSW(dim=2, seed=5)
        for key in ("c", "a", "b"):
            _add(index, key, [1.0, 1.0])
        self.assertEqual(["a", "b", "c"], [k for k, _ in index.search([1.0, 1.0], 3)])

    def test_compaction_drops_tombstones(self):
        for i in range(15):
            self.index.delete(f"p{i}")
        self.index.compact()
        info = self.index.info()
        self.assertEqual(5, info["num_vectors"])
        self.assertEqual(0, info["num_tombstones"])
        self.assertEqual({f"p{i}" for i in range(15, 20)}, self.index.get_ids())
        self.assertEqual("p17", self.index.search([17.0, 2.0], 1)[0][0])

    def test_commit_after_compaction_reinserts(self):
        staged = self.index.stage("late", [200.0, 0.0])
        self.index.compact()
        self.index.commit(staged)
        self.assertEqual("late", self.index.search([200.0, 0.0], 1)[0][0])

    def test_compaction_does_not_block_readers_or_writers(self):
        for i in range(15):
            self.index.delete(f"p{i}")
        token = _GatedToken()
        worker = threading.Thread(target=self.index.compact, args=(token,))
        worker.start()
        self.assertTrue(token.entered.wait(5))

        # still building: the old graph answers queries and takes writes
        self.assertEqual("p17", self.index.search([17.0, 2.0], 1)[0][0])
        _add(self.index, "late", [300.0, 0.0])
        _add(self.index, "p16", [400.0, 0.0])
        self.index.delete("p19")
        self.assertTrue(worker.is_alive())

        token.release.set()
        worker.join(5)
        self.assertFalse(worker.is_alive())
        self.assertEqual({"p15", "p16", "p17", "p18", "late"}, self.index.get_ids())
        self.assertEqual("late", self.index.search([300.0, 0.0], 1)[0][0])
        self.assertEqual("p16", self.index.search([400.0, 0.0], 1)[0][0])
        self.assertNotIn("p19", [k for k, _ in self.index.search([19.0, 1.0], 5)])
        self.assertEqual(2, self.index.info()["num_tombstones"])

    def test_revert_and_restore_across_compaction(self):
        staged = _add(self.index, "p0", [50.0, 50.0])
        token = self.index.delete("p1")
        self.index.compact()
        self.index.revert(staged)
        self.index.restore("p1", token)
        self.assertEqual("p0", self.index.search([0.0, 0.0], 1)[0][0])
        self.assertEqual("p1", self.index.search([1.0, 1.0], 1)[0][0])
        self.assertEqual(20, len(self.index))

    def test_cancelled_compaction_keeps_graph(self):
        token = CancellationToken()
        token.cancel()
        with self.assertRaises(OperationCancelledException):
            self.index.compact(token)
        self.assertEqual(20, len(self.index))
        self.assertEqual("p4", self.index.search([4.0, 1.0], 1)[0][0])

    def test_needs_compaction_threshold(self):
        index = HNSW(dim=2, seed=2, tombstone_compaction_ratio=0.5)
        for i in range(100):
            _add(index, f"k{i}", [float(i), 1.0])
        for i in range(70):
            index.delete(f"k{i}")
        self.assertTrue(index.needs_compaction())
        self.assertFalse(self.index.needs_compaction())

    def test_concurrent_stage_and_search(self):
        index = HNSW(dim=2, seed=11)
        errors = []

        def writer(offset):
            try:
                for i in range(30):
                    _add(index, f"w{offset}-{i}", [float(offset), float(i)])
            except Exception as e:
                errors.append(e)

        def reader():
            try:
                for _ in range(30):
                    index.search([1.0, 1.0], 3)
            except Exception as e:
                errors.append(e)

        threads = [threading.Thread(target=writer, args=(o,)) for o in range(4)]
        threads.append(threading.Thread(target=reader))
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=30)
        self.assertEqual([], errors)
        self.assertEqual(120, len(index))


if __name__ == '__main__':
    unittest.main()
