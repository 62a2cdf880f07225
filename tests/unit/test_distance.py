import unittest

import numpy as np

from vsearch_data_model.index_definition import DistanceMetric
from vsearch_db.indexing.vector.distance import to_float32_vector, prepare_vector, batch_distance
from vsearch_exception_model.exception import VectorDimensionMismatchException, NullOrZeroVectorException


class TestDistance(unittest.TestCase):

    def test_blob_is_read_as_little_endian_float32(self):
        blob = np.array([1.0, 2.5, -3.0], dtype='<f4').tobytes()
        np.testing.assert_array_equal(np.array([1.0, 2.5, -3.0], dtype=np.float32), to_float32_vector(blob))

    def test_blob_with_partial_float_rejected(self):
        with self.assertRaises(VectorDimensionMismatchException):
            to_float32_vector(b"\x00\x00\x80")

    def test_dimension_mismatch(self):
        with self.assertRaises(VectorDimensionMismatchException) as ctx:
            prepare_vector([1.0, 2.0, 3.0], 4, DistanceMetric.L2, index_name="idx")
        self.assertEqual(3, ctx.exception.provided_dim)
        self.assertEqual(4, ctx.exception.expected_dim)

    def test_empty_and_non_finite_vectors_rejected(self):
        with self.assertRaises(NullOrZeroVectorException):
            prepare_vector([], 2, DistanceMetric.L2)
        with self.assertRaises(NullOrZeroVectorException):
            prepare_vector([float("nan"), 1.0], 2, DistanceMetric.L2)

    def test_cosine_normalizes_and_rejects_zero(self):
        v = prepare_vector([3.0, 4.0], 2, DistanceMetric.COSINE)
        self.assertAlmostEqual(1.0, float(np.linalg.norm(v)), places=6)
        with self.assertRaises(NullOrZeroVectorException):
            prepare_vector([0.0, 0.0], 2, DistanceMetric.COSINE)

    def test_l2_is_squared(self):
        query = prepare_vector([0.0, 0.0], 2, DistanceMetric.L2)
        matrix = np.array([[3.0, 4.0], [1.0, 0.0]], dtype=np.float32)
        np.testing.assert_allclose([25.0, 1.0], batch_distance(DistanceMetric.L2, query, matrix))

    def test_cosine_and_ip_distances(self):
        a = prepare_vector([1.0, 0.0], 2, DistanceMetric.COSINE)
        rows = np.stack([prepare_vector([0.0, 2.0], 2, DistanceMetric.COSINE),
                         prepare_vector([5.0, 0.0], 2, DistanceMetric.COSINE)])
        np.testing.assert_allclose([1.0, 0.0], batch_distance(DistanceMetric.COSINE, a, rows), atol=1e-6)

        q = prepare_vector([1.0, 2.0], 2, DistanceMetric.IP)
        rows = np.array([[1.0, 1.0], [0.0, 0.0]], dtype=np.float32)
        np.testing.assert_allclose([-2.0, 1.0], batch_distance(DistanceMetric.IP, q, rows), atol=1e-6)


if __name__ == '__main__':
    unittest.main()
