from typing import Any, Optional

import numpy as np

from vsearch_data_model.index_definition import DistanceMetric
from vsearch_exception_model.exception import NullOrZeroVectorException, VectorDimensionMismatchException


def to_float32_vector(vec: Any) -> np.ndarray:
    """
    Convert a float32 blob, a sequence of numbers or a numpy array into a 1-D
    float32 array. Blobs are read as little-endian float32, the layout hash
    documents carry vectors in.
    """
    if isinstance(vec, (bytes, bytearray, memoryview)):
        raw = bytes(vec)
        if len(raw) % 4 != 0:
            raise VectorDimensionMismatchException(
                f"Vector blob of {len(raw)} bytes is not a whole number of float32 values"
            )
        return np.frombuffer(raw, dtype='<f4').astype(np.float32)
    if isinstance(vec, np.ndarray):
        np_vec = vec.astype(np.float32)
    else:
        np_vec = np.asarray(vec, dtype=np.float32)
    return np_vec.flatten() if np_vec.ndim > 1 else np_vec


def prepare_vector(vec: Any, dim: int, metric: DistanceMetric,
                   record_id: Optional[str] = None, index_name: Optional[str] = None) -> np.ndarray:
    """
    Validate a vector against an index's dimension and bring it into the form
    the index stores: unit length for COSINE, unchanged otherwise.
    """
    np_vec = to_float32_vector(vec)
    if np_vec.size == 0:
        raise NullOrZeroVectorException(
            "Cannot index or query an empty vector; vector length must be > 0.",
            record_id=record_id, index_name=index_name
        )
    if np_vec.shape[0] != dim:
        raise VectorDimensionMismatchException(
            f"Vector dimension mismatch. Expected {dim}, got {np_vec.shape[0]}.",
            provided_dim=int(np_vec.shape[0]), expected_dim=dim, index_name=index_name
        )
    if not np.all(np.isfinite(np_vec)):
        raise NullOrZeroVectorException(
            "Vector contains NaN or infinite components.", record_id=record_id, index_name=index_name
        )
    if metric == DistanceMetric.COSINE:
        norm = float(np.linalg.norm(np_vec))
        if norm == 0.0:
            raise NullOrZeroVectorException(
                "Cosine distance is undefined for an all-zeros vector.",
                record_id=record_id, index_name=index_name
            )
        np_vec = np_vec / norm
    return np.ascontiguousarray(np_vec, dtype=np.float32)


def batch_distance(metric: DistanceMetric, query: np.ndarray, matrix: np.ndarray) -> np.ndarray:
    """
    Distances from ``query`` to each row of ``matrix``; both already prepared.
    """
    if matrix.shape[0] == 0:
        return np.empty(0, dtype=np.float32)
    if metric == DistanceMetric.L2:
        diff = matrix - query
        return np.einsum('ij,ij->i', diff, diff)
    # COSINE rows and query are unit length, so both reduce to 1 - dot
    return 1.0 - matrix @ query
