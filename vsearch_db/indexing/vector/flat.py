import logging
import threading
from typing import Dict, List, Tuple, Optional, Any, Set

import numpy as np

from vsearch_data_model.index_definition import DistanceMetric
from vsearch_db.core.cancellation import CancellationToken, NEVER_CANCELLED
from vsearch_db.core.interface.vector_index_interface import VectorIndex, StagedVector
from vsearch_db.indexing.vector.distance import prepare_vector, batch_distance
from vsearch_exception_model.exception import UnsupportedMetricException, InvalidFieldSpecException

logger = logging.getLogger(__name__)

_SCAN_CHUNK = 4096


class FlatIndex(VectorIndex):
    """
    Brute-force vector index. Every query scans all live vectors, so results
    are always the exact top-K.
    """

    def __init__(self, dim: int, metric: DistanceMetric = DistanceMetric.L2, index_name: Optional[str] = None):
        parsed = DistanceMetric.parse(metric)
        if parsed is None:
            raise UnsupportedMetricException("Metric value not supported.", metric,
                                             {m.value for m in DistanceMetric})
        if dim is None or int(dim) <= 0:
            raise InvalidFieldSpecException(f"Vector dimension must be positive, got {dim}",
                                            index_name=index_name)
        self.dim = int(dim)
        self.metric = parsed
        self._index_name = index_name
        self._vectors: Dict[str, np.ndarray] = {}
        self._lock = threading.RLock()

    def stage(self, key: str, vector: Any) -> StagedVector:
        np_vec = prepare_vector(vector, self.dim, self.metric, record_id=key, index_name=self._index_name)
        return StagedVector(key=key, vector=np_vec)

    def commit(self, staged: StagedVector) -> None:
        with self._lock:
            staged.previous_id = self._vectors.get(staged.key)
            self._vectors[staged.key] = staged.vector
            staged.committed = True

    def revert(self, staged: StagedVector) -> None:
        with self._lock:
            if not staged.committed:
                return
            if staged.previous_id is not None:
                self._vectors[staged.key] = staged.previous_id
            else:
                self._vectors.pop(staged.key, None)
            staged.committed = False

    def discard(self, staged: StagedVector) -> None:
        return None

    def delete(self, key: str) -> Optional[np.ndarray]:
        with self._lock:
            return self._vectors.pop(key, None)

    def restore(self, key: str, token: Any) -> None:
        if token is None:
            return
        with self._lock:
            self._vectors[key] = token

    def search(self, query: Any, k: int,
               allowed_keys: Optional[Set[str]] = None,
               ef_runtime: Optional[int] = None,
               cancellation: CancellationToken = NEVER_CANCELLED) -> List[Tuple[str, float]]:
        np_query = prepare_vector(query, self.dim, self.metric, index_name=self._index_name)
        if k <= 0:
            return []
        with self._lock:
            if allowed_keys is None:
                keys = sorted(self._vectors)
            else:
                keys = sorted(key for key in allowed_keys if key in self._vectors)
            rows = [self._vectors[key] for key in keys]

        results: List[Tuple[str, float]] = []
        for start in range(0, len(keys), _SCAN_CHUNK):
            cancellation.check()
            matrix = np.vstack(rows[start:start + _SCAN_CHUNK])
            dists = batch_distance(self.metric, np_query, matrix)
            results.extend(zip(keys[start:start + _SCAN_CHUNK], (float(d) for d in dists)))
        results.sort(key=lambda r: (r[1], r[0]))
        return results[:k]

    def get_ids(self) -> Set[str]:
        with self._lock:
            return set(self._vectors)

    def __len__(self) -> int:
        return len(self._vectors)

    def info(self) -> dict:
        return {
            'algorithm': 'FLAT',
            'dim': self.dim,
            'distance_metric': self.metric.value,
            'num_vectors': len(self._vectors),
        }
