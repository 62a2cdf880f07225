from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import List, Tuple, Optional, Set, Any

import numpy as np

from vsearch_data_model.index_definition import DistanceMetric
from vsearch_db.core.cancellation import CancellationToken, NEVER_CANCELLED


@dataclass
class StagedVector:
    """
    A vector accepted by an index but not yet visible to queries.

    ``previous_id`` and ``previous_vector`` are filled in by ``commit`` so the
    commit can be reverted.
    """
    key: str
    vector: np.ndarray
    node_id: Optional[int] = None
    generation: int = 0
    previous_id: Optional[int] = None
    previous_vector: Optional[np.ndarray] = None
    committed: bool = False


class VectorIndex(ABC):
    """
    Abstract vector index with two-phase writes and pre-filtered search.

    Writers ``stage`` a vector (validation plus any expensive structural work),
    then ``commit`` it to make it visible atomically with the document's other
    index updates, or ``discard`` it. Distances are lower-is-closer.
    """

    dim: int
    metric: DistanceMetric

    @abstractmethod
    def stage(self, key: str, vector: Any) -> StagedVector:
        """Validate and stage ``vector`` for ``key``. Raises on dimension mismatch."""
        ...

    @abstractmethod
    def commit(self, staged: StagedVector) -> None:
        """Make a staged vector the live vector for its key."""
        ...

    @abstractmethod
    def revert(self, staged: StagedVector) -> None:
        """Undo ``commit``: restore whichever vector was live before."""
        ...

    @abstractmethod
    def discard(self, staged: StagedVector) -> None:
        """Abandon an uncommitted staged vector."""
        ...

    @abstractmethod
    def delete(self, key: str) -> Optional[Any]:
        """Hide the live vector for ``key``. Returns a token accepted by ``restore``."""
        ...

    @abstractmethod
    def restore(self, key: str, token: Any) -> None:
        """Undo ``delete``."""
        ...

    @abstractmethod
    def search(self, query: Any, k: int,
               allowed_keys: Optional[Set[str]] = None,
               ef_runtime: Optional[int] = None,
               cancellation: CancellationToken = NEVER_CANCELLED) -> List[Tuple[str, float]]:
        """
        Return up to ``k`` ``(key, distance)`` pairs, closest first, ties by key.

        With ``allowed_keys`` only those keys are eligible (pre-filtering).
        """
        ...

    @abstractmethod
    def get_ids(self) -> Set[str]:
        ...

    @abstractmethod
    def __len__(self) -> int:
        ...

    def needs_compaction(self) -> bool:
        return False

    def compact(self, cancellation: CancellationToken = NEVER_CANCELLED) -> None:
        return None
