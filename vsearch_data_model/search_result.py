"""Data structures for search requests and responses."""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence


@dataclass
class SearchOptions:
    """Per-query options.

    Attributes:
        params: Values for ``$name`` placeholders in the query (vectors as float32
            blobs, sequences or numpy arrays; K and EF_RUNTIME as ints).
        sort_by: Field (or KNN score alias) to order results by.
        sort_ascending: Direction for ``sort_by``.
        offset: Number of ordered results to skip.
        limit: Maximum number of results to return after ``offset``.
        return_fields: Restrict returned fields to these names. None returns all
            indexed fields plus the score alias.
        no_content: Return keys and scores only.
        cancellation: Optional cancellation token checked during long scans.
        timeout_seconds: Optional deadline; overrides the engine default.
    """
    params: Dict[str, Any] = field(default_factory=dict)
    sort_by: Optional[str] = None
    sort_ascending: bool = True
    offset: int = 0
    limit: int = 10
    return_fields: Optional[Sequence[str]] = None
    no_content: bool = False
    cancellation: Any = None
    timeout_seconds: Optional[float] = None


@dataclass
class SearchHit:
    """A single matched document.

    ``score`` is the KNN distance for vector queries (lower is closer), the
    text relevance score for full-text queries (higher is better), or None for
    pure filter queries.
    """
    key: str
    fields: Dict[str, Any]
    score: Optional[float] = None


@dataclass
class SearchResult:
    """Ordered page of hits plus the total number of matches before paging."""
    total: int
    hits: List[SearchHit] = field(default_factory=list)

    @property
    def keys(self) -> List[str]:
        return [hit.key for hit in self.hits]

    def __len__(self):
        return len(self.hits)

    def __iter__(self):
        return iter(self.hits)
