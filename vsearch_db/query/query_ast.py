"""Parsed form of a search query."""
from dataclasses import dataclass, field
from typing import Optional, Tuple, Union


@dataclass(frozen=True)
class MatchAll:
    position: int = 0


@dataclass(frozen=True)
class MatchNone:
    """Matches nothing; what a query made only of stopwords reduces to."""
    position: int = 0


@dataclass(frozen=True)
class TermNode:
    """A full-text token, optionally a prefix, scoped to ``fields`` (None = every TEXT field)."""
    token: str
    fields: Optional[Tuple[str, ...]] = None
    prefix: bool = False
    position: int = 0


@dataclass(frozen=True)
class TagNode:
    field: str
    tags: Tuple[str, ...]
    position: int = 0


@dataclass(frozen=True)
class NumericRangeNode:
    field: str
    low: float
    high: float
    low_exclusive: bool = False
    high_exclusive: bool = False
    position: int = 0


@dataclass(frozen=True)
class GeoRadiusNode:
    field: str
    lon: float
    lat: float
    radius: float
    unit: str
    position: int = 0


@dataclass(frozen=True)
class AndNode:
    children: Tuple["QueryNode", ...]
    position: int = 0


@dataclass(frozen=True)
class OrNode:
    children: Tuple["QueryNode", ...]
    position: int = 0


@dataclass(frozen=True)
class NotNode:
    child: "QueryNode"
    position: int = 0


QueryNode = Union[MatchAll, MatchNone, TermNode, TagNode, NumericRangeNode, GeoRadiusNode, AndNode, OrNode, NotNode]


@dataclass(frozen=True)
class Param:
    """A ``$name`` placeholder resolved from the query parameters."""
    name: str
    position: int = 0


@dataclass(frozen=True)
class KnnClause:
    k: Union[int, Param]
    field: str
    vector: Param
    ef_runtime: Optional[Union[int, Param]] = None
    alias: Optional[str] = None
    position: int = 0

    @property
    def score_alias(self) -> str:
        return self.alias or f"__{self.field}_score"


@dataclass(frozen=True)
class ParsedQuery:
    filter: QueryNode = field(default_factory=MatchAll)
    knn: Optional[KnnClause] = None
    text: str = ""

    @property
    def is_match_all(self) -> bool:
        return isinstance(self.filter, MatchAll)


def positive_terms(node: QueryNode):
    """Yield the TermNodes that contribute to relevance (those not under a NOT)."""
    if isinstance(node, TermNode):
        yield node
    elif isinstance(node, (AndNode, OrNode)):
        for child in node.children:
            yield from positive_terms(child)
