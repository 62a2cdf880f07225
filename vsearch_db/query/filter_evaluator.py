from typing import Set

from vsearch_data_model.field_values import FieldType
from vsearch_db.core.cancellation import CancellationToken, NEVER_CANCELLED
from vsearch_db.query.query_ast import (
    QueryNode, MatchAll, MatchNone, TermNode, TagNode, NumericRangeNode, GeoRadiusNode, AndNode, OrNode, NotNode
)
from vsearch_exception_model.exception import MalformedQueryException


class FilterEvaluator:
    """
    Resolves a query tree to the set of matching keys of one index.

    The caller holds the read side of the index's commit lock, so every
    sub-index answers from the same committed state.
    """

    def __init__(self, search_index, query_text: str = "",
                 cancellation: CancellationToken = NEVER_CANCELLED):
        self._index = search_index
        self._definition = search_index.definition
        self._query_text = query_text
        self._cancellation = cancellation
        self._universe = None

    def evaluate(self, node: QueryNode) -> Set[str]:
        self._cancellation.check()
        if isinstance(node, MatchAll):
            return set(self._all_keys())
        if isinstance(node, MatchNone):
            return set()
        if isinstance(node, TermNode):
            return self._evaluate_term(node)
        if isinstance(node, TagNode):
            self._require(node.field, FieldType.TAG, node.position)
            return self._index.tag.matching_ids(node.field, node.tags)
        if isinstance(node, NumericRangeNode):
            self._require(node.field, FieldType.NUMERIC, node.position)
            return self._index.numeric.range_ids(node.field, node.low, node.high,
                                                 node.low_exclusive, node.high_exclusive)
        if isinstance(node, GeoRadiusNode):
            self._require(node.field, FieldType.GEO, node.position)
            return self._index.geo.radius_ids(node.field, node.lon, node.lat, node.radius, node.unit)
        if isinstance(node, AndNode):
            return self._evaluate_and(node)
        if isinstance(node, OrNode):
            result: Set[str] = set()
            for child in node.children:
                result |= self.evaluate(child)
            return result
        if isinstance(node, NotNode):
            return self._all_keys() - self.evaluate(node.child)
        raise TypeError(f"Unknown query node {type(node).__name__}")

    def _evaluate_and(self, node: AndNode) -> Set[str]:
        positives = [c for c in node.children if not isinstance(c, NotNode)]
        negatives = [c for c in node.children if isinstance(c, NotNode)]

        result = None
        for child in positives:
            ids = self.evaluate(child)
            result = ids if result is None else result & ids
            if not result:
                return set()
        if result is None:
            result = set(self._all_keys())
        for child in negatives:
            result -= self.evaluate(child.child)
            if not result:
                return set()
        return result

    def _evaluate_term(self, node: TermNode) -> Set[str]:
        if node.fields is not None:
            for name in node.fields:
                self._require(name, FieldType.TEXT, node.position)
        return self._index.text.matching_ids(node.token, node.fields, node.prefix)

    def _require(self, name: str, field_type: FieldType, position: int) -> None:
        spec = self._definition.field_by_name(name)
        if spec is None:
            raise MalformedQueryException(
                f"Unknown field '{name}' in index {self._definition.name}",
                position=position, reason="unknown field", query=self._query_text
            )
        if spec.field_type != field_type:
            raise MalformedQueryException(
                f"Field '{name}' is {spec.field_type.value}, not {field_type.value}",
                position=position, reason="field type mismatch", query=self._query_text
            )

    def _all_keys(self) -> Set[str]:
        if self._universe is None:
            self._universe = self._index.all_keys()
        return self._universe
