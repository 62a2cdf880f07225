"""
SearchManager Workflow
======================

    query string ──▶ QueryParser ──▶ ParsedQuery(filter, knn)
                                          │
          ┌───────────────────────────────┘
          ▼            (index commit lock, read side, held throughout)
    ┌──────────────────────────────────────────────────────────────┐
    │ 1. FILTER      FilterEvaluator -> candidate keys             │
    │                (skipped for "*" when a KNN clause follows)   │
    │ 2. RANK                                                      │
    │    ├─ KNN      vector index search restricted to candidates  │
    │    │           -> K (key, distance), closest first           │
    │    ├─ TEXT     TF-IDF over positive terms, highest first     │
    │    └─ NONE     key order                                     │
    │ 3. SORTBY      optional field order, ties by key             │
    │ 4. PAGE        total = all ranked, hits = [offset:+limit]    │
    │ 5. PROJECT     raw field values + KNN score alias            │
    └──────────────────────────────────────────────────────────────┘
"""
import logging
import time
from typing import Any, Dict, List, Optional, Set, Tuple, Union

import numpy as np

from vsearch_data_model.field_values import FieldType, TextValue, TagValue, NumericValue
from vsearch_data_model.search_result import SearchOptions, SearchResult, SearchHit
from vsearch_db.core.cancellation import CancellationToken, resolve_token
from vsearch_db.engine.search_index import SearchIndex
from vsearch_db.indexing.vector.distance import prepare_vector
from vsearch_db.metrics import SEARCH_LATENCY, SEARCH_REQUESTS
from vsearch_db.query.filter_evaluator import FilterEvaluator
from vsearch_db.query.query_ast import ParsedQuery, KnnClause, Param, positive_terms
from vsearch_db.query.query_parser import parse_query
from vsearch_db.schema.value_coercion import project_field
from vsearch_exception_model.exception import MalformedQueryException


class SearchManager:
    """Executes parsed queries against one index.

    Attributes:
        _logger: Logger instance for recording diagnostic information.
        _default_timeout: Deadline applied when the request carries none.
    """

    def __init__(self, logger: logging.Logger, default_timeout: Optional[float] = None):
        self._logger = logger
        self._default_timeout = default_timeout

    def search(self, index: SearchIndex, query: Union[str, ParsedQuery],
               options: Optional[SearchOptions] = None) -> SearchResult:
        """Run ``query`` against ``index``.

        Raises:
            MalformedQueryException: Syntax errors, unknown fields, missing parameters.
            VectorDimensionMismatchException: Query vector of the wrong length.
            OperationCancelledException: The request was cancelled or timed out.
        """
        options = options or SearchOptions()
        token = resolve_token(options.cancellation,
                              options.timeout_seconds if options.timeout_seconds is not None else self._default_timeout,
                              operation=f"search {index.name}")
        started = time.perf_counter()
        try:
            parsed = query if isinstance(query, ParsedQuery) else parse_query(query, index.stopwords)
            with index.commit_lock.read_lock():
                result = self._execute(index, parsed, options, token)
        except Exception:
            SEARCH_REQUESTS.labels(index=index.name, status="error").inc()
            raise
        SEARCH_REQUESTS.labels(index=index.name, status="ok").inc()
        SEARCH_LATENCY.labels(index=index.name).observe(time.perf_counter() - started)
        return result

    def _execute(self, index: SearchIndex, parsed: ParsedQuery, options: SearchOptions,
                 token: CancellationToken) -> SearchResult:
        # the query vector is validated even when the filter or K leaves nothing to rank
        vector_query = self._resolve_knn(index, parsed.knn, options) if parsed.knn is not None else None
        candidates = self._apply_filter(index, parsed, token)
        if candidates == set():
            self._logger.debug(f"Filter on index {index.name} matched nothing, short-circuiting search")
            return SearchResult(total=0, hits=[])

        scores: Dict[str, float] = {}
        if parsed.knn is not None:
            ranked = self._vector_search(index, parsed.knn, vector_query, candidates, token)
            ordered = [key for key, _ in ranked]
            scores = dict(ranked)
        else:
            terms = [(t.fields, t.token, t.prefix) for t in positive_terms(parsed.filter)]
            if terms:
                scores = index.text.score(candidates, terms)
                ordered = sorted(candidates, key=lambda k: (-scores[k], k))
            else:
                ordered = sorted(candidates)

        if options.sort_by:
            ordered = self._sort_by(index, ordered, options, parsed.knn, scores)

        total = len(ordered)
        offset = max(options.offset, 0)
        limit = max(options.limit, 0)
        page = ordered[offset:offset + limit]
        hits = [self._build_hit(index, key, parsed.knn, scores, options) for key in page]
        return SearchResult(total=total, hits=hits)

    def _apply_filter(self, index: SearchIndex, parsed: ParsedQuery, token: CancellationToken) -> Optional[Set[str]]:
        """Candidate keys for the query, or None when a KNN query is unrestricted."""
        if parsed.knn is not None and parsed.is_match_all:
            return None
        evaluator = FilterEvaluator(index, parsed.text, token)
        ids = evaluator.evaluate(parsed.filter)
        self._logger.debug(f"Filter on index {index.name} matched {len(ids)} documents")
        return ids

    def _resolve_knn(self, index: SearchIndex, knn: KnnClause,
                     options: SearchOptions) -> Tuple[int, Optional[int], np.ndarray]:
        """K, EF_RUNTIME and the prepared query vector of a KNN clause."""
        spec = index.definition.field_by_name(knn.field)
        if spec is None or spec.field_type != FieldType.VECTOR:
            raise MalformedQueryException(f"'{knn.field}' is not a vector field of index {index.name}",
                                          position=knn.position, reason="not a vector field")
        k = self._resolve_int(knn.k, options, "K")
        ef_runtime = self._resolve_int(knn.ef_runtime, options, "EF_RUNTIME") if knn.ef_runtime is not None else None
        vector = prepare_vector(self._resolve_param(knn.vector, options), spec.dim, spec.metric,
                                index_name=index.name)
        return k, ef_runtime, vector

    def _vector_search(self, index: SearchIndex, knn: KnnClause,
                       vector_query: Tuple[int, Optional[int], np.ndarray],
                       candidates: Optional[Set[str]], token: CancellationToken) -> List[Tuple[str, float]]:
        k, ef_runtime, vector = vector_query
        if k == 0:
            return []
        return index.vectors[knn.field].search(vector, k, allowed_keys=candidates,
                                               ef_runtime=ef_runtime, cancellation=token)

    def _resolve_param(self, param: Param, options: SearchOptions) -> Any:
        if param.name not in options.params:
            raise MalformedQueryException(f"No value given for parameter ${param.name}",
                                          position=param.position, reason="missing parameter")
        return options.params[param.name]

    def _resolve_int(self, value: Union[int, Param], options: SearchOptions, what: str) -> int:
        if isinstance(value, Param):
            raw = self._resolve_param(value, options)
            try:
                value = int(raw)
            except (TypeError, ValueError):
                raise MalformedQueryException(f"{what} parameter ${value.name} must be an integer",
                                              position=value.position, reason="invalid parameter")
        if value < 0:
            raise MalformedQueryException(f"{what} must not be negative", reason="invalid parameter")
        return value

    def _sort_by(self, index: SearchIndex, ordered: List[str], options: SearchOptions,
                 knn: Optional[KnnClause], scores: Dict[str, float]) -> List[str]:
        name = options.sort_by
        if knn is not None and name == knn.score_alias:
            def value_of(key):
                return scores.get(key)
        else:
            spec = index.definition.field_by_name(name)
            if spec is None or spec.field_type not in (FieldType.TEXT, FieldType.TAG, FieldType.NUMERIC):
                raise MalformedQueryException(f"Cannot sort by '{name}'", reason="invalid sort field")

            def value_of(key):
                entry = index.entry(key)
                return _sort_value(entry[1].get(name)) if entry else None

        present = [(value_of(key), key) for key in ordered]
        missing = sorted(key for value, key in present if value is None)
        present = sorted((p for p in present if p[0] is not None), key=lambda p: p[1])
        present.sort(key=lambda p: p[0], reverse=not options.sort_ascending)
        return [key for _, key in present] + missing

    def _build_hit(self, index: SearchIndex, key: str, knn: Optional[KnnClause],
                   scores: Dict[str, float], options: SearchOptions) -> SearchHit:
        score = scores.get(key)
        if options.no_content:
            return SearchHit(key=key, fields={}, score=score)

        entry = index.entry(key)
        fields: Dict[str, Any] = {}
        wanted = set(options.return_fields) if options.return_fields is not None else None
        if entry is not None:
            document = entry[0]
            for spec in index.definition.fields:
                if wanted is not None and spec.name not in wanted:
                    continue
                value = project_field(index.definition, spec, document.fields or {})
                if value is not None:
                    fields[spec.name] = value
        if knn is not None and (wanted is None or knn.score_alias in wanted):
            fields[knn.score_alias] = score
        return SearchHit(key=key, fields=fields, score=score)


def _sort_value(value) -> Any:
    if isinstance(value, NumericValue):
        return value.value
    if isinstance(value, TextValue):
        return value.text.lower()
    if isinstance(value, TagValue):
        return ",".join(sorted(value.tags))
    return None
