"""
Full-text inverted index.

    _postings:  field -> token -> {key: term frequency}

    "title" ──┬── "wireless" ──▶ {doc:1: 2, doc:7: 1}
              ├── "mouse"    ──▶ {doc:1: 1}
              └── "keyboard" ──▶ {doc:7: 1}

Each field also keeps its tokens in a sorted list so that prefix terms
(``wire*``) are answered with two bisects instead of a scan of the
vocabulary. Relevance is TF-IDF: for every matched (field, token) pair a
document scores ``weight(field) * tf * log(1 + N / df)``, where N is the
number of documents carrying any text field and df the token's document
frequency within the field.
"""
import math
from bisect import bisect_left, insort
from collections import defaultdict
from typing import Dict, Iterable, List, Optional, Set, Tuple

from vsearch_data_model.field_values import FieldValue, TextValue
from vsearch_db.core.interface.field_index_interface import FieldIndexInterface
from vsearch_db.indexing.text.tokenizer import term_frequencies, tokenize


class InvertedTextIndex(FieldIndexInterface):
    """Token postings with term frequencies for every TEXT field of one index."""

    def __init__(self, weights: Dict[str, float], stopwords: Iterable[str] = ()):
        self._weights = dict(weights)
        self._stopwords = frozenset(s.lower() for s in stopwords)
        self._postings: Dict[str, Dict[str, Dict[str, int]]] = defaultdict(lambda: defaultdict(dict))
        self._sorted_tokens: Dict[str, List[str]] = defaultdict(list)
        # key -> number of text fields it is indexed under
        self._doc_fields: Dict[str, Set[str]] = {}

    @property
    def fields(self) -> List[str]:
        return list(self._weights)

    @property
    def stopwords(self) -> frozenset:
        return self._stopwords

    def analyze(self, text: str) -> List[str]:
        return tokenize(text, self._stopwords)

    def add(self, key: str, values: Dict[str, FieldValue]) -> None:
        for field, value in values.items():
            if field not in self._weights or not isinstance(value, TextValue):
                continue
            field_postings = self._postings[field]
            for token, tf in term_frequencies(value.text, self._stopwords).items():
                bucket = field_postings[token]
                if not bucket:
                    insort(self._sorted_tokens[field], token)
                bucket[key] = tf
            self._doc_fields.setdefault(key, set()).add(field)

    def delete(self, key: str, values: Dict[str, FieldValue]) -> None:
        for field, value in values.items():
            if field not in self._weights or not isinstance(value, TextValue):
                continue
            field_postings = self._postings[field]
            for token in set(tokenize(value.text, self._stopwords)):
                bucket = field_postings.get(token)
                if bucket is None:
                    continue
                bucket.pop(key, None)
                if not bucket:
                    del field_postings[token]
                    self._remove_token(field, token)
            indexed = self._doc_fields.get(key)
            if indexed is not None:
                indexed.discard(field)
                if not indexed:
                    del self._doc_fields[key]

    def _remove_token(self, field: str, token: str) -> None:
        tokens = self._sorted_tokens[field]
        i = bisect_left(tokens, token)
        if i < len(tokens) and tokens[i] == token:
            tokens.pop(i)

    def _scope(self, fields: Optional[Iterable[str]]) -> List[str]:
        if fields is None:
            return list(self._weights)
        return [f for f in fields if f in self._weights]

    def expand(self, field: str, token: str, prefix: bool = False) -> List[str]:
        """Vocabulary tokens of ``field`` matched by ``token`` (all tokens sharing it as prefix if ``prefix``)."""
        if not prefix:
            return [token] if token in self._postings.get(field, {}) else []
        tokens = self._sorted_tokens.get(field, [])
        start = bisect_left(tokens, token)
        matched = []
        for candidate in tokens[start:]:
            if not candidate.startswith(token):
                break
            matched.append(candidate)
        return matched

    def matching_ids(self, token: str, fields: Optional[Iterable[str]] = None, prefix: bool = False) -> Set[str]:
        """Keys containing ``token`` in any of ``fields`` (all text fields when None)."""
        ids: Set[str] = set()
        for field in self._scope(fields):
            postings = self._postings.get(field, {})
            for t in self.expand(field, token, prefix):
                ids.update(postings[t])
        return ids

    def score(self, keys: Iterable[str], terms: List[Tuple[Optional[List[str]], str, bool]]) -> Dict[str, float]:
        """
        TF-IDF relevance of ``keys`` for the positive query ``terms``.

        Args:
            keys: Documents to score.
            terms: ``(fields, token, is_prefix)`` triples; ``fields`` None means
                every text field.
        """
        keys = set(keys)
        scores: Dict[str, float] = {k: 0.0 for k in keys}
        n_docs = max(len(self._doc_fields), 1)
        for fields, token, prefix in terms:
            for field in self._scope(fields):
                weight = self._weights[field]
                postings = self._postings.get(field, {})
                for t in self.expand(field, token, prefix):
                    bucket = postings[t]
                    idf = math.log(1.0 + n_docs / len(bucket))
                    for key in keys.intersection(bucket):
                        scores[key] += weight * bucket[key] * idf
        return scores

    def get_all_ids(self) -> Set[str]:
        return set(self._doc_fields)
