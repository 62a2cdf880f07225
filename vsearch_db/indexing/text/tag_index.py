from collections import defaultdict
from typing import Dict, Iterable, Set

from vsearch_data_model.field_values import FieldValue, TagValue
from vsearch_db.core.interface.field_index_interface import FieldIndexInterface


class TagIndex(FieldIndexInterface):
    """
    Exact-match index for TAG fields: field -> tag -> set(key).

    Tags are atomic; no tokenization or stemming is applied. Case folding is
    decided per field at coercion time and repeated for query values here.
    """

    def __init__(self, case_sensitive: Dict[str, bool]):
        self._case_sensitive = dict(case_sensitive)
        self._eq_index: Dict[str, Dict[str, Set[str]]] = defaultdict(lambda: defaultdict(set))
        self._doc_fields: Dict[str, Set[str]] = {}

    @property
    def fields(self):
        return list(self._case_sensitive)

    def add(self, key: str, values: Dict[str, FieldValue]) -> None:
        for field, value in values.items():
            if field not in self._case_sensitive or not isinstance(value, TagValue):
                continue
            bucket = self._eq_index[field]
            for tag in value.tags:
                bucket[tag].add(key)
            self._doc_fields.setdefault(key, set()).add(field)

    def delete(self, key: str, values: Dict[str, FieldValue]) -> None:
        for field, value in values.items():
            if field not in self._case_sensitive or not isinstance(value, TagValue):
                continue
            bucket = self._eq_index[field]
            for tag in value.tags:
                keys = bucket.get(tag)
                if keys is None:
                    continue
                keys.discard(key)
                if not keys:
                    del bucket[tag]
            indexed = self._doc_fields.get(key)
            if indexed is not None:
                indexed.discard(field)
                if not indexed:
                    del self._doc_fields[key]

    def normalize(self, field: str, tag: str) -> str:
        tag = tag.strip()
        return tag if self._case_sensitive.get(field, False) else tag.lower()

    def matching_ids(self, field: str, tags: Iterable[str]) -> Set[str]:
        """Union of keys carrying any of ``tags`` in ``field``."""
        bucket = self._eq_index.get(field, {})
        ids: Set[str] = set()
        for tag in tags:
            ids |= bucket.get(self.normalize(field, tag), set())
        return ids

    def tag_values(self, field: str) -> Set[str]:
        return set(self._eq_index.get(field, {}))

    def get_all_ids(self) -> Set[str]:
        return set(self._doc_fields)
