import math
from bisect import bisect_left, bisect_right
from collections import defaultdict
from typing import Dict, List, Set, Tuple

from vsearch_data_model.field_values import FieldValue, NumericValue
from vsearch_db.core.interface.field_index_interface import FieldIndexInterface


class NumericRangeIndex(FieldIndexInterface):
    """
    Range index for NUMERIC fields: field -> sorted list of (value, key).

    Ranges are answered with a bisect slice; exclusive bounds are trimmed from
    the slice afterwards.
    """

    def __init__(self, fields):
        self._fields = set(fields)
        self._range_index: Dict[str, List[Tuple[float, str]]] = defaultdict(list)
        self._doc_fields: Dict[str, Set[str]] = {}

    def add(self, key: str, values: Dict[str, FieldValue]) -> None:
        for field, value in values.items():
            if field not in self._fields or not isinstance(value, NumericValue):
                continue
            lst = self._range_index[field]
            entry = (value.value, key)
            i = bisect_left(lst, entry)
            if i == len(lst) or lst[i] != entry:
                lst.insert(i, entry)
            self._doc_fields.setdefault(key, set()).add(field)

    def delete(self, key: str, values: Dict[str, FieldValue]) -> None:
        for field, value in values.items():
            if field not in self._fields or not isinstance(value, NumericValue):
                continue
            lst = self._range_index[field]
            i = bisect_left(lst, (value.value, key))
            if i < len(lst) and lst[i] == (value.value, key):
                lst.pop(i)
            indexed = self._doc_fields.get(key)
            if indexed is not None:
                indexed.discard(field)
                if not indexed:
                    del self._doc_fields[key]

    def range_ids(self, field: str, low: float = -math.inf, high: float = math.inf,
                  low_exclusive: bool = False, high_exclusive: bool = False) -> Set[str]:
        """Keys whose ``field`` value lies between ``low`` and ``high`` (inclusive unless flagged)."""
        lst = self._range_index.get(field, [])
        if low > high:
            return set()
        start = bisect_left(lst, (low, "")) if low != -math.inf else 0
        end = len(lst) if high == math.inf else bisect_right(lst, (high, chr(0x10FFFF)))

        results: Set[str] = set()
        for val, key in lst[start:end]:
            if low_exclusive and val <= low:
                continue
            if high_exclusive and val >= high:
                continue
            results.add(key)
        return results

    def get_all_ids(self) -> Set[str]:
        return set(self._doc_fields)
