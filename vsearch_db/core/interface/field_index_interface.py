from abc import ABC, abstractmethod
from typing import Dict, Set

from vsearch_data_model.field_values import FieldValue


class FieldIndexInterface(ABC):
    """
    Abstract secondary index over the non-vector fields of one search index.

    Entries are keyed by document key and removed by the same values they were
    added with, so the caller keeps the values it indexed (the committed
    snapshot) and passes them back to ``delete``.
    """

    @abstractmethod
    def add(self, key: str, values: Dict[str, FieldValue]) -> None:
        """Index ``values`` (field name -> typed value) for ``key``."""
        ...

    @abstractmethod
    def delete(self, key: str, values: Dict[str, FieldValue]) -> None:
        """Remove the entries previously added for ``key`` with ``values``."""
        ...

    def update(self, key: str, old_values: Dict[str, FieldValue], new_values: Dict[str, FieldValue]) -> None:
        self.delete(key, old_values)
        self.add(key, new_values)

    @abstractmethod
    def get_all_ids(self) -> Set[str]:
        ...
