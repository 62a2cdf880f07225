"""Typed field values extracted from documents for indexing.

Documents carry free-form values (strings, numbers, lists, blobs). Before any
index sees them, the field spec coerces each one into exactly one of the
variants below, so index code never inspects untyped dictionaries.
"""
from dataclasses import dataclass
from enum import Enum
from typing import FrozenSet, Union

import numpy as np


class FieldType(str, Enum):
    """Field kinds an index definition may declare."""
    TEXT = "TEXT"
    TAG = "TAG"
    NUMERIC = "NUMERIC"
    GEO = "GEO"
    VECTOR = "VECTOR"


@dataclass(frozen=True)
class TextValue:
    text: str


@dataclass(frozen=True)
class TagValue:
    tags: FrozenSet[str]


@dataclass(frozen=True)
class NumericValue:
    value: float


@dataclass(frozen=True)
class GeoValue:
    """A geo point. Longitude always comes first."""
    lon: float
    lat: float


@dataclass(frozen=True, eq=False)
class VectorValue:
    vector: np.ndarray

    @property
    def dim(self) -> int:
        return int(self.vector.shape[0])

    def __eq__(self, other):
        if not isinstance(other, VectorValue):
            return False
        return np.array_equal(self.vector, other.vector)

    def __hash__(self):
        return hash(self.vector.tobytes())


FieldValue = Union[TextValue, TagValue, NumericValue, GeoValue, VectorValue]
