"""Index definitions: which keys an index covers and how each field is indexed."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from vsearch_data_model.checksum_util import canonical_bytes, checksum_of
from vsearch_data_model.field_values import FieldType
from vsearch_exception_model.exception import ChecksumValidationFailureError


class DocumentType(str, Enum):
    """Shape of the documents an index reads from."""
    HASH = "HASH"  # flat field -> value mapping
    JSON = "JSON"  # nested document addressed by JSONPath


class DistanceMetric(str, Enum):
    """Supported distance metrics for vector comparison. Lower distance is more similar."""
    COSINE = "COSINE"  # 1 - cosine similarity
    L2 = "L2"  # squared Euclidean distance
    IP = "IP"  # 1 - inner product

    @classmethod
    def parse(cls, value: Any) -> Optional["DistanceMetric"]:
        if isinstance(value, DistanceMetric):
            return value
        if not isinstance(value, str):
            return None
        aliases = {"INNER_PRODUCT": "IP", "EUCLIDEAN": "L2"}
        name = value.strip().upper().replace("-", "_")
        try:
            return cls(aliases.get(name, name))
        except ValueError:
            return None


class VectorAlgorithm(str, Enum):
    HNSW = "HNSW"
    FLAT = "FLAT"


DEFAULT_TAG_SEPARATOR = ","


@dataclass
class FieldSpec:
    """
    One indexed field.

    Attributes:
        path: Field name for HASH documents, JSONPath (``$.a.b``) for JSON documents.
        field_type: How the value is indexed.
        alias: Name used in queries and returned field subsets. Defaults to ``path``.
        options: Type-specific options, e.g. ``{"dim": 4, "distance_metric": "COSINE"}``
            for vectors or ``{"separator": "|"}`` for tags.
    """
    path: str
    field_type: FieldType
    alias: Optional[str] = None
    options: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        if not isinstance(self.field_type, FieldType):
            try:
                self.field_type = FieldType(str(self.field_type).upper())
            except ValueError:
                pass  # rejected when the index is defined

    @property
    def name(self) -> str:
        return self.alias or self.path

    def option(self, key: str, default: Any = None) -> Any:
        return self.options.get(key, default)

    @property
    def weight(self) -> float:
        return float(self.option("weight", 1.0))

    @property
    def separator(self) -> str:
        return self.option("separator", DEFAULT_TAG_SEPARATOR)

    @property
    def case_sensitive(self) -> bool:
        return bool(self.option("case_sensitive", False))

    @property
    def dim(self) -> Optional[int]:
        return self.option("dim")

    @property
    def metric(self) -> Optional[DistanceMetric]:
        return DistanceMetric.parse(self.option("distance_metric", DistanceMetric.L2))

    @property
    def algorithm(self) -> VectorAlgorithm:
        return VectorAlgorithm(str(self.option("algorithm", VectorAlgorithm.HNSW.value)).upper())

    def to_dict(self) -> Dict[str, Any]:
        options = {k: (v.value if isinstance(v, Enum) else v) for k, v in self.options.items()}
        return {
            "path": self.path,
            "field_type": getattr(self.field_type, "value", self.field_type),
            "alias": self.alias,
            "options": options,
        }


@dataclass
class IndexDefinition:
    """
    A named secondary index over every document whose key starts with one of
    ``prefixes`` (an empty prefix list covers every key).

    Definitions are immutable once registered: a changed definition means drop
    and recreate, after which every matching document is indexed again.
    """
    name: str
    fields: List[FieldSpec]
    prefixes: Tuple[str, ...] = ()
    on: DocumentType = DocumentType.HASH
    stopwords: Optional[Tuple[str, ...]] = None
    checksum_algorithm: str = 'sha256'

    checksum: str = field(init=False)

    def __post_init__(self):
        if isinstance(self.prefixes, str):
            self.prefixes = (self.prefixes,)
        self.prefixes = tuple(self.prefixes)
        if not isinstance(self.on, DocumentType):
            try:
                self.on = DocumentType(str(self.on).upper())
            except ValueError:
                pass  # rejected when the index is defined
        if self.stopwords is not None:
            self.stopwords = tuple(self.stopwords)
        self.checksum = checksum_of(self.checksum_algorithm, self._checksum_parts())

    def _checksum_parts(self) -> List[bytes]:
        return [
            self.name.encode('utf-8'),
            str(getattr(self.on, "value", self.on)).encode('utf-8'),
            canonical_bytes([f.to_dict() for f in self.fields]),
            canonical_bytes(list(self.prefixes)),
            canonical_bytes(list(self.stopwords) if self.stopwords is not None else None),
        ]

    def validate_checksum(self) -> bool:
        if checksum_of(self.checksum_algorithm, self._checksum_parts()) != self.checksum:
            raise ChecksumValidationFailureError("IndexDefinition checksum validation failed")
        return True

    def matches_key(self, key: str) -> bool:
        if not self.prefixes:
            return True
        return any(key.startswith(p) for p in self.prefixes)

    def field_by_name(self, name: str) -> Optional[FieldSpec]:
        for spec in self.fields:
            if spec.name == name:
                return spec
        return None

    def fields_of_type(self, field_type: FieldType) -> List[FieldSpec]:
        return [f for f in self.fields if f.field_type == field_type]
