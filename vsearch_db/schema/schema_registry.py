import logging
import threading
from typing import Callable, Dict, List, Optional, Any

from vsearch_data_model.field_values import FieldType
from vsearch_data_model.index_definition import (
    IndexDefinition, FieldSpec, DistanceMetric, VectorAlgorithm, DocumentType
)
from vsearch_db.schema.json_path import parse_path, JsonPathError
from vsearch_exception_model.exception import (
    InvalidFieldSpecException, UnsupportedMetricException, DuplicateIndexException, IndexNotFoundException
)

logger = logging.getLogger(__name__)

_ALLOWED_OPTIONS = {
    FieldType.TEXT: {"weight", "nostem", "sortable"},
    FieldType.TAG: {"separator", "case_sensitive", "sortable"},
    FieldType.NUMERIC: {"sortable"},
    FieldType.GEO: set(),
    FieldType.VECTOR: {"algorithm", "type", "dim", "distance_metric", "m", "ef_construction", "ef_runtime",
                       "initial_cap"},
}

_SUPPORTED_VECTOR_TYPES = {"FLOAT32"}


def _positive_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value > 0


def validate_field(definition: IndexDefinition, spec: FieldSpec) -> None:
    """Raise InvalidFieldSpecException (or UnsupportedMetricException) for a bad field spec."""
    name = definition.name
    if not isinstance(spec.field_type, FieldType):
        raise InvalidFieldSpecException(f"Unknown field type {spec.field_type!r}", name, spec.path)

    if not spec.path or not isinstance(spec.path, str):
        raise InvalidFieldSpecException("Field path must be a non-empty string", name, spec.path)
    if definition.on == DocumentType.JSON:
        try:
            parse_path(spec.path)
        except JsonPathError as e:
            raise InvalidFieldSpecException(str(e), name, spec.path)

    unknown = set(spec.options) - _ALLOWED_OPTIONS[spec.field_type]
    if unknown:
        raise InvalidFieldSpecException(
            f"Options {sorted(unknown)} are not valid for {spec.field_type.value} fields", name, spec.name
        )

    if spec.field_type == FieldType.TEXT:
        try:
            weight = spec.weight
        except (TypeError, ValueError):
            raise InvalidFieldSpecException("TEXT weight must be a number", name, spec.name)
        if not weight > 0:
            raise InvalidFieldSpecException("TEXT weight must be positive", name, spec.name)

    elif spec.field_type == FieldType.TAG:
        separator = spec.separator
        if not isinstance(separator, str) or len(separator) != 1:
            raise InvalidFieldSpecException("TAG separator must be a single character", name, spec.name)

    elif spec.field_type == FieldType.VECTOR:
        _validate_vector_field(name, spec)


def _validate_vector_field(name: str, spec: FieldSpec) -> None:
    if not _positive_int(spec.dim):
        raise InvalidFieldSpecException(f"VECTOR dim must be a positive integer, got {spec.dim!r}",
                                        name, spec.name)
    raw_metric = spec.option("distance_metric", DistanceMetric.L2)
    if DistanceMetric.parse(raw_metric) is None:
        raise UnsupportedMetricException(f"Unsupported distance metric {raw_metric!r}", raw_metric,
                                         sorted(m.value for m in DistanceMetric),
                                         index_name=name, field_name=spec.name)
    try:
        spec.algorithm
    except ValueError:
        raise InvalidFieldSpecException(
            f"Unsupported vector algorithm {spec.option('algorithm')!r}; expected HNSW or FLAT", name, spec.name
        )
    vec_type = str(spec.option("type", "FLOAT32")).upper()
    if vec_type not in _SUPPORTED_VECTOR_TYPES:
        raise InvalidFieldSpecException(f"Unsupported vector type {vec_type}; only FLOAT32 is accepted",
                                        name, spec.name)
    for option in ("m", "ef_construction", "ef_runtime", "initial_cap"):
        if option in spec.options and not _positive_int(spec.options[option]):
            raise InvalidFieldSpecException(f"VECTOR {option} must be a positive integer", name, spec.name)
    if spec.algorithm == VectorAlgorithm.HNSW and spec.option("m", 2) < 2:
        raise InvalidFieldSpecException("HNSW m must be at least 2", name, spec.name)


def validate_definition(definition: IndexDefinition) -> None:
    if not definition.name or not isinstance(definition.name, str):
        raise InvalidFieldSpecException("Index name must be a non-empty string", definition.name)
    if not definition.fields:
        raise InvalidFieldSpecException("An index needs at least one field", definition.name)
    if not isinstance(definition.on, DocumentType):
        raise InvalidFieldSpecException(f"Unsupported document type {definition.on!r}", definition.name)

    seen = set()
    for spec in definition.fields:
        validate_field(definition, spec)
        if spec.name in seen:
            raise InvalidFieldSpecException(f"Duplicate field name {spec.name}", definition.name, spec.name)
        seen.add(spec.name)


class SchemaRegistry:
    """
    Named index definitions and the runtime structures built for them.

    Validation runs before ``index_factory`` is called, so a rejected
    definition never leaves a partially built index behind.
    """

    def __init__(self, index_factory: Callable[[IndexDefinition], Any]):
        self._index_factory = index_factory
        self._indexes: Dict[str, Any] = {}
        # rebuilds in progress: receive writes, answer no queries
        self._shadows: Dict[str, Any] = {}
        self._lock = threading.RLock()

    def define_index(self, definition: IndexDefinition) -> Any:
        """
        Register ``definition`` and build its (empty) runtime index.

        Raises:
            DuplicateIndexException: If the name is taken.
            InvalidFieldSpecException: If any field spec is invalid.
        """
        validate_definition(definition)
        with self._lock:
            if definition.name in self._indexes:
                raise DuplicateIndexException(f"Index {definition.name} already exists", definition.name)
            runtime = self._index_factory(definition)
            self._indexes[definition.name] = runtime
        logger.info(f"Defined index {definition.name} over prefixes {list(definition.prefixes)}")
        return runtime

    def drop_index(self, name: str, if_exists: bool = False) -> Optional[Any]:
        """Unregister an index and return its runtime, or None when missing and ``if_exists``."""
        with self._lock:
            runtime = self._indexes.pop(name, None)
            shadow = self._shadows.pop(name, None)
        if shadow is not None:
            shadow.clear()
        if runtime is None:
            if if_exists:
                logger.warning(f"Drop of missing index {name} ignored")
                return None
            raise IndexNotFoundException(f"Index {name} does not exist", name)
        logger.info(f"Dropped index {name}")
        return runtime

    def get(self, name: str) -> Any:
        with self._lock:
            runtime = self._indexes.get(name)
        if runtime is None:
            raise IndexNotFoundException(f"Index {name} does not exist", name)
        return runtime

    def exists(self, name: str) -> bool:
        with self._lock:
            return name in self._indexes

    def list_indexes(self) -> List[str]:
        with self._lock:
            return sorted(self._indexes)

    def indexes_for_key(self, key: str) -> List[Any]:
        """Runtimes of every index (and index rebuild) whose prefixes cover ``key``, in name order."""
        with self._lock:
            runtimes = [self._indexes[name] for name in sorted(self._indexes)]
            runtimes.extend(self._shadows[name] for name in sorted(self._shadows))
        return [r for r in runtimes if r.definition.matches_key(key)]

    def begin_rebuild(self, name: str) -> Any:
        """Build an empty replacement for ``name`` that receives writes until promoted."""
        with self._lock:
            current = self.get(name)
            if name in self._shadows:
                raise DuplicateIndexException(f"Index {name} is already being rebuilt", name)
            shadow = self._index_factory(current.definition)
            self._shadows[name] = shadow
            return shadow

    def finish_rebuild(self, name: str, shadow: Any) -> Optional[Any]:
        """Swap ``shadow`` in for the live index and return the replaced runtime."""
        with self._lock:
            if self._shadows.get(name) is not shadow:
                return None
            del self._shadows[name]
            previous = self._indexes.get(name)
            if previous is None:
                return None
            self._indexes[name] = shadow
            return previous

    def abandon_rebuild(self, name: str, shadow: Any) -> None:
        with self._lock:
            if self._shadows.get(name) is shadow:
                del self._shadows[name]
