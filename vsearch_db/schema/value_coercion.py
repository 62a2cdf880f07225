"""Coercion of raw document values into typed field values."""
import copy
import math
import numbers
from typing import Any, Dict, List, Optional

from vsearch_data_model.field_values import (
    FieldType, FieldValue, TextValue, TagValue, NumericValue, GeoValue, VectorValue
)
from vsearch_data_model.index_definition import IndexDefinition, FieldSpec, DocumentType
from vsearch_db.indexing.vector.distance import to_float32_vector
from vsearch_db.schema.json_path import extract, has_wildcard
from vsearch_exception_model.exception import InvalidDocumentException

GEO_LAT_LIMIT = 85.05112878
GEO_LON_LIMIT = 180.0


def _coerce_text(spec: FieldSpec, raw: List[Any]) -> TextValue:
    parts = []
    for value in raw:
        if isinstance(value, bool) or not isinstance(value, (str, numbers.Number)):
            raise ValueError(f"expected a string, got {type(value).__name__}")
        parts.append(value if isinstance(value, str) else str(value))
    return TextValue(" ".join(parts))


def _coerce_tag(spec: FieldSpec, raw: List[Any]) -> TagValue:
    tags = set()
    for value in raw:
        if isinstance(value, (list, tuple, set, frozenset)):
            items = list(value)
        elif isinstance(value, str):
            items = value.split(spec.separator)
        elif isinstance(value, bool):
            items = [str(value).lower()]
        elif isinstance(value, numbers.Number):
            items = [str(value)]
        else:
            raise ValueError(f"expected a string or a list of strings, got {type(value).__name__}")
        for item in items:
            if not isinstance(item, (str, numbers.Number)):
                raise ValueError(f"tag values must be strings, got {type(item).__name__}")
            tag = str(item).strip()
            if tag:
                tags.add(tag if spec.case_sensitive else tag.lower())
    return TagValue(frozenset(tags))


def _coerce_numeric(spec: FieldSpec, raw: List[Any]) -> NumericValue:
    if len(raw) != 1:
        raise ValueError(f"expected a single number, got {len(raw)} values")
    value = raw[0]
    if isinstance(value, bool):
        raise ValueError("booleans are not numeric values")
    if isinstance(value, str):
        value = float(value.strip())
    elif isinstance(value, numbers.Number):
        value = float(value)
    else:
        raise ValueError(f"expected a number, got {type(value).__name__}")
    if math.isnan(value):
        raise ValueError("NaN is not a valid numeric value")
    return NumericValue(value)


def parse_geo(value: Any) -> GeoValue:
    """Parse ``"lon,lat"`` or a ``(lon, lat)`` pair. Longitude comes first."""
    if isinstance(value, str):
        parts = value.replace(" ", ",").split(",")
        parts = [p for p in parts if p]
    elif isinstance(value, (list, tuple)):
        parts = list(value)
    else:
        raise ValueError(f"expected 'lon,lat', got {type(value).__name__}")
    if len(parts) != 2:
        raise ValueError(f"expected exactly two coordinates, got {len(parts)}")
    lon, lat = float(parts[0]), float(parts[1])
    if not -GEO_LON_LIMIT <= lon <= GEO_LON_LIMIT:
        raise ValueError(f"longitude {lon} out of range")
    if not -GEO_LAT_LIMIT <= lat <= GEO_LAT_LIMIT:
        raise ValueError(f"latitude {lat} out of range")
    return GeoValue(lon=lon, lat=lat)


def _coerce_geo(spec: FieldSpec, raw: List[Any]) -> GeoValue:
    if len(raw) != 1:
        raise ValueError(f"expected a single geo point, got {len(raw)} values")
    return parse_geo(raw[0])


def _coerce_vector(spec: FieldSpec, raw: List[Any]) -> VectorValue:
    if len(raw) == 1 and not isinstance(raw[0], numbers.Number):
        value = raw[0]
    else:
        value = raw
    if isinstance(value, str):
        raise ValueError("vectors must be float32 blobs or sequences of numbers, not strings")
    if isinstance(value, (list, tuple)) and any(isinstance(v, bool) or not isinstance(v, numbers.Number)
                                                for v in value):
        raise ValueError("vector components must be numbers")
    return VectorValue(to_float32_vector(value))


_COERCERS = {
    FieldType.TEXT: _coerce_text,
    FieldType.TAG: _coerce_tag,
    FieldType.NUMERIC: _coerce_numeric,
    FieldType.GEO: _coerce_geo,
    FieldType.VECTOR: _coerce_vector,
}


def raw_values(definition: IndexDefinition, spec: FieldSpec, fields: Dict[str, Any]) -> List[Any]:
    """Raw values ``spec`` selects from a document; empty when the field is absent."""
    if definition.on == DocumentType.JSON:
        matches = extract(fields, spec.path)
        if len(matches) == 1 and isinstance(matches[0], list) and not has_wildcard(spec.path) \
                and spec.field_type in (FieldType.TEXT, FieldType.TAG):
            matches = list(matches[0])
    else:
        matches = [fields[spec.path]] if spec.path in fields else []
    return [m for m in matches if m is not None]


def coerce_field(definition: IndexDefinition, spec: FieldSpec, fields: Dict[str, Any],
                 key: Optional[str] = None) -> Optional[FieldValue]:
    """
    Typed value of one field of a document, or None when the document does
    not carry the field.

    Raises:
        InvalidDocumentException: If the value cannot be read as the field's type.
    """
    raw = raw_values(definition, spec, fields)
    if not raw:
        return None
    try:
        return _COERCERS[spec.field_type](spec, raw)
    except (ValueError, TypeError) as e:
        raise InvalidDocumentException(
            f"Field {spec.name} cannot be indexed as {spec.field_type.value}: {e}",
            record_id=key, field_name=spec.name, index_name=definition.name, cause=e
        ) from e


def extract_field_values(definition: IndexDefinition, fields: Dict[str, Any],
                         key: Optional[str] = None) -> Dict[str, FieldValue]:
    """Typed values of every indexed field a document carries, keyed by field name."""
    values: Dict[str, FieldValue] = {}
    for spec in definition.fields:
        value = coerce_field(definition, spec, fields, key)
        if value is not None:
            values[spec.name] = value
    return values


def project_field(definition: IndexDefinition, spec: FieldSpec, fields: Dict[str, Any]) -> Any:
    """Raw value of a field as returned in search hits; None when absent."""
    if definition.on == DocumentType.JSON:
        matches = extract(fields, spec.path)
        if not matches:
            return None
        value = matches[0] if len(matches) == 1 and not has_wildcard(spec.path) else matches
    else:
        value = fields.get(spec.path)
    return copy.deepcopy(value)
