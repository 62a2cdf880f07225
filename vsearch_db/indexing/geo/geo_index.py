import math
from bisect import bisect_left, bisect_right
from collections import defaultdict
from typing import Dict, List, Set, Tuple

from vsearch_data_model.field_values import FieldValue, GeoValue
from vsearch_db.core.interface.field_index_interface import FieldIndexInterface

EARTH_RADIUS_M = 6372797.560856

UNIT_TO_METERS = {
    "m": 1.0,
    "km": 1000.0,
    "mi": 1609.34,
    "ft": 0.3048,
}


def haversine_distance(lon1: float, lat1: float, lon2: float, lat2: float) -> float:
    """Great-circle distance in meters between two (lon, lat) points."""
    lat1_r, lat2_r = math.radians(lat1), math.radians(lat2)
    d_lat = lat2_r - lat1_r
    d_lon = math.radians(lon2 - lon1)
    u = math.sin(d_lat / 2.0)
    v = math.sin(d_lon / 2.0)
    a = u * u + math.cos(lat1_r) * math.cos(lat2_r) * v * v
    return 2.0 * EARTH_RADIUS_M * math.asin(min(1.0, math.sqrt(a)))


def to_meters(radius: float, unit: str) -> float:
    factor = UNIT_TO_METERS.get(unit.lower())
    if factor is None:
        raise ValueError(f"Unknown geo unit {unit!r}; expected one of {sorted(UNIT_TO_METERS)}")
    return radius * factor


class GeoIndex(FieldIndexInterface):
    """
    Radius index for GEO fields.

    Points are kept per field in a list sorted by latitude. A radius query
    slices the latitude band the circle can reach, then confirms each point
    with the haversine distance.
    """

    def __init__(self, fields):
        self._fields = set(fields)
        self._points: Dict[str, List[Tuple[float, float, str]]] = defaultdict(list)
        self._doc_fields: Dict[str, Set[str]] = {}

    def add(self, key: str, values: Dict[str, FieldValue]) -> None:
        for field, value in values.items():
            if field not in self._fields or not isinstance(value, GeoValue):
                continue
            points = self._points[field]
            entry = (value.lat, value.lon, key)
            i = bisect_left(points, entry)
            if i == len(points) or points[i] != entry:
                points.insert(i, entry)
            self._doc_fields.setdefault(key, set()).add(field)

    def delete(self, key: str, values: Dict[str, FieldValue]) -> None:
        for field, value in values.items():
            if field not in self._fields or not isinstance(value, GeoValue):
                continue
            points = self._points[field]
            entry = (value.lat, value.lon, key)
            i = bisect_left(points, entry)
            if i < len(points) and points[i] == entry:
                points.pop(i)
            indexed = self._doc_fields.get(key)
            if indexed is not None:
                indexed.discard(field)
                if not indexed:
                    del self._doc_fields[key]

    def radius_ids(self, field: str, lon: float, lat: float, radius: float, unit: str = "m") -> Set[str]:
        """Keys whose ``field`` point lies within ``radius`` ``unit`` of (lon, lat)."""
        radius_m = to_meters(radius, unit)
        if radius_m < 0:
            return set()
        points = self._points.get(field, [])
        band = math.degrees(radius_m / EARTH_RADIUS_M)
        start = bisect_left(points, (lat - band,))
        end = bisect_right(points, (lat + band, math.inf))

        results: Set[str] = set()
        for p_lat, p_lon, key in points[start:end]:
            if haversine_distance(lon, lat, p_lon, p_lat) <= radius_m:
                results.add(key)
        return results

    def get_all_ids(self) -> Set[str]:
        return set(self._doc_fields)
