"""
Minimal JSONPath support for JSON documents.

Supported forms: ``$.a.b``, ``$.a[0]``, ``$.tags[*]``, ``$['odd name']`` and a
bare ``a.b`` (treated as ``$.a.b``).
"""
import re
from functools import lru_cache
from typing import Any, List, Tuple, Union

_WILDCARD = object()

_SEGMENT_RE = re.compile(
    r"""\.(?P<name>[A-Za-z_][\w-]*)        # .name
      | \[(?P<index>-?\d+)\]                # [0]
      | \[(?P<star>\*)\]                    # [*]
      | \[(?P<q>['"])(?P<quoted>.*?)(?P=q)\]  # ['name']
    """,
    re.VERBOSE,
)


class JsonPathError(ValueError):
    pass


@lru_cache(maxsize=1024)
def parse_path(path: str) -> Tuple[Union[str, int, object], ...]:
    """Split a path into name / index / wildcard steps. Raises JsonPathError."""
    if not path:
        raise JsonPathError("empty JSONPath")
    if path.startswith("$"):
        rest = path[1:]
    else:
        rest = "." + path
    steps: List[Union[str, int, object]] = []
    pos = 0
    while pos < len(rest):
        m = _SEGMENT_RE.match(rest, pos)
        if m is None:
            raise JsonPathError(f"unsupported JSONPath {path!r} at offset {pos + (len(path) - len(rest))}")
        if m.group("name") is not None:
            steps.append(m.group("name"))
        elif m.group("index") is not None:
            steps.append(int(m.group("index")))
        elif m.group("star") is not None:
            steps.append(_WILDCARD)
        else:
            steps.append(m.group("quoted"))
        pos = m.end()
    return tuple(steps)


def extract(document: Any, path: str) -> List[Any]:
    """
    Every value ``path`` selects in ``document``, in document order.

    Missing keys and out-of-range indexes select nothing.
    """
    current = [document]
    for step in parse_path(path):
        selected = []
        for node in current:
            if step is _WILDCARD:
                if isinstance(node, list):
                    selected.extend(node)
                elif isinstance(node, dict):
                    selected.extend(node.values())
            elif isinstance(step, int):
                if isinstance(node, list) and -len(node) <= step < len(node):
                    selected.append(node[step])
            elif isinstance(node, dict) and step in node:
                selected.append(node[step])
        current = selected
    return current


def has_wildcard(path: str) -> bool:
    return any(step is _WILDCARD for step in parse_path(path))
