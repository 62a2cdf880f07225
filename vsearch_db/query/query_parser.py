"""
Recursive-descent parser for the RediSearch query dialect.

    query      := union ( "=>" "[" knn "]" )?
    union      := intersect ( "|" intersect )*
    intersect  := unary+
    unary      := "-" unary | atom
    atom       := "(" union ")" | "*" | field_expr | term
    field_expr := "@" name ":" ( "{" tag ("|" tag)* "}"
                               | "[" low high "]"
                               | "[" lon lat radius unit "]"
                               | "(" union ")" | term )
    knn        := KNN (int | $p) @field $p (EF_RUNTIME (int | $p))? (AS alias)?

Juxtaposition is AND, ``|`` is OR and binds looser than AND, ``-`` is NOT.
Terms are analyzed with the index tokenizer; stopwords disappear and a group
left empty matches nothing.
"""
import math
import re
from typing import Iterable, List, Optional, Tuple, Union

from vsearch_db.indexing.geo.geo_index import UNIT_TO_METERS
from vsearch_db.indexing.text.tokenizer import tokenize
from vsearch_db.query.query_ast import (
    ParsedQuery, QueryNode, MatchAll, MatchNone, TermNode, TagNode, NumericRangeNode, GeoRadiusNode,
    AndNode, OrNode, NotNode, KnnClause, Param
)
from vsearch_exception_model.exception import MalformedQueryException

_WORD_RE = re.compile(r"[^\W_]+(?:[_'][^\W_]+)*")
_NAME_RE = re.compile(r"[\w.]+")
_INT_RE = re.compile(r"\d+")
_NUMBER_RE = re.compile(r"[-+]?(?:inf|(?:\d+\.?\d*|\.\d+)(?:[eE][-+]?\d+)?)", re.IGNORECASE)


class QueryParser:
    """
    Parses one query string. A parser instance is single use; call ``parse``.
    """

    def __init__(self, text: str, stopwords: Iterable[str] = ()):
        self._text = text or ""
        self._pos = 0
        self._stopwords = frozenset(s.lower() for s in stopwords)

    # ------------------------
    # ENTRY POINT
    # ------------------------

    def parse(self) -> ParsedQuery:
        self._skip_ws()
        if self._at_end():
            raise self._error("empty query")

        node: Optional[QueryNode]
        if self._peek_arrow():
            node = MatchAll(self._pos)
        else:
            node = self._parse_union(scope=None)

        knn = None
        self._skip_ws()
        if self._peek_arrow():
            self._pos += 2
            knn = self._parse_knn()
            self._skip_ws()

        if not self._at_end():
            raise self._error(f"unexpected character {self._text[self._pos]!r}")

        if node is None:
            node = MatchNone(0)
        return ParsedQuery(filter=node, knn=knn, text=self._text)

    # ------------------------
    # BOOLEAN STRUCTURE
    # ------------------------

    def _parse_union(self, scope: Optional[Tuple[str, ...]]) -> Optional[QueryNode]:
        start = self._pos
        branches = [self._parse_intersect(scope)]
        while True:
            self._skip_ws()
            if self._peek() != "|":
                break
            self._pos += 1
            branches.append(self._parse_intersect(scope))
        kept = [b for b in branches if b is not None]
        if not kept:
            return None
        if len(kept) == 1:
            return kept[0]
        return OrNode(tuple(kept), start)

    def _parse_intersect(self, scope: Optional[Tuple[str, ...]]) -> Optional[QueryNode]:
        start = self._pos
        children: List[Optional[QueryNode]] = []
        while True:
            self._skip_ws()
            ch = self._peek()
            if ch is None or ch in "|)" or self._peek_arrow():
                break
            children.append(self._parse_unary(scope))
        if not children:
            raise self._error("expected a query expression")
        kept = [c for c in children if c is not None]
        if not kept:
            return None
        if len(kept) == 1:
            return kept[0]
        return AndNode(tuple(kept), start)

    def _parse_unary(self, scope: Optional[Tuple[str, ...]]) -> Optional[QueryNode]:
        self._skip_ws()
        if self._peek() == "-":
            start = self._pos
            self._pos += 1
            child = self._parse_unary(scope)
            return NotNode(child, start) if child is not None else None
        return self._parse_atom(scope)

    def _parse_atom(self, scope: Optional[Tuple[str, ...]]) -> Optional[QueryNode]:
        self._skip_ws()
        start = self._pos
        ch = self._peek()
        if ch == "(":
            self._pos += 1
            node = self._parse_union(scope)
            self._expect(")")
            return node
        if ch == "*":
            self._pos += 1
            return MatchAll(start)
        if ch == "@":
            return self._parse_field_expr()
        if ch == '"':
            return self._parse_phrase(scope)
        return self._parse_term(scope)

    # ------------------------
    # TERMS
    # ------------------------

    def _parse_term(self, scope: Optional[Tuple[str, ...]]) -> Optional[QueryNode]:
        start = self._pos
        m = _WORD_RE.match(self._text, self._pos)
        if m is None:
            ch = self._peek()
            raise self._error(f"unexpected character {ch!r}" if ch else "unexpected end of query")
        self._pos = m.end()
        prefix = False
        if self._peek() == "*":
            self._pos += 1
            prefix = True
        return self._term_node(m.group(0), scope, prefix, start)

    def _parse_phrase(self, scope: Optional[Tuple[str, ...]]) -> Optional[QueryNode]:
        start = self._pos
        end = self._text.find('"', self._pos + 1)
        if end < 0:
            raise self._error("unterminated quoted phrase")
        phrase = self._text[self._pos + 1:end]
        self._pos = end + 1
        return self._term_node(phrase, scope, False, start)

    def _term_node(self, raw: str, scope, prefix: bool, start: int) -> Optional[QueryNode]:
        if prefix:
            token = raw.lower()
            if len(token) < 2:
                raise self._error("prefix queries need at least two characters", start)
            return TermNode(token, scope, True, start)
        tokens = tokenize(raw, self._stopwords)
        if not tokens:
            return None
        if len(tokens) == 1:
            return TermNode(tokens[0], scope, False, start)
        return AndNode(tuple(TermNode(t, scope, False, start) for t in tokens), start)

    # ------------------------
    # FIELD EXPRESSIONS
    # ------------------------

    def _parse_field_expr(self) -> Optional[QueryNode]:
        start = self._pos
        self._pos += 1
        name = self._parse_name("field name")
        self._expect(":")
        self._skip_ws()
        ch = self._peek()
        if ch == "{":
            return self._parse_tag(name, start)
        if ch == "[":
            return self._parse_range(name, start)
        if ch == "(":
            self._pos += 1
            node = self._parse_union(scope=(name,))
            self._expect(")")
            return node
        if ch == '"':
            return self._parse_phrase((name,))
        return self._parse_term((name,))

    def _parse_tag(self, name: str, start: int) -> TagNode:
        self._pos += 1
        tags: List[str] = []
        current: List[str] = []
        while True:
            ch = self._peek()
            if ch is None:
                raise self._error("unterminated tag list, expected '}'")
            self._pos += 1
            if ch == "\\":
                escaped = self._peek()
                if escaped is None:
                    raise self._error("dangling escape in tag list")
                current.append(escaped)
                self._pos += 1
            elif ch == "|" or ch == "}":
                tag = "".join(current).strip()
                if not tag:
                    raise self._error("empty tag value", self._pos - 1)
                tags.append(tag)
                current = []
                if ch == "}":
                    break
            else:
                current.append(ch)
        return TagNode(name, tuple(tags), start)

    def _parse_range(self, name: str, start: int) -> Union[NumericRangeNode, GeoRadiusNode]:
        self._pos += 1
        end = self._text.find("]", self._pos)
        if end < 0:
            raise self._error("unterminated range, expected ']'")
        body_start = self._pos
        parts = [p for p in re.split(r"[\s,]+", self._text[body_start:end]) if p]
        self._pos = end + 1
        if len(parts) == 2:
            low, low_excl = self._parse_bound(parts[0], body_start)
            high, high_excl = self._parse_bound(parts[1], body_start)
            return NumericRangeNode(name, low, high, low_excl, high_excl, start)
        if len(parts) == 4:
            try:
                lon, lat, radius = float(parts[0]), float(parts[1]), float(parts[2])
            except ValueError:
                raise self._error("geo filter coordinates and radius must be numbers", body_start)
            unit = parts[3].lower()
            if unit not in UNIT_TO_METERS:
                raise self._error(f"unknown geo unit {parts[3]!r}", body_start)
            if radius < 0:
                raise self._error("geo radius must not be negative", body_start)
            return GeoRadiusNode(name, lon, lat, radius, unit, start)
        raise self._error("range needs 2 numeric bounds or 'lon lat radius unit'", body_start)

    def _parse_bound(self, raw: str, position: int) -> Tuple[float, bool]:
        exclusive = raw.startswith("(")
        number = raw[1:] if exclusive else raw
        if not _NUMBER_RE.fullmatch(number):
            raise self._error(f"invalid numeric bound {raw!r}", position)
        value = float(number)
        if math.isnan(value):
            raise self._error(f"invalid numeric bound {raw!r}", position)
        return value, exclusive

    # ------------------------
    # KNN
    # ------------------------

    def _parse_knn(self) -> KnnClause:
        self._skip_ws()
        start = self._pos
        self._expect("[")
        self._skip_ws()
        self._expect_keyword("KNN")
        k = self._parse_int_or_param("K")
        self._skip_ws()
        if self._peek() != "@":
            raise self._error("expected '@field' after KNN count")
        self._pos += 1
        field = self._parse_name("vector field name")
        self._skip_ws()
        vector = self._parse_param("vector parameter")

        ef_runtime = None
        alias = None
        while True:
            self._skip_ws()
            if self._peek() == "]":
                self._pos += 1
                break
            keyword = self._parse_name("KNN option").upper()
            if keyword == "EF_RUNTIME" and ef_runtime is None:
                ef_runtime = self._parse_int_or_param("EF_RUNTIME")
            elif keyword == "AS" and alias is None:
                self._skip_ws()
                alias = self._parse_name("score alias")
            else:
                raise self._error(f"unexpected KNN option {keyword!r}")
        return KnnClause(k=k, field=field, vector=vector, ef_runtime=ef_runtime, alias=alias, position=start)

    def _parse_int_or_param(self, what: str) -> Union[int, Param]:
        self._skip_ws()
        if self._peek() == "$":
            return self._parse_param(what)
        m = _INT_RE.match(self._text, self._pos)
        if m is None:
            raise self._error(f"expected an integer or $parameter for {what}")
        self._pos = m.end()
        return int(m.group(0))

    def _parse_param(self, what: str) -> Param:
        self._skip_ws()
        start = self._pos
        if self._peek() != "$":
            raise self._error(f"expected $parameter for {what}")
        self._pos += 1
        name = self._parse_name(what)
        return Param(name, start)

    # ------------------------
    # LEXING HELPERS
    # ------------------------

    def _parse_name(self, what: str) -> str:
        self._skip_ws()
        m = _NAME_RE.match(self._text, self._pos)
        if m is None:
            raise self._error(f"expected {what}")
        self._pos = m.end()
        return m.group(0)

    def _expect(self, ch: str) -> None:
        self._skip_ws()
        if self._peek() != ch:
            found = self._peek()
            raise self._error(f"expected {ch!r}, found {found!r}" if found else f"expected {ch!r} before end of query")
        self._pos += 1

    def _expect_keyword(self, keyword: str) -> None:
        end = self._pos + len(keyword)
        if self._text[self._pos:end].upper() != keyword:
            raise self._error(f"expected {keyword}")
        self._pos = end

    def _peek(self) -> Optional[str]:
        return self._text[self._pos] if self._pos < len(self._text) else None

    def _peek_arrow(self) -> bool:
        return self._text.startswith("=>", self._pos)

    def _skip_ws(self) -> None:
        while self._pos < len(self._text) and self._text[self._pos].isspace():
            self._pos += 1

    def _at_end(self) -> bool:
        return self._pos >= len(self._text)

    def _error(self, reason: str, position: Optional[int] = None) -> MalformedQueryException:
        position = self._pos if position is None else position
        return MalformedQueryException(
            f"Syntax error at offset {position}: {reason}", position=position, reason=reason, query=self._text
        )


def parse_query(text: str, stopwords: Iterable[str] = ()) -> ParsedQuery:
    """Parse ``text``; raises MalformedQueryException on invalid syntax."""
    return QueryParser(text, stopwords).parse()
