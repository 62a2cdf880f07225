"""
Runtime state of one secondary index.

    ┌───────────────────────────── SearchIndex ─────────────────────────────┐
    │  definition                                                           │
    │                                                                       │
    │  text ── InvertedTextIndex   tag ── TagIndex                          │
    │  numeric ── NumericRangeIndex   geo ── GeoIndex                       │
    │  vectors ── {field name: HNSW | FlatIndex}                            │
    │                                                                       │
    │  _committed: key -> (Document, {field: FieldValue})                   │
    │                                                                       │
    │  commit_lock (ReentrantRWLock)                                        │
    │     write side: one document's delta switching in                     │
    │     read side:  queries                                               │
    └───────────────────────────────────────────────────────────────────────┘

A document update is prepared outside the commit lock (coercion, vector
validation, graph linking of the new node) and switched in under the write
side. A query holds the read side for its whole execution, so it sees each
document either entirely before or entirely after an update.
"""
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple

from vsearch_data_model.document import Document
from vsearch_data_model.field_values import FieldType, FieldValue, VectorValue
from vsearch_data_model.index_definition import IndexDefinition, VectorAlgorithm, FieldSpec
from vsearch_db.config import EngineSettings
from vsearch_db.core.cancellation import CancellationToken, NEVER_CANCELLED
from vsearch_db.core.interface.vector_index_interface import VectorIndex, StagedVector
from vsearch_db.core.lock.locks import ReentrantRWLock
from vsearch_db.indexing.geo.geo_index import GeoIndex
from vsearch_db.indexing.numeric.numeric_range_index import NumericRangeIndex
from vsearch_db.indexing.text.inverted_text_index import InvertedTextIndex
from vsearch_db.indexing.text.tag_index import TagIndex
from vsearch_db.indexing.vector.flat import FlatIndex
from vsearch_db.indexing.vector.hnsw import HNSW
from vsearch_db.schema.value_coercion import extract_field_values

logger = logging.getLogger(__name__)


@dataclass
class PreparedIndexWrite:
    """One document's pending change to one index."""
    key: str
    document: Optional[Document]
    values: Dict[str, FieldValue] = field(default_factory=dict)
    staged: Dict[str, StagedVector] = field(default_factory=dict)
    committed: bool = False
    undo: List[Callable[[], None]] = field(default_factory=list)


def build_vector_index(definition: IndexDefinition, spec: FieldSpec, settings: EngineSettings) -> VectorIndex:
    if spec.algorithm == VectorAlgorithm.FLAT:
        return FlatIndex(spec.dim, spec.metric, index_name=definition.name)
    return HNSW(
        spec.dim,
        spec.metric,
        max_conn_per_element=spec.option("m", settings.hnsw_m),
        ef_construction=spec.option("ef_construction", settings.hnsw_ef_construction),
        ef_runtime=spec.option("ef_runtime", settings.hnsw_ef_runtime),
        seed=settings.hnsw_seed,
        flat_filter_threshold=settings.flat_filter_threshold,
        tombstone_compaction_ratio=settings.tombstone_compaction_ratio,
        index_name=definition.name,
    )


class SearchIndex:
    """All derived structures for one index definition."""

    def __init__(self, definition: IndexDefinition, settings: EngineSettings):
        self.definition = definition
        self.stopwords = tuple(definition.stopwords) if definition.stopwords is not None \
            else tuple(settings.default_stopwords)

        self.text = InvertedTextIndex(
            {f.name: f.weight for f in definition.fields_of_type(FieldType.TEXT)}, self.stopwords
        )
        self.tag = TagIndex({f.name: f.case_sensitive for f in definition.fields_of_type(FieldType.TAG)})
        self.numeric = NumericRangeIndex([f.name for f in definition.fields_of_type(FieldType.NUMERIC)])
        self.geo = GeoIndex([f.name for f in definition.fields_of_type(FieldType.GEO)])
        self.vectors: Dict[str, VectorIndex] = {
            f.name: build_vector_index(definition, f, settings)
            for f in definition.fields_of_type(FieldType.VECTOR)
        }
        self._field_indexes = (self.text, self.tag, self.numeric, self.geo)

        self._committed: Dict[str, Tuple[Document, Dict[str, FieldValue]]] = {}
        self.commit_lock = ReentrantRWLock()
        self.dropped = False
        self.indexing_failures = 0

    @property
    def name(self) -> str:
        return self.definition.name

    # ------------------------
    # WRITES
    # ------------------------

    def prepare(self, key: str, document: Document) -> PreparedIndexWrite:
        """
        Compute this index's delta for ``document`` (NONEXISTENT means delete).

        Raises:
            InvalidDocumentException: A field cannot be coerced to its type.
            VectorDimensionMismatchException: A vector has the wrong length.
        """
        if not document.is_record():
            return PreparedIndexWrite(key=key, document=None)

        values = extract_field_values(self.definition, document.fields or {}, key)
        prepared = PreparedIndexWrite(key=key, document=document, values=values)
        try:
            for name, value in values.items():
                if isinstance(value, VectorValue):
                    prepared.staged[name] = self.vectors[name].stage(key, value.vector)
        except Exception:
            self.discard(prepared)
            raise
        return prepared

    def discard(self, prepared: PreparedIndexWrite) -> None:
        for name, staged in prepared.staged.items():
            self.vectors[name].discard(staged)

    def commit(self, prepared: PreparedIndexWrite) -> None:
        """Switch ``prepared`` in. On failure every step already applied is undone before re-raising."""
        key = prepared.key
        with self.commit_lock.write_lock():
            if self.dropped:
                self.discard(prepared)
                return
            undo = prepared.undo
            try:
                old = self._committed.get(key)
                old_values = old[1] if old else {}

                if old:
                    undo.append(lambda: self._add_fields(key, old_values))
                    self._remove_fields(key, old_values)

                for name, vindex in self.vectors.items():
                    staged = prepared.staged.get(name)
                    if staged is not None:
                        vindex.commit(staged)
                        undo.append(lambda v=vindex, s=staged: v.revert(s))
                    elif name in old_values:
                        token = vindex.delete(key)
                        undo.append(lambda v=vindex, t=token: v.restore(key, t))

                if prepared.document is not None:
                    undo.append(lambda: self._remove_fields(key, prepared.values))
                    self._add_fields(key, prepared.values)
                    self._committed[key] = (prepared.document, prepared.values)
                    undo.append(lambda: self._set_committed(key, old))
                elif old:
                    del self._committed[key]
                    undo.append(lambda: self._set_committed(key, old))
                prepared.committed = True
            except Exception:
                logger.error(f"Index {self.name} failed to apply update for {key}, rolling back", exc_info=True)
                self.indexing_failures += 1
                self._run_undo(prepared)
                for name, staged in prepared.staged.items():
                    if not staged.committed:
                        self.vectors[name].discard(staged)
                raise

    def revert(self, prepared: PreparedIndexWrite) -> None:
        """Undo a committed write, used when a later index in the same write fails."""
        with self.commit_lock.write_lock():
            if prepared.committed:
                self._run_undo(prepared)
                prepared.committed = False

    def _run_undo(self, prepared: PreparedIndexWrite) -> None:
        for step in reversed(prepared.undo):
            try:
                step()
            except Exception:
                logger.error(f"Index {self.name} rollback step failed for {prepared.key}", exc_info=True)
        prepared.undo.clear()

    def _add_fields(self, key: str, values: Dict[str, FieldValue]) -> None:
        for index in self._field_indexes:
            index.add(key, values)

    def _remove_fields(self, key: str, values: Dict[str, FieldValue]) -> None:
        for index in self._field_indexes:
            index.delete(key, values)

    def _set_committed(self, key: str, entry) -> None:
        if entry is None:
            self._committed.pop(key, None)
        else:
            self._committed[key] = entry

    # ------------------------
    # READS (caller holds the read side of commit_lock)
    # ------------------------

    def all_keys(self) -> set:
        return set(self._committed)

    def entry(self, key: str) -> Optional[Tuple[Document, Dict[str, FieldValue]]]:
        return self._committed.get(key)

    def __len__(self) -> int:
        return len(self._committed)

    # ------------------------
    # MAINTENANCE
    # ------------------------

    def needs_compaction(self) -> bool:
        return any(vindex.needs_compaction() for vindex in self.vectors.values())

    def compact_vectors(self, cancellation: CancellationToken = NEVER_CANCELLED, force: bool = False) -> int:
        """
        Compact vector graphs whose tombstone share is too high; returns how many were rebuilt.

        Runs outside the commit lock: each graph builds its replacement while
        still serving, then swaps it in.
        """
        rebuilt = 0
        for vindex in self.vectors.values():
            if not (force or vindex.needs_compaction()):
                continue
            vindex.compact(cancellation)
            rebuilt += 1
        return rebuilt

    def clear(self) -> None:
        with self.commit_lock.write_lock():
            self.dropped = True
            self._committed.clear()

    def info(self) -> Dict[str, Any]:
        with self.commit_lock.read_lock():
            vector_info = {}
            for name, vindex in self.vectors.items():
                vector_info[name] = vindex.info() if hasattr(vindex, "info") else {'num_vectors': len(vindex)}
            return {
                'index_name': self.name,
                'index_definition': {
                    'key_type': self.definition.on.value,
                    'prefixes': list(self.definition.prefixes),
                },
                'attributes': [f.to_dict() for f in self.definition.fields],
                'num_docs': len(self._committed),
                'indexing_failures': self.indexing_failures,
                'stopwords': list(self.stopwords),
                'vector_indexes': vector_info,
            }
